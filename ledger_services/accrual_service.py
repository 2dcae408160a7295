"""
ledger_services.accrual_service -- monthly rental accruals.

Responsibility:
    Turns a debtor's lease terms into one balanced rental_accrual entry per
    (student, billing period) and reports what a period's accruals add up
    to.

Architecture position:
    Services -- orchestrates AccrualCalculator (engine), AccountRegistry and
    LedgerStore (kernel) within the caller's session.  Never commits;
    RentalLedger owns transaction boundaries and per-student isolation in
    batch runs.

Invariants enforced:
    - At most one rental_accrual per (student_id, period).  The fast-path
      lookup avoids needless work; the database unique constraint makes the
      insert-or-skip atomic under concurrency.
    - A duplicate is an outcome (SKIPPED), never an error.

Failure modes:
    - UnknownAccountError / InactiveAccountError when the chart is not seeded.
    - ValueError on a malformed period key.

Audit relevance:
    Every accrual carries AccrualMetadata with the component amounts, the
    period and whether it was the lease-start month.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from sqlalchemy import BigInteger, func, select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.accrual import AccrualAccounts, AccrualCalculator, ChargeRates
from ledger_kernel.db.types import ZERO, from_minor_units
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryDraft
from ledger_kernel.domain.metadata import AccrualMetadata
from ledger_kernel.domain.periods import BillingPeriod
from ledger_kernel.exceptions import DuplicateAccrualError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.transaction_entry import (
    ChargeType,
    EntrySource,
    EntryStatus,
    TransactionEntry,
    TransactionLine,
)
from ledger_kernel.selectors.ledger_selector import TransactionEntryDTO, to_entry_dto
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_services.debtors import DebtorRecord

logger = get_logger("services.accrual")


class AccrualStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class AccrualOutcome:
    """Result of accruing one student for one period."""

    status: AccrualStatus
    student_id: str
    period: str
    transaction_id: str | None = None
    entry: TransactionEntryDTO | None = None
    reason: str | None = None

    @property
    def created(self) -> bool:
        return self.status == AccrualStatus.CREATED


@dataclass
class BatchAccrualResult:
    """Aggregate of a batch or backfill run."""

    created: int = 0
    skipped: int = 0
    errors: int = 0
    items: list[AccrualOutcome] = field(default_factory=list)

    def record(self, outcome: AccrualOutcome) -> None:
        self.items.append(outcome)
        match outcome.status:
            case AccrualStatus.CREATED:
                self.created += 1
            case AccrualStatus.SKIPPED:
                self.skipped += 1
            case AccrualStatus.ERROR:
                self.errors += 1

    @property
    def failed(self) -> list[AccrualOutcome]:
        return [o for o in self.items if o.status == AccrualStatus.ERROR]


@dataclass(frozen=True)
class AccrualSummary:
    period: str
    accrual_count: int
    rent: Decimal
    admin: Decimal
    deposit: Decimal

    @property
    def total(self) -> Decimal:
        return self.rent + self.admin + self.deposit


class AccrualService:
    """
    Contract:
        ``create_accrual`` posts exactly one balanced entry or returns a
        SKIPPED outcome; it never posts a second accrual for the same
        student and period.

    Non-goals:
        - Does NOT commit.
        - Does NOT iterate debtors; batch loops live in RentalLedger so that
          each student commits on its own.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        clock: Clock | None = None,
        store: LedgerStore | None = None,
    ):
        self.session = session
        self.settings = settings
        self.clock = clock or SystemClock()
        codes = settings.codes
        self.registry = AccountRegistry(
            session, self.clock,
            receivable_control=codes.receivable,
            advance_control=codes.advance,
        )
        self.store = store or LedgerStore(session, self.clock, registry=self.registry)
        self.calculator = AccrualCalculator(prorate_lease_start=settings.prorate_lease_start)
        self.accounts = AccrualAccounts(
            rental_income=codes.rental_income,
            admin_income=codes.admin_income,
            deposit_liability=codes.deposits_held,
        )

    def rates_for(self, debtor: DebtorRecord, period: BillingPeriod | str) -> ChargeRates | None:
        return self.calculator.rates_for_period(terms=debtor.terms, period=BillingPeriod.parse(period))

    def accrue_debtor(self, debtor: DebtorRecord, period: BillingPeriod | str,
                      created_by: str = "system") -> AccrualOutcome:
        """Accrue one debtor for one period using their lease terms."""
        period = BillingPeriod.parse(period)
        rates = self.rates_for(debtor, period)
        if rates is None:
            return AccrualOutcome(
                AccrualStatus.SKIPPED, debtor.student_id, period.key, reason="outside_lease"
            )
        return self.create_accrual(
            debtor.student_id,
            period,
            rates,
            student_name=debtor.student_name,
            residence_id=debtor.residence_id,
            created_by=created_by,
        )

    def create_accrual(
        self,
        student_id: str,
        period: BillingPeriod | str,
        rates: ChargeRates,
        student_name: str | None = None,
        residence_id: str | None = None,
        created_by: str = "system",
    ) -> AccrualOutcome:
        period = BillingPeriod.parse(period)

        existing = self.store.find_accrual(student_id, period.key)
        if existing is not None:
            logger.info(
                "accrual_skipped_existing",
                extra={
                    "student_id": student_id,
                    "period": period.key,
                    "transaction_id": existing.transaction_id,
                },
            )
            return AccrualOutcome(
                AccrualStatus.SKIPPED,
                student_id,
                period.key,
                transaction_id=existing.transaction_id,
                reason="already_accrued",
            )

        if rates.total <= ZERO:
            return AccrualOutcome(AccrualStatus.SKIPPED, student_id, period.key, reason="zero_amount")

        receivable = self.registry.ensure_student_receivable(student_id, student_name)
        draft = EntryDraft(
            entry_date=period.start,
            description=f"Monthly rent accrual - {student_name or student_id} - {period.key}",
            source=EntrySource.RENTAL_ACCRUAL.value,
            lines=self.calculator.build_lines(receivable.code, rates, self.accounts, period),
            reference=f"ACCRUAL-{student_id}-{period.key}",
            source_id=student_id,
            source_model="Lease",
            residence_id=residence_id,
            student_id=student_id,
            accrual_period=period.key,
            metadata=AccrualMetadata(
                student_id=student_id,
                accrual_month=period.month,
                accrual_year=period.year,
                rent_amount=rates.rent,
                admin_fee=rates.admin,
                deposit_amount=rates.deposit,
                total_amount=rates.total,
                lease_start=rates.lease_start,
                student_name=student_name,
            ),
            created_by=created_by,
        )

        try:
            entry = self.store.post(draft)
        except DuplicateAccrualError as exc:
            # Lost the race to a concurrent writer
            logger.info(
                "accrual_skipped_duplicate",
                extra={
                    "student_id": student_id,
                    "period": period.key,
                    "transaction_id": exc.existing_transaction_id,
                },
            )
            return AccrualOutcome(
                AccrualStatus.SKIPPED,
                student_id,
                period.key,
                transaction_id=exc.existing_transaction_id,
                reason="already_accrued",
            )

        logger.info(
            "accrual_created",
            extra={
                "student_id": student_id,
                "period": period.key,
                "transaction_id": entry.transaction_id,
                "total": str(rates.total),
                "lease_start": rates.lease_start,
            },
        )
        return AccrualOutcome(
            AccrualStatus.CREATED,
            student_id,
            period.key,
            transaction_id=entry.transaction_id,
            entry=to_entry_dto(entry),
        )

    def accrual_summary(self, period: BillingPeriod | str) -> AccrualSummary:
        """Count and component totals of posted accruals for a period."""
        period = BillingPeriod.parse(period)
        posted = (
            TransactionEntry.source == EntrySource.RENTAL_ACCRUAL.value,
            TransactionEntry.status == EntryStatus.POSTED.value,
            TransactionEntry.accrual_period == period.key,
        )
        count = self.session.execute(
            select(func.count(TransactionEntry.id)).where(*posted)
        ).scalar_one()
        rows = self.session.execute(
            select(TransactionLine.charge_type, func.sum(TransactionLine.debit, type_=BigInteger))
            .join(TransactionEntry, TransactionLine.entry_id == TransactionEntry.id)
            .where(*posted, TransactionLine.debit > 0)
            .group_by(TransactionLine.charge_type)
        ).all()
        totals = {charge.value: ZERO for charge in ChargeType}
        for charge_type, cents in rows:
            key = charge_type or ChargeType.RENT.value
            totals[key] += from_minor_units(int(cents))
        return AccrualSummary(
            period=period.key,
            accrual_count=int(count),
            rent=totals[ChargeType.RENT.value],
            admin=totals[ChargeType.ADMIN.value],
            deposit=totals[ChargeType.DEPOSIT.value],
        )
