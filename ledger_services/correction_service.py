"""
ledger_services.correction_service -- corrections that never erase history.

Responsibility:
    Forfeiture of an accrued month, write-off of an unpaid deposit, removal
    of duplicate reversal artefacts and the standing ledger integrity audit.

Architecture position:
    Services -- composes ReversalService, LedgerStore, ObligationSelector and
    the student lock.  Never commits.

Invariants enforced:
    - Corrections are new balanced entries; the only mutation of an
      original is the posted -> reversed status change.
    - Forfeiture applies to rental_accrual entries only.
    - An unpaid deposit is written off at most once per student.
    - The audit is read-only and idempotent: running it twice over an
      unchanged ledger yields the same findings.

Failure modes:
    - NotAnAccrualError, EntryNotFoundError, AlreadyReversedError from
      reverse_forfeiture.
    - DepositReversalExistsError / DepositAlreadySettledError from
      reverse_unpaid_deposit.

Audit relevance:
    cleanup_duplicate_reversals is the one place entries are deleted.
    Every removal is logged with the kept entry and the reason.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryDraft, LineSpec
from ledger_kernel.domain.metadata import AdjustmentMetadata, ReversalKind
from ledger_kernel.exceptions import (
    DepositAlreadySettledError,
    DepositReversalExistsError,
    NotAnAccrualError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import SUBACCOUNT_SEPARATOR
from ledger_kernel.models.transaction_entry import (
    ChargeType,
    EntrySource,
    EntryStatus,
    TransactionEntry,
)
from ledger_kernel.selectors.ledger_selector import LedgerFilter
from ledger_kernel.selectors.obligation_selector import ObligationSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.reversal_service import ReversalResult, ReversalService
from ledger_kernel.services.student_lock_service import StudentLockService

logger = get_logger("services.correction")

DEPOSIT_WRITE_OFF = "deposit_write_off"
FORFEITURE = "forfeiture"


@dataclass(frozen=True)
class ForfeitureResult:
    reversal: ReversalResult
    period: str
    forfeited_amount: Decimal = ZERO
    forfeiture_transaction_id: str | None = None


@dataclass(frozen=True)
class DepositWriteOffResult:
    student_id: str
    period: str
    amount: Decimal
    transaction_id: str


@dataclass
class DuplicateCleanupReport:
    kept: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuditFinding:
    kind: str
    transaction_id: str
    detail: str


@dataclass
class LedgerAuditReport:
    entries_scanned: int = 0
    findings: list[AuditFinding] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.findings

    def by_kind(self) -> dict[str, list[AuditFinding]]:
        grouped: dict[str, list[AuditFinding]] = defaultdict(list)
        for finding in self.findings:
            grouped[finding.kind].append(finding)
        return dict(grouped)


class CorrectionService:
    """
    Contract:
        Every public method either completes its whole correction or raises
        with nothing flushed by it left behind in the session.

    Non-goals:
        - Does NOT commit.
        - Does NOT reverse individual lines.
    """

    def __init__(self, session: Session, settings: LedgerSettings, clock: Clock | None = None):
        self.session = session
        self.settings = settings
        self.clock = clock or SystemClock()
        codes = settings.codes
        self.registry = AccountRegistry(
            session, self.clock,
            receivable_control=codes.receivable,
            advance_control=codes.advance,
        )
        self.store = LedgerStore(session, self.clock, registry=self.registry)
        self.reversals = ReversalService(self.store)
        self.obligations = ObligationSelector(session, receivable_control=codes.receivable)
        self.locks = StudentLockService(session)

    def reverse_transaction(self, transaction_id: str, reason: str,
                            created_by: str = "system") -> ReversalResult:
        entry = self.store.get(transaction_id)
        if entry.student_id:
            self.locks.acquire(entry.student_id)
        return self.reversals.reverse(transaction_id, reason, created_by=created_by)

    # ------------------------------------------------------------------
    # Forfeiture
    # ------------------------------------------------------------------

    def reverse_forfeiture(self, transaction_id: str, reason: str, forfeit_payments: bool = True,
                           created_by: str = "system") -> ForfeitureResult:
        """
        Reverse an accrual and, when cash was already settled against its
        period, reclassify that cash as forfeited income.
        """
        entry = self.store.get(transaction_id)
        if EntrySource(entry.source) != EntrySource.RENTAL_ACCRUAL:
            raise NotAnAccrualError(transaction_id, EntrySource(entry.source).value)

        student_id = entry.student_id
        period = entry.accrual_period
        with LogContext.bind(student_id=student_id, transaction_id=transaction_id):
            self.locks.acquire(student_id)
            settled = ZERO
            for obligation in self.obligations.obligations(student_id):
                if obligation.period == period:
                    settled = sum((obligation.settled(c) for c in ChargeType), ZERO)

            reversal = self.reversals.reverse(
                transaction_id, reason, kind=ReversalKind.FORFEITURE, created_by=created_by
            )

            if not forfeit_payments or settled <= ZERO:
                logger.info(
                    "accrual_forfeited",
                    extra={"period": period, "forfeited_amount": "0.00"},
                )
                return ForfeitureResult(reversal=reversal, period=period)

            receivable = self.registry.receivable_code(student_id)
            forfeiture = self.store.post(
                EntryDraft(
                    entry_date=reversal.effective_date,
                    description=f"Forfeiture of payments for {period}: {reason}",
                    source=EntrySource.FORFEITURE.value,
                    lines=(
                        LineSpec.debit_line(
                            receivable, settled, description=f"Payments forfeited {period}"
                        ),
                        LineSpec.credit_line(
                            self.settings.codes.forfeited_income, settled,
                            description=f"Forfeited income {period}",
                        ),
                    ),
                    reference=transaction_id,
                    source_id=student_id,
                    source_model="Forfeiture",
                    residence_id=entry.residence_id,
                    student_id=student_id,
                    metadata=AdjustmentMetadata(
                        student_id=student_id,
                        adjustment_type=FORFEITURE,
                        reason=reason,
                        month_settled=period,
                        related_transaction_id=transaction_id,
                    ),
                    created_by=created_by,
                )
            )
            logger.info(
                "accrual_forfeited",
                extra={
                    "period": period,
                    "forfeited_amount": str(settled),
                    "forfeiture_transaction_id": forfeiture.transaction_id,
                },
            )
            return ForfeitureResult(
                reversal=reversal,
                period=period,
                forfeited_amount=settled,
                forfeiture_transaction_id=forfeiture.transaction_id,
            )

    # ------------------------------------------------------------------
    # Deposit write-off
    # ------------------------------------------------------------------

    @staticmethod
    def _deposit_reference(student_id: str) -> str:
        return f"DEPOSIT-WRITEOFF-{student_id}"

    def reverse_unpaid_deposit(self, student_id: str, reason: str,
                               created_by: str = "system") -> DepositWriteOffResult:
        """Write off the unpaid part of the student's accrued deposit."""
        with LogContext.bind(student_id=student_id):
            self.locks.acquire(student_id)

            reference = self._deposit_reference(student_id)
            existing = self.session.execute(
                select(TransactionEntry.transaction_id).where(
                    TransactionEntry.reference == reference,
                    TransactionEntry.student_id == student_id,
                    TransactionEntry.status == EntryStatus.POSTED.value,
                )
            ).scalars().first()
            if existing is not None:
                raise DepositReversalExistsError(student_id, existing)

            deposit_obligation = next(
                (o for o in self.obligations.obligations(student_id) if o.deposit_owed > ZERO),
                None,
            )
            if deposit_obligation is None or deposit_obligation.deposit_outstanding <= ZERO:
                raise DepositAlreadySettledError(student_id)

            period = deposit_obligation.period
            unpaid = deposit_obligation.deposit_outstanding
            entry = self.store.post(
                EntryDraft(
                    entry_date=self.clock.today(),
                    description=f"Unpaid deposit reversal - {student_id}: {reason}",
                    source=EntrySource.ADJUSTMENT.value,
                    lines=(
                        LineSpec.debit_line(
                            self.settings.codes.deposits_held, unpaid,
                            description="Deposit liability released",
                        ),
                        LineSpec.credit_line(
                            self.registry.receivable_code(student_id),
                            unpaid,
                            description=f"Unpaid deposit cleared {period}",
                            charge_type=ChargeType.DEPOSIT.value,
                            month_settled=period,
                        ),
                    ),
                    reference=reference,
                    source_id=student_id,
                    source_model="Deposit",
                    student_id=student_id,
                    metadata=AdjustmentMetadata(
                        student_id=student_id,
                        adjustment_type=DEPOSIT_WRITE_OFF,
                        reason=reason,
                        month_settled=period,
                        related_transaction_id=deposit_obligation.accrual_transaction_id,
                    ),
                    created_by=created_by,
                )
            )
            logger.info(
                "unpaid_deposit_reversed",
                extra={"period": period, "amount": str(unpaid), "transaction_id": entry.transaction_id},
            )
            return DepositWriteOffResult(student_id, period, unpaid, entry.transaction_id)

    # ------------------------------------------------------------------
    # Duplicate reversal cleanup
    # ------------------------------------------------------------------

    def cleanup_duplicate_reversals(self, student_id: str | None = None) -> DuplicateCleanupReport:
        """
        Keep the earliest reversal per (student, reason, original) and purge
        the rest.
        """
        stmt = (
            select(TransactionEntry)
            .where(
                TransactionEntry.source.in_([s.value for s in EntrySource if s.is_reversal]),
                TransactionEntry.status == EntryStatus.POSTED.value,
            )
            .order_by(TransactionEntry.created_at, TransactionEntry.transaction_id)
        )
        if student_id is not None:
            stmt = stmt.where(TransactionEntry.student_id == student_id)

        groups: dict[tuple, list[TransactionEntry]] = defaultdict(list)
        for entry in self.session.scalars(stmt):
            metadata = entry.entry_metadata or {}
            key = (
                entry.student_id,
                metadata.get("reason"),
                metadata.get("original_transaction_id") or entry.reference,
            )
            groups[key].append(entry)

        report = DuplicateCleanupReport()
        for (group_student, reason, original), entries in groups.items():
            keeper, duplicates = entries[0], entries[1:]
            report.kept.append(keeper.transaction_id)
            if not duplicates:
                continue
            for duplicate in duplicates:
                logger.warning(
                    "duplicate_reversal_found",
                    extra={
                        "transaction_id": duplicate.transaction_id,
                        "kept_transaction_id": keeper.transaction_id,
                        "original_transaction_id": original,
                        "student_id": group_student,
                    },
                )
            report.removed.extend(
                self.store.purge(
                    [d.transaction_id for d in duplicates],
                    reason=f"duplicate reversal of {original} (kept {keeper.transaction_id})",
                )
            )

        logger.info(
            "duplicate_reversal_cleanup_completed",
            extra={"kept_count": len(report.kept), "removed_count": len(report.removed)},
        )
        return report

    # ------------------------------------------------------------------
    # Integrity audit
    # ------------------------------------------------------------------

    def audit_ledger(self, criteria: LedgerFilter | None = None,
                     tolerance: Decimal | str = ZERO) -> LedgerAuditReport:
        """
        Scan entries and report integrity problems without changing
        anything.

        Finding kinds: ``unbalanced_entry``, ``line_total_mismatch``,
        ``malformed_line``, ``orphan_settlement``, ``missing_reversal``.
        """
        tolerance = to_money(tolerance)
        accrued = {
            (sid, period)
            for sid, period in self.session.execute(
                select(TransactionEntry.student_id, TransactionEntry.accrual_period).where(
                    TransactionEntry.source == EntrySource.RENTAL_ACCRUAL.value
                )
            )
        }
        reversed_targets = set(
            self.session.execute(
                select(TransactionEntry.reversal_of_id).where(TransactionEntry.reversal_of_id.is_not(None))
            ).scalars()
        )
        receivable_prefix = f"{self.settings.codes.receivable}{SUBACCOUNT_SEPARATOR}"

        report = LedgerAuditReport()
        for entry in self.store.find_by_filter(criteria):
            report.entries_scanned += 1
            tid = entry.transaction_id

            if abs(entry.total_debit - entry.total_credit) > tolerance:
                report.findings.append(AuditFinding(
                    "unbalanced_entry", tid,
                    f"total_debit={entry.total_debit} total_credit={entry.total_credit}",
                ))
            if (abs(entry.line_debits - entry.total_debit) > tolerance
                    or abs(entry.line_credits - entry.total_credit) > tolerance):
                report.findings.append(AuditFinding(
                    "line_total_mismatch", tid,
                    f"lines debit={entry.line_debits} credit={entry.line_credits}",
                ))

            for line in entry.lines:
                if (line.debit > ZERO) == (line.credit > ZERO):
                    report.findings.append(AuditFinding(
                        "malformed_line", tid,
                        f"line {line.line_seq} on {line.account_code}: "
                        f"debit={line.debit} credit={line.credit}",
                    ))
                if (
                    EntryStatus(entry.status) == EntryStatus.POSTED
                    and line.month_settled
                    and line.credit > ZERO
                    and line.account_code.startswith(receivable_prefix)
                    and (entry.student_id, line.month_settled) not in accrued
                ):
                    report.findings.append(AuditFinding(
                        "orphan_settlement", tid,
                        f"{line.account_code} settles {line.month_settled} with no accrual",
                    ))

            if EntryStatus(entry.status) == EntryStatus.REVERSED and entry.id not in reversed_targets:
                report.findings.append(AuditFinding(
                    "missing_reversal", tid, "entry is reversed but no reversal entry exists",
                ))

        for finding in report.findings:
            logger.warning(
                "audit_finding",
                extra={"kind": finding.kind, "transaction_id": finding.transaction_id,
                       "detail": finding.detail},
            )
        logger.info(
            "ledger_audit_completed",
            extra={"entries_scanned": report.entries_scanned, "finding_count": len(report.findings)},
        )
        return report
