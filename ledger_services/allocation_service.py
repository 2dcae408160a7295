"""
ledger_services.allocation_service -- Smart FIFO payment allocation.

Responsibility:
    Validates a payment event, reads the student's obligations, asks
    SmartFifoAllocator for a plan and persists it as balanced settlement
    entries: one per billing period touched plus one per advance leftover.

Architecture position:
    Services -- orchestrates the allocation engine with the kernel's store,
    registry, selectors and student lock.  Never commits.

Invariants enforced:
    - Per-student serialization: the student's lock row is taken FOR UPDATE
      before obligations are read, so two payments for one student cannot
      both settle the same outstanding amount.
    - Conservation: applied + advance == payment total, to the cent.
    - Every credit matched to an obligation carries month_settled and
      charge_type; only the advance remainder has month_settled = None.
    - A payment id is allocated at most once while its entries stay posted.

Failure modes:
    - Structured failure (AllocationOutcome.success = False) for an invalid
      payment, a payment already allocated, or a student with no accrual
      history.  Nothing is posted in those cases.
    - Accounting failures (unbalanced entry, unknown account) propagate.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.allocation import (
    AllocationPlan,
    ApplicationKind,
    OutstandingPeriod,
    PaymentComponent,
    PaymentType,
    SmartFifoAllocator,
)
from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryDraft, LineSpec
from ledger_kernel.domain.metadata import AllocationType, SettlementMetadata
from ledger_kernel.exceptions import (
    AllocationError,
    InvalidPaymentError,
    NoOutstandingObligationsError,
    PaymentAlreadyAllocatedError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.transaction_entry import EntrySource
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.obligation_selector import ObligationDTO, ObligationSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.student_lock_service import StudentLockService

logger = get_logger("services.allocation")


@dataclass(frozen=True)
class PaymentEvent:
    """An incoming payment broken into typed components."""

    payment_id: str
    student_id: str
    total_amount: Decimal
    payments: tuple[PaymentComponent, ...]
    date: date
    method: str = "cash"
    residence_id: str | None = None
    student_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payments", tuple(self.payments))

    @property
    def components_total(self) -> Decimal:
        return sum((p.amount for p in self.payments), ZERO)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PaymentEvent:
        paid_on = data["date"]
        return cls(
            payment_id=str(data["payment_id"]),
            student_id=str(data["student_id"]),
            total_amount=to_money(str(data["total_amount"])),
            payments=tuple(
                PaymentComponent(p["type"], to_money(str(p["amount"])))
                for p in data.get("payments", [])
            ),
            date=paid_on if isinstance(paid_on, date) else date.fromisoformat(str(paid_on)),
            method=data.get("method", "cash"),
            residence_id=data.get("residence_id"),
            student_name=data.get("student_name"),
        )


@dataclass(frozen=True)
class MonthlyAllocation:
    """One line of the allocation breakdown.  ``month`` is None for advances."""

    month: str | None
    payment_type: str
    amount_allocated: Decimal
    original_outstanding: Decimal
    new_outstanding: Decimal
    allocation_type: str
    transaction_id: str


@dataclass(frozen=True)
class AllocationSummary:
    total_allocated: Decimal
    remaining_balance: Decimal
    months_covered: int
    advance_payment_amount: Decimal
    oldest_month_settled: str | None = None
    newest_month_settled: str | None = None


@dataclass(frozen=True)
class AllocationReport:
    summary: AllocationSummary
    monthly_breakdown: tuple[MonthlyAllocation, ...]
    transaction_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class AllocationOutcome:
    """
    Result of ``allocate_payment``.

    ``success`` False means nothing was posted; ``error`` then holds the
    machine-readable code of the failure.
    """

    success: bool
    payment_id: str
    student_id: str
    allocation: AllocationReport | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def failure(cls, event: PaymentEvent, exc: AllocationError) -> AllocationOutcome:
        return cls(
            success=False,
            payment_id=event.payment_id,
            student_id=event.student_id,
            error=exc.code,
            message=str(exc),
        )


@dataclass(frozen=True)
class AdvanceReleaseResult:
    student_id: str
    released: Decimal
    advance_remaining: Decimal
    breakdown: tuple[MonthlyAllocation, ...]


def _to_outstanding(obligation: ObligationDTO) -> OutstandingPeriod:
    return OutstandingPeriod(
        period=obligation.period,
        rent=obligation.rent_outstanding,
        admin=obligation.admin_outstanding,
        deposit=obligation.deposit_outstanding,
    )


class AllocationService:
    """
    Contract:
        ``allocate_payment`` either posts the complete plan or posts
        nothing.  Expected business failures come back as an unsuccessful
        AllocationOutcome; accounting failures raise.

    Non-goals:
        - Does NOT commit.
        - Does NOT fall back to an unallocated cash receipt when the student
          has no accrual history; callers decide.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        clock: Clock | None = None,
        allocator: SmartFifoAllocator | None = None,
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
        self.store = LedgerStore(session, self.clock, registry=self.registry)
        self.obligations = ObligationSelector(session, receivable_control=codes.receivable)
        self.ledger = LedgerSelector(session)
        self.locks = StudentLockService(session)
        self.allocator = allocator or SmartFifoAllocator()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, event: PaymentEvent) -> None:
        if not event.payments:
            raise InvalidPaymentError(event.payment_id, "payment has no components")
        for component in event.payments:
            if component.amount <= ZERO:
                raise InvalidPaymentError(
                    event.payment_id,
                    f"{component.payment_type} amount must be positive, got {component.amount}",
                )
        if event.components_total != event.total_amount:
            raise InvalidPaymentError(
                event.payment_id,
                f"components sum to {event.components_total}, total is {event.total_amount}",
            )
        existing = self.ledger.entries_for_payment(event.payment_id)
        if existing:
            raise PaymentAlreadyAllocatedError(
                event.payment_id, [e.transaction_id for e in existing]
            )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate_payment(self, event: PaymentEvent, created_by: str = "system") -> AllocationOutcome:
        with LogContext.bind(student_id=event.student_id, payment_id=event.payment_id):
            self.locks.acquire(event.student_id)
            try:
                self._validate(event)
                if not self.obligations.has_accrual_history(event.student_id):
                    raise NoOutstandingObligationsError(event.student_id)
            except AllocationError as exc:
                logger.warning(
                    "allocation_rejected",
                    extra={"error_code": exc.code, "detail": str(exc)},
                )
                return AllocationOutcome.failure(event, exc)

            outstanding = [_to_outstanding(o) for o in self.obligations.outstanding(event.student_id)]
            plan = self.allocator.plan(obligations=outstanding, components=event.payments)
            breakdown, transaction_ids = self._persist(event, plan, created_by)

            report = self._report(event.student_id, plan, breakdown, transaction_ids)
            logger.info(
                "payment_allocated",
                extra={
                    "total_allocated": str(report.summary.total_allocated),
                    "advance_payment_amount": str(report.summary.advance_payment_amount),
                    "months_covered": report.summary.months_covered,
                    "remaining_balance": str(report.summary.remaining_balance),
                },
            )
            return AllocationOutcome(
                success=True,
                payment_id=event.payment_id,
                student_id=event.student_id,
                allocation=report,
            )

    def _persist(
        self, event: PaymentEvent, plan: AllocationPlan, created_by: str
    ) -> tuple[list[MonthlyAllocation], list[str]]:
        student_id = event.student_id
        receivable = self.registry.ensure_student_receivable(student_id, event.student_name).code
        debit_account = self.settings.settlement_account(event.method)

        breakdown: list[MonthlyAllocation] = []
        transaction_ids: list[str] = []

        for period in plan.periods_touched:
            applications = plan.applications_for(period)
            total = sum((a.amount for a in applications), ZERO)
            credits = [
                LineSpec.credit_line(
                    receivable,
                    a.amount,
                    description=f"{a.payment_type.capitalize()} settlement {period}",
                    charge_type=a.payment_type,
                    month_settled=period,
                )
                for a in applications
                if a.amount > ZERO
            ]
            fully_settled = all(a.kind == ApplicationKind.FULL for a in applications)
            entry = self.store.post(
                EntryDraft(
                    entry_date=event.date,
                    description=f"Payment allocation - {student_id} - {period}",
                    source=EntrySource.PAYMENT.value,
                    lines=(
                        LineSpec.debit_line(
                            debit_account, total, description=f"Payment received ({event.method})"
                        ),
                        *credits,
                    ),
                    reference=event.payment_id,
                    source_id=event.payment_id,
                    source_model="Payment",
                    residence_id=event.residence_id,
                    student_id=student_id,
                    metadata=SettlementMetadata(
                        student_id=student_id,
                        payment_id=event.payment_id,
                        payment_types=tuple(sorted({a.payment_type for a in applications})),
                        allocation_type=AllocationType.FULL if fully_settled else AllocationType.PARTIAL,
                        month_settled=period,
                        payment_method=event.method,
                    ),
                    created_by=created_by,
                )
            )
            transaction_ids.append(entry.transaction_id)
            breakdown.extend(
                MonthlyAllocation(
                    month=period,
                    payment_type=a.payment_type,
                    amount_allocated=a.amount,
                    original_outstanding=a.original_outstanding,
                    new_outstanding=a.new_outstanding,
                    allocation_type=a.kind.value,
                    transaction_id=entry.transaction_id,
                )
                for a in applications
            )

        if plan.advances:
            entry = self._post_advance(event, plan, debit_account, created_by)
            transaction_ids.append(entry.transaction_id)
            breakdown.extend(
                MonthlyAllocation(
                    month=None,
                    payment_type=adv.payment_type,
                    amount_allocated=adv.amount,
                    original_outstanding=ZERO,
                    new_outstanding=ZERO,
                    allocation_type=AllocationType.ADVANCE.value,
                    transaction_id=entry.transaction_id,
                )
                for adv in plan.advances
            )
        return breakdown, transaction_ids

    def _advance_credit_account(self, student_id: str, payment_type: str,
                                student_name: str | None) -> str:
        # A deposit paid ahead is still a held deposit
        if PaymentType(payment_type) == PaymentType.DEPOSIT:
            return self.settings.codes.deposits_held
        return self.registry.ensure_student_advance(student_id, student_name).code

    def _post_advance(self, event: PaymentEvent, plan: AllocationPlan, debit_account: str,
                      created_by: str):
        credits = [
            LineSpec.credit_line(
                self._advance_credit_account(event.student_id, adv.payment_type, event.student_name),
                adv.amount,
                description=f"Advance {adv.payment_type} payment",
                charge_type=adv.payment_type,
            )
            for adv in plan.advances
        ]
        entry = self.store.post(
            EntryDraft(
                entry_date=event.date,
                description=f"Advance payment - {event.student_id}",
                source=EntrySource.PAYMENT.value,
                lines=(
                    LineSpec.debit_line(
                        debit_account, plan.total_advance,
                        description=f"Payment received ({event.method})",
                    ),
                    *credits,
                ),
                reference=event.payment_id,
                source_id=event.payment_id,
                source_model="Payment",
                residence_id=event.residence_id,
                student_id=event.student_id,
                metadata=SettlementMetadata(
                    student_id=event.student_id,
                    payment_id=event.payment_id,
                    payment_types=tuple(adv.payment_type for adv in plan.advances),
                    allocation_type=AllocationType.ADVANCE,
                    payment_method=event.method,
                ),
                created_by=created_by,
            )
        )
        logger.info(
            "advance_payment_recorded",
            extra={
                "transaction_id": entry.transaction_id,
                "amount": str(plan.total_advance),
            },
        )
        return entry

    def _report(self, student_id: str, plan: AllocationPlan,
                breakdown: Iterable[MonthlyAllocation], transaction_ids: list[str]) -> AllocationReport:
        periods = plan.periods_touched
        summary = AllocationSummary(
            total_allocated=plan.total_applied,
            remaining_balance=self.obligations.total_outstanding(student_id),
            months_covered=len(periods),
            advance_payment_amount=plan.total_advance,
            oldest_month_settled=periods[0] if periods else None,
            newest_month_settled=periods[-1] if periods else None,
        )
        return AllocationReport(
            summary=summary,
            monthly_breakdown=tuple(breakdown),
            transaction_ids=tuple(transaction_ids),
        )

    # ------------------------------------------------------------------
    # Advance release
    # ------------------------------------------------------------------

    def apply_advance_balance(self, student_id: str, as_of: date | None = None,
                              created_by: str = "system") -> AdvanceReleaseResult:
        """
        Release the student's advance balance against outstanding rent,
        oldest period first.  Whatever cannot be applied stays on the
        advance account.

        Rent and admin paid ahead both sit on the student's 2200 sub-account
        as unearned income, and the whole balance is released as rent.
        Deposits paid ahead stay on 2020 and are never released here.
        """
        with LogContext.bind(student_id=student_id):
            self.locks.acquire(student_id)
            when = as_of or self.clock.today()
            advance_code = self.registry.advance_code(student_id)
            available = self.ledger.account_balance(advance_code).balance
            if available <= ZERO:
                return AdvanceReleaseResult(student_id, ZERO, ZERO, ())

            outstanding = [_to_outstanding(o) for o in self.obligations.outstanding(student_id)]
            plan = self.allocator.plan(
                obligations=outstanding,
                components=[PaymentComponent(PaymentType.RENT.value, available)],
            )

            receivable = self.registry.receivable_code(student_id)
            breakdown: list[MonthlyAllocation] = []
            for application in plan.applications:
                entry = self.store.post(
                    EntryDraft(
                        entry_date=when,
                        description=f"Advance applied - {student_id} - {application.period}",
                        source=EntrySource.ADJUSTMENT.value,
                        lines=(
                            LineSpec.debit_line(
                                advance_code, application.amount,
                                description="Advance payment applied",
                            ),
                            LineSpec.credit_line(
                                receivable,
                                application.amount,
                                description=f"Rent settlement {application.period}",
                                charge_type=application.payment_type,
                                month_settled=application.period,
                            ),
                        ),
                        reference=f"ADVANCE-RELEASE-{student_id}",
                        source_id=student_id,
                        source_model="AdvanceBalance",
                        student_id=student_id,
                        metadata=SettlementMetadata(
                            student_id=student_id,
                            payment_id=f"ADVANCE-RELEASE-{student_id}",
                            payment_types=(application.payment_type,),
                            allocation_type=AllocationType.ADVANCE_RELEASE,
                            month_settled=application.period,
                        ),
                        created_by=created_by,
                    )
                )
                breakdown.append(
                    MonthlyAllocation(
                        month=application.period,
                        payment_type=application.payment_type,
                        amount_allocated=application.amount,
                        original_outstanding=application.original_outstanding,
                        new_outstanding=application.new_outstanding,
                        allocation_type=AllocationType.ADVANCE_RELEASE.value,
                        transaction_id=entry.transaction_id,
                    )
                )

            logger.info(
                "advance_balance_applied",
                extra={
                    "released": str(plan.total_applied),
                    "advance_remaining": str(plan.total_advance),
                    "periods_touched": list(plan.periods_touched),
                },
            )
            return AdvanceReleaseResult(
                student_id=student_id,
                released=plan.total_applied,
                advance_remaining=plan.total_advance,
                breakdown=tuple(breakdown),
            )
