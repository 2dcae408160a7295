"""
Module: ledger_engines.allocation
Responsibility:
    Plan how one payment settles a student's outstanding obligations using
    the Smart FIFO rules: rent oldest-first across periods, admin and
    deposit whole into the earliest period that owes them, and everything
    left over as an advance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  AllocationService feeds it
    the obligation read model and persists the resulting plan.

Invariants enforced:
    - Conservation: total_applied + total_advance == sum of payment
      components, to the cent.
    - FIFO: rent never settles a later period while an earlier one still
      has rent outstanding.
    - No over-settlement: an application never exceeds the outstanding
      amount it was computed against.
    - Purity: no clock access, no I/O.

Failure modes:
    - ValueError on a negative component or an unknown payment type.

Usage:
    from ledger_engines.allocation import SmartFifoAllocator, OutstandingPeriod, PaymentComponent

    plan = SmartFifoAllocator().plan(
        obligations=[OutstandingPeriod("2025-05", rent=Decimal("220.00"))],
        components=[PaymentComponent("rent", Decimal("300.00"))],
    )
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ledger_engines.tracer import traced_engine
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

ZERO = Decimal("0.00")


class PaymentType(str, Enum):
    """Obligation component a payment component is earmarked for."""

    RENT = "rent"
    ADMIN = "admin"
    DEPOSIT = "deposit"


# Fixed processing order of components
PROCESSING_ORDER: tuple[PaymentType, ...] = (PaymentType.RENT, PaymentType.ADMIN, PaymentType.DEPOSIT)


class ApplicationKind(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


@dataclass(frozen=True)
class PaymentComponent:
    """One earmarked part of a payment."""

    payment_type: str
    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "payment_type", PaymentType(self.payment_type).value)
        if self.amount < ZERO:
            raise ValueError(f"Payment component cannot be negative: {self.amount}")


@dataclass(frozen=True)
class OutstandingPeriod:
    """Outstanding amounts per component for one billing period."""

    period: str
    rent: Decimal = ZERO
    admin: Decimal = ZERO
    deposit: Decimal = ZERO

    def amount_for(self, payment_type: PaymentType) -> Decimal:
        return getattr(self, payment_type.value)

    @property
    def total(self) -> Decimal:
        return self.rent + self.admin + self.deposit


@dataclass(frozen=True)
class PlannedApplication:
    """Part of a component applied to one period."""

    period: str
    payment_type: str
    amount: Decimal
    original_outstanding: Decimal
    new_outstanding: Decimal
    kind: ApplicationKind


@dataclass(frozen=True)
class PlannedAdvance:
    """Part of a component with nothing left to settle."""

    payment_type: str
    amount: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    """
    Complete allocation plan.

    Guarantees:
        - ``total_applied + total_advance == total_payment``.
        - ``applications`` are ordered by (component order, period).
    """

    applications: tuple[PlannedApplication, ...]
    advances: tuple[PlannedAdvance, ...]
    total_payment: Decimal
    outstanding_before: Decimal = ZERO
    outstanding_after: Decimal = ZERO

    @property
    def total_applied(self) -> Decimal:
        return sum((a.amount for a in self.applications), ZERO)

    @property
    def total_advance(self) -> Decimal:
        return sum((a.amount for a in self.advances), ZERO)

    @property
    def periods_touched(self) -> tuple[str, ...]:
        """Periods receiving any application, oldest first."""
        return tuple(sorted({a.period for a in self.applications}))

    def applications_for(self, period: str) -> tuple[PlannedApplication, ...]:
        return tuple(a for a in self.applications if a.period == period)


@dataclass
class _Working:
    """Mutable outstanding state for one period during planning."""

    period: str
    amounts: dict[PaymentType, Decimal] = field(default_factory=dict)


class SmartFifoAllocator:
    """
    Smart FIFO allocation planner.

    Contract:
        Pure function of (obligations, components).  Obligations may be in
        any order; they are sorted by period key (``YYYY-MM`` sorts
        chronologically).

    Non-goals:
        - Does not decide whether a student has accrual history; the
          service handles the "no obligations" failure.
        - Does not choose debit accounts or write entries.
    """

    @traced_engine("smart_fifo_allocation", "1.0", fingerprint_fields=("obligations", "components"))
    def plan(
        self,
        *,
        obligations: Sequence[OutstandingPeriod],
        components: Sequence[PaymentComponent],
    ) -> AllocationPlan:
        working = [
            _Working(o.period, {t: o.amount_for(t) for t in PaymentType})
            for o in sorted(obligations, key=lambda o: o.period)
        ]
        outstanding_before = sum((o.total for o in obligations), ZERO)

        by_type: dict[PaymentType, Decimal] = {t: ZERO for t in PaymentType}
        for component in components:
            by_type[PaymentType(component.payment_type)] += component.amount
        total_payment = sum(by_type.values(), ZERO)

        logger.info(
            "allocation_plan_started",
            extra={
                "period_count": len(working),
                "total_payment": str(total_payment),
                "outstanding_before": str(outstanding_before),
            },
        )

        applications: list[PlannedApplication] = []
        advances: list[PlannedAdvance] = []

        for payment_type in PROCESSING_ORDER:
            amount = by_type[payment_type]
            if amount <= ZERO:
                continue
            match payment_type:
                case PaymentType.RENT:
                    remaining = self._walk_periods(working, payment_type, amount, applications)
                case PaymentType.ADMIN | PaymentType.DEPOSIT:
                    remaining = self._first_period_only(working, payment_type, amount, applications)
            if remaining > ZERO:
                advances.append(PlannedAdvance(payment_type.value, remaining))

        outstanding_after = sum((sum(w.amounts.values(), ZERO) for w in working), ZERO)
        plan = AllocationPlan(
            applications=tuple(applications),
            advances=tuple(advances),
            total_payment=total_payment,
            outstanding_before=outstanding_before,
            outstanding_after=outstanding_after,
        )

        logger.info(
            "allocation_plan_completed",
            extra={
                "total_applied": str(plan.total_applied),
                "total_advance": str(plan.total_advance),
                "periods_touched": list(plan.periods_touched),
            },
        )
        return plan

    @staticmethod
    def _apply(work: _Working, payment_type: PaymentType, amount: Decimal,
               applications: list[PlannedApplication]) -> Decimal:
        """Apply up to ``amount`` to one period; return what was applied."""
        outstanding = work.amounts[payment_type]
        applied = min(amount, outstanding)
        new_outstanding = outstanding - applied
        work.amounts[payment_type] = new_outstanding
        applications.append(
            PlannedApplication(
                period=work.period,
                payment_type=payment_type.value,
                amount=applied,
                original_outstanding=outstanding,
                new_outstanding=new_outstanding,
                kind=ApplicationKind.FULL if new_outstanding == ZERO else ApplicationKind.PARTIAL,
            )
        )
        return applied

    def _walk_periods(self, working: list[_Working], payment_type: PaymentType,
                      amount: Decimal, applications: list[PlannedApplication]) -> Decimal:
        remaining = amount
        for work in working:
            if remaining <= ZERO:
                break
            if work.amounts[payment_type] <= ZERO:
                continue
            remaining -= self._apply(work, payment_type, remaining, applications)
        return remaining

    def _first_period_only(self, working: list[_Working], payment_type: PaymentType,
                           amount: Decimal, applications: list[PlannedApplication]) -> Decimal:
        for work in working:
            if work.amounts[payment_type] > ZERO:
                return amount - self._apply(work, payment_type, amount, applications)
        return amount
