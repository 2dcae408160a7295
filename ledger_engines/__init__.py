"""
Module: ledger_engines
Responsibility:
    Re-exports the pure calculation engines: rental accrual rates and the
    Smart FIFO allocation planner.

Invariants enforced:
    - Purity: engines never read the clock or touch the database.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.
"""

from ledger_engines.accrual import (
    AccrualAccounts,
    AccrualCalculator,
    ChargeRates,
    LeaseTerms,
    lease_periods,
    prorated_rent,
)
from ledger_engines.allocation import (
    AllocationPlan,
    ApplicationKind,
    OutstandingPeriod,
    PaymentComponent,
    PaymentType,
    PlannedAdvance,
    PlannedApplication,
    SmartFifoAllocator,
)
from ledger_engines.tracer import traced_engine

__all__ = [
    "AccrualAccounts",
    "AccrualCalculator",
    "AllocationPlan",
    "ApplicationKind",
    "ChargeRates",
    "LeaseTerms",
    "OutstandingPeriod",
    "PaymentComponent",
    "PaymentType",
    "PlannedAdvance",
    "PlannedApplication",
    "SmartFifoAllocator",
    "lease_periods",
    "prorated_rent",
    "traced_engine",
]
