"""
Ledger Invariants Contract.

These invariants are structural law for the rental ledger. No configuration
switch may turn them off. The enforcement is distributed across LedgerStore,
the ORM immutability listeners, AccrualService and StudentLockService.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Configuration may influence *what* gets posted (rates, account codes,
    proration), never *whether* these rules apply.
    """

    DOUBLE_ENTRY_BALANCE = "double_entry_balance"
    """Sum of debits equals sum of credits, to the cent, in every entry.
    Enforced by LedgerStore.post before any row is flushed."""

    ONE_SIDED_LINES = "one_sided_lines"
    """Every line has exactly one non-zero side and no negative amounts.
    Enforced by LedgerStore.post and by the TransactionLine validator."""

    IMMUTABILITY = "immutability"
    """Posted entries and lines are never edited. Corrections are new
    entries. Enforced by ledger_kernel.db.immutability listeners."""

    ACCRUAL_IDEMPOTENCY = "accrual_idempotency"
    """At most one posted rental accrual per (student, period). Enforced by
    the uq_posted_accrual_student_period partial unique index."""

    PERIOD_TAGGING = "period_tagging"
    """Every non-advance settlement credit on a receivable carries the
    period it settles. Enforced by SettlementMetadata and AllocationService."""

    STUDENT_SERIALIZATION = "student_serialization"
    """Read-compute-write of one student's obligations is serialized.
    Enforced by StudentLockService row locks."""


ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# The kernel package may not import from these packages.
# Enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "ledger_services",
    "ledger_config",
    "ledger_engines",
)
