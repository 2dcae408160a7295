"""
ledger_services -- stateful orchestration over engines and the kernel.

Responsibility:
    Accruals, Smart FIFO payment allocation, corrections and the
    RentalLedger facade that owns transaction boundaries.

Architecture position:
    Services -- may import ledger_kernel, ledger_engines and ledger_config.
    Nothing below this layer imports from it.
"""

from ledger_services.accrual_service import (
    AccrualOutcome,
    AccrualService,
    AccrualStatus,
    AccrualSummary,
    BatchAccrualResult,
)
from ledger_services.allocation_service import (
    AdvanceReleaseResult,
    AllocationOutcome,
    AllocationReport,
    AllocationService,
    AllocationSummary,
    MonthlyAllocation,
    PaymentEvent,
)
from ledger_services.correction_service import (
    AuditFinding,
    CorrectionService,
    DepositWriteOffResult,
    DuplicateCleanupReport,
    ForfeitureResult,
    LedgerAuditReport,
)
from ledger_services.debtors import (
    DebtorDirectory,
    DebtorRecord,
    StaticDebtorDirectory,
    load_debtor_directory,
)
from ledger_services.rental_ledger import RentalLedger

__all__ = [
    "AccrualOutcome",
    "AccrualService",
    "AccrualStatus",
    "AccrualSummary",
    "AdvanceReleaseResult",
    "AllocationOutcome",
    "AllocationReport",
    "AllocationService",
    "AllocationSummary",
    "AuditFinding",
    "BatchAccrualResult",
    "CorrectionService",
    "DebtorDirectory",
    "DebtorRecord",
    "DepositWriteOffResult",
    "DuplicateCleanupReport",
    "ForfeitureResult",
    "LedgerAuditReport",
    "MonthlyAllocation",
    "PaymentEvent",
    "RentalLedger",
    "StaticDebtorDirectory",
    "load_debtor_directory",
]
