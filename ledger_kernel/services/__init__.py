"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_store import LedgerFilter, LedgerStore
from ledger_kernel.services.reversal_service import ReversalResult, ReversalService
from ledger_kernel.services.student_lock_service import StudentLockRegistry, StudentLockService

__all__ = [
    "AccountRegistry",
    "LedgerFilter",
    "LedgerStore",
    "ReversalResult",
    "ReversalService",
    "StudentLockRegistry",
    "StudentLockService",
]
