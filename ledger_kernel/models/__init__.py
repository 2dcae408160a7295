"""Domain models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.student_lock import StudentLedgerLock
from ledger_kernel.models.transaction_entry import (
    CHARGE_ORDER,
    ChargeType,
    EntrySource,
    EntryStatus,
    TransactionEntry,
    TransactionLine,
)

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "CHARGE_ORDER",
    "ChargeType",
    "EntrySource",
    "EntryStatus",
    "StudentLedgerLock",
    "TransactionEntry",
    "TransactionLine",
]
