"""Selectors for read-only queries (read side)."""

from ledger_kernel.selectors.ledger_selector import (
    AccountBalanceDTO,
    LedgerFilter,
    LedgerSelector,
    TransactionEntryDTO,
    TransactionLineDTO,
)
from ledger_kernel.selectors.obligation_selector import ObligationDTO, ObligationSelector

__all__ = [
    "AccountBalanceDTO",
    "LedgerFilter",
    "LedgerSelector",
    "ObligationDTO",
    "ObligationSelector",
    "TransactionEntryDTO",
    "TransactionLineDTO",
]
