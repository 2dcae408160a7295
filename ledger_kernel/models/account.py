"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts, including
    per-student receivable and advance sub-accounts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account.code is globally unique (uq_account_code) and maps to exactly
      one account_type (AccountRegistry raises AccountConflictError).
    - normal_balance is derived from account_type and never set by callers.
    - Accounts are deactivated, never deleted.

Audit relevance:
    Lines denormalize account_name and account_type at post time, so a later
    rename does not rewrite history.
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"
    INCOME = "Income"
    EXPENSE = "Expense"

    @property
    def normal_balance(self) -> "NormalBalance":
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


# Separator between a control account code and a student id
SUBACCOUNT_SEPARATOR = "-"


class Account(TrackedBase):
    """
    Chart of Accounts entry.

    Contract:
        code is unique.  Sub-accounts carry parent_code so balances can be
        rolled up to their control account (1100-* -> 1100).

    Guarantees:
        - account_type is one of Asset, Liability, Equity, Income, Expense.
        - normal_balance is consistent with account_type.

    Non-goals:
        - Hierarchies deeper than control account + one sub-account level.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_parent", "parent_code"),
    )

    code: Mapped[str] = mapped_column(String(80), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Statement grouping, e.g. "Current Assets"
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parent_code: Mapped[str | None] = mapped_column(String(80), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_subaccount(self) -> bool:
        return self.parent_code is not None
