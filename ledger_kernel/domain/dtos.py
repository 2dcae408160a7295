"""
Write-side value objects: what a caller hands to LedgerStore.post.

LineSpec and EntryDraft are immutable, carry Decimal amounts only, and do
no I/O.  Balance and account checks happen in the store, which is the single
posting boundary.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.metadata import EntryMetadata


@dataclass(frozen=True)
class LineSpec:
    """One intended debit or credit."""

    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None
    charge_type: str | None = None
    month_settled: str | None = None

    @classmethod
    def debit_line(cls, account_code: str, amount: Decimal | int | str, **kwargs) -> "LineSpec":
        return cls(account_code=account_code, debit=to_money(amount), **kwargs)

    @classmethod
    def credit_line(cls, account_code: str, amount: Decimal | int | str, **kwargs) -> "LineSpec":
        return cls(account_code=account_code, credit=to_money(amount), **kwargs)

    @property
    def amount(self) -> Decimal:
        return self.debit if self.debit else self.credit

    def swapped(self) -> "LineSpec":
        """Same account and amount on the opposite side."""
        return LineSpec(
            account_code=self.account_code,
            debit=self.credit,
            credit=self.debit,
            description=self.description,
            charge_type=self.charge_type,
            month_settled=None,
        )


@dataclass(frozen=True)
class EntryDraft:
    """A complete entry ready for posting."""

    entry_date: date
    description: str
    source: str
    lines: tuple[LineSpec, ...]
    reference: str | None = None
    source_id: str | None = None
    source_model: str | None = None
    residence_id: str | None = None
    student_id: str | None = None
    accrual_period: str | None = None
    metadata: EntryMetadata | None = None
    transaction_id: str | None = None
    created_by: str = "system"
    reversal_of_id: object | None = field(default=None, repr=False)

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)
