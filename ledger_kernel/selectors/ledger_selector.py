"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only access to transaction entries and account
    balances.  Converts ORM rows to frozen DTOs.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Read-only.
    - Balances count posted and reversed entries, so a reversed original
      and its posted reversal cancel out.  Balances are always derived
      from the authoritative lines.
    - Streaming: ``query`` never materializes the full result set.

Failure modes:
    - Returns None / empty when nothing matches (never raises on absence).
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator
from uuid import UUID

from sqlalchemy import BigInteger, func, or_, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, from_minor_units
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.transaction_entry import (
    EntrySource,
    EntryStatus,
    TransactionEntry,
    TransactionLine,
)
from ledger_kernel.selectors.base import BaseSelector

DEFAULT_YIELD_PER = 200

# A reversed entry stays on the books next to the reversal that cancels it.
BALANCE_STATUSES = (EntryStatus.POSTED.value, EntryStatus.REVERSED.value)


@dataclass(frozen=True)
class LedgerFilter:
    """
    Criteria for ledger queries.  Every field is optional; set fields are
    ANDed together.
    """

    sources: tuple[str, ...] | None = None
    date_from: date | None = None
    date_to: date | None = None
    student_id: str | None = None
    account_code_prefix: str | None = None
    statuses: tuple[str, ...] | None = None
    reference: str | None = None
    accrual_period: str | None = None

    def to_statement(self):
        stmt = select(TransactionEntry)
        if self.sources:
            stmt = stmt.where(TransactionEntry.source.in_([EntrySource(s).value for s in self.sources]))
        if self.date_from is not None:
            stmt = stmt.where(TransactionEntry.entry_date >= self.date_from)
        if self.date_to is not None:
            stmt = stmt.where(TransactionEntry.entry_date <= self.date_to)
        if self.student_id is not None:
            stmt = stmt.where(TransactionEntry.student_id == self.student_id)
        if self.statuses:
            stmt = stmt.where(TransactionEntry.status.in_([EntryStatus(s).value for s in self.statuses]))
        if self.reference is not None:
            stmt = stmt.where(TransactionEntry.reference == self.reference)
        if self.accrual_period is not None:
            stmt = stmt.where(TransactionEntry.accrual_period == self.accrual_period)
        if self.account_code_prefix:
            touching = select(TransactionLine.entry_id).where(
                TransactionLine.account_code.startswith(self.account_code_prefix, autoescape=True)
            )
            stmt = stmt.where(TransactionEntry.id.in_(touching))
        return stmt.order_by(
            TransactionEntry.entry_date,
            TransactionEntry.created_at,
            TransactionEntry.transaction_id,
        )


@dataclass(frozen=True)
class TransactionLineDTO:
    account_code: str
    account_name: str
    account_type: str
    debit: Decimal
    credit: Decimal
    description: str | None
    charge_type: str | None
    month_settled: str | None
    line_seq: int


@dataclass(frozen=True)
class TransactionEntryDTO:
    id: UUID
    transaction_id: str
    date: date
    description: str
    reference: str | None
    source: str
    source_id: str | None
    residence_id: str | None
    status: str
    student_id: str | None
    accrual_period: str | None
    metadata: dict | None
    total_debit: Decimal
    total_credit: Decimal
    reversal_of_id: UUID | None
    posted_at: datetime | None
    lines: tuple[TransactionLineDTO, ...]

    @property
    def is_balanced(self) -> bool:
        return (
            self.total_debit == self.total_credit
            and sum((l.debit for l in self.lines), ZERO) == sum((l.credit for l in self.lines), ZERO)
        )


@dataclass(frozen=True)
class AccountBalanceDTO:
    account_code: str
    account_type: str
    debits: Decimal
    credits: Decimal

    @property
    def balance(self) -> Decimal:
        """Balance on the account's normal side."""
        if AccountType(self.account_type).normal_balance.value == "debit":
            return self.debits - self.credits
        return self.credits - self.debits


def to_entry_dto(entry: TransactionEntry) -> TransactionEntryDTO:
    """Convert an ORM entry to its DTO."""
    return TransactionEntryDTO(
        id=entry.id,
        transaction_id=entry.transaction_id,
        date=entry.entry_date,
        description=entry.description,
        reference=entry.reference,
        source=EntrySource(entry.source).value,
        source_id=entry.source_id,
        residence_id=entry.residence_id,
        status=EntryStatus(entry.status).value,
        student_id=entry.student_id,
        accrual_period=entry.accrual_period,
        metadata=dict(entry.entry_metadata) if entry.entry_metadata else None,
        total_debit=entry.total_debit,
        total_credit=entry.total_credit,
        reversal_of_id=entry.reversal_of_id,
        posted_at=entry.posted_at,
        lines=tuple(
            TransactionLineDTO(
                account_code=line.account_code,
                account_name=line.account_name,
                account_type=line.account_type,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
                charge_type=line.charge_type,
                month_settled=line.month_settled,
                line_seq=line.line_seq,
            )
            for line in sorted(entry.lines, key=lambda x: x.line_seq)
        ),
    )


class LedgerSelector(BaseSelector[TransactionEntry]):
    """
    Selector for entry and balance queries.

    Guarantees:
        - ``query`` is lazy: rows are fetched in ``yield_per`` batches.
        - Lines inside each DTO are ordered by line_seq.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def query(self, criteria: LedgerFilter | None = None,
              yield_per: int = DEFAULT_YIELD_PER) -> Iterator[TransactionEntryDTO]:
        stmt = (criteria or LedgerFilter()).to_statement().execution_options(yield_per=yield_per)
        for entry in self.session.scalars(stmt):
            yield to_entry_dto(entry)

    def get(self, transaction_id: str) -> TransactionEntryDTO | None:
        entry = self.session.execute(
            select(TransactionEntry).where(TransactionEntry.transaction_id == transaction_id)
        ).scalar_one_or_none()
        return to_entry_dto(entry) if entry is not None else None

    def entries_for_payment(self, payment_id: str, posted_only: bool = True) -> list[TransactionEntryDTO]:
        stmt = select(TransactionEntry).where(
            TransactionEntry.reference == payment_id,
            TransactionEntry.source == EntrySource.PAYMENT.value,
        )
        if posted_only:
            stmt = stmt.where(TransactionEntry.status == EntryStatus.POSTED.value)
        return [to_entry_dto(e) for e in self.session.scalars(stmt.order_by(TransactionEntry.created_at))]

    def account_balance(
        self,
        account_code: str,
        as_of: date | None = None,
        include_subaccounts: bool = False,
    ) -> AccountBalanceDTO:
        """
        Sum of debits and credits on an account.

        A reversed entry still counts, alongside the posted reversal that
        cancels it, so a reversal nets the account back to where it was.
        Pending entries never count.

        With ``include_subaccounts`` the control account's balance includes
        every ``<code>-*`` sub-account (1100 rolls up 1100-<studentId>).
        """
        code_filter = TransactionLine.account_code == account_code
        if include_subaccounts:
            code_filter = or_(
                code_filter,
                TransactionLine.account_code.in_(
                    select(Account.code).where(Account.parent_code == account_code)
                ),
            )
        stmt = (
            select(
                func.coalesce(func.sum(TransactionLine.debit, type_=BigInteger), 0, type_=BigInteger),
                func.coalesce(func.sum(TransactionLine.credit, type_=BigInteger), 0, type_=BigInteger),
            )
            .join(TransactionEntry, TransactionLine.entry_id == TransactionEntry.id)
            .where(code_filter, TransactionEntry.status.in_(BALANCE_STATUSES))
        )
        if as_of is not None:
            stmt = stmt.where(TransactionEntry.entry_date <= as_of)
        debit_cents, credit_cents = self.session.execute(stmt).one()

        account = self.session.execute(
            select(Account).where(Account.code == account_code)
        ).scalar_one_or_none()
        account_type = AccountType(account.account_type).value if account else AccountType.ASSET.value
        return AccountBalanceDTO(
            account_code=account_code,
            account_type=account_type,
            debits=from_minor_units(int(debit_cents)),
            credits=from_minor_units(int(credit_cents)),
        )
