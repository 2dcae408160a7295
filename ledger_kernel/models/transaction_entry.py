"""
Module: ledger_kernel.models.transaction_entry
Responsibility: ORM persistence for TransactionEntry (the double-entry
    document) and TransactionLine (one debit or credit on one account).
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - transaction_id is unique (uq_transaction_id).
    - At most one posted entry per (student_id, accrual_period, source)
      (uq_posted_accrual_student_period, a partial unique index).  Only rental
      accruals populate accrual_period, so the index makes accrual
      insert-or-skip atomic without restricting any other source.  A
      reversed accrual leaves the index, so its month can be accrued again.
    - Money columns are integer cents (MinorUnits).
    - Posted entries and their lines are immutable (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate transaction_id or duplicate accrual; the
      store translates the latter into DuplicateAccrualError.

Audit relevance:
    reversal_of_id links every reversal to the entry it cancels, and
    month_settled on each settlement line records which obligation period a
    payment paid for.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, JSON, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import ZERO, MinorUnits


class EntrySource(str, Enum):
    """Closed set of originating document kinds."""

    PAYMENT = "payment"
    INVOICE = "invoice"
    MANUAL = "manual"
    ADJUSTMENT = "adjustment"
    VENDOR_PAYMENT = "vendor_payment"
    EXPENSE_PAYMENT = "expense_payment"
    RENTAL_ACCRUAL = "rental_accrual"
    RENTAL_ACCRUAL_REVERSAL = "rental_accrual_reversal"
    PAYMENT_REVERSAL = "payment_reversal"
    REVERSAL = "reversal"
    FORFEITURE = "forfeiture"

    @property
    def reversal_source(self) -> "EntrySource":
        """Source tag used for the inverse of an entry with this source."""
        if self == EntrySource.RENTAL_ACCRUAL:
            return EntrySource.RENTAL_ACCRUAL_REVERSAL
        if self == EntrySource.PAYMENT:
            return EntrySource.PAYMENT_REVERSAL
        return EntrySource.REVERSAL

    @property
    def is_reversal(self) -> bool:
        return self in (
            EntrySource.RENTAL_ACCRUAL_REVERSAL,
            EntrySource.PAYMENT_REVERSAL,
            EntrySource.REVERSAL,
        )


class EntryStatus(str, Enum):
    """Lifecycle of an entry.  Drafts never count toward balances."""

    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


class ChargeType(str, Enum):
    """Obligation component an AR line belongs to."""

    RENT = "rent"
    ADMIN = "admin"
    DEPOSIT = "deposit"


# FIFO processing order of payment components
CHARGE_ORDER: tuple[ChargeType, ...] = (ChargeType.RENT, ChargeType.ADMIN, ChargeType.DEPOSIT)


class TransactionEntry(TrackedBase):
    """
    A balanced double-entry document.

    Contract:
        Written only through LedgerStore.post, which guarantees
        total_debit == total_credit == sum of line amounts.

    Guarantees:
        - entry_date is the economic date (period start for accruals, payment
          date for settlements), never the creation timestamp.
        - status transitions are DRAFT -> POSTED -> REVERSED only.

    Non-goals:
        - Multi-currency; all amounts share one implicit currency.
    """

    __tablename__ = "transaction_entries"

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_transaction_id"),
        Index(
            "uq_posted_accrual_student_period",
            "student_id",
            "accrual_period",
            "source",
            unique=True,
            postgresql_where=text("status = 'posted'"),
            sqlite_where=text("status = 'posted'"),
        ),
        Index("idx_entry_date", "date"),
        Index("idx_entry_source", "source"),
        Index("idx_entry_student", "student_id"),
        Index("idx_entry_status", "status"),
        Index("idx_entry_reference", "reference"),
    )

    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    entry_date: Mapped[date] = mapped_column("date", nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # Correlation id: payment id for settlements, original id for reversals
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    source: Mapped[EntrySource] = mapped_column(String(40), nullable=False)

    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    source_model: Mapped[str | None] = mapped_column(String(64), nullable=True)

    residence_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[EntryStatus] = mapped_column(
        String(20),
        nullable=False,
        default=EntryStatus.DRAFT,
    )

    student_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # "YYYY-MM"; populated for rental accruals only
    accrual_period: Mapped[str | None] = mapped_column(String(7), nullable=True)

    entry_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    total_debit: Mapped[Decimal] = mapped_column(MinorUnits(), nullable=False, default=ZERO)

    total_credit: Mapped[Decimal] = mapped_column(MinorUnits(), nullable=False, default=ZERO)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transaction_entries.id"),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["TransactionLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransactionLine.line_seq",
    )

    reversal_of: Mapped["TransactionEntry | None"] = relationship(
        remote_side="TransactionEntry.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<TransactionEntry {self.transaction_id} source={self.source} status={self.status}>"

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED

    @property
    def is_reversed(self) -> bool:
        return self.status == EntryStatus.REVERSED

    @property
    def line_debits(self) -> Decimal:
        """Sum of line debits (may differ from total_debit on corrupt rows)."""
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def line_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.line_debits == self.line_credits


class TransactionLine(TrackedBase):
    """
    One side of one amount on one account.

    Contract:
        Exactly one of debit / credit is non-zero and neither is negative.
        Enforced by LedgerStore.post; audit_ledger reports rows that violate
        it (e.g. from imports that bypassed the store).
    """

    __tablename__ = "transaction_lines"

    __table_args__ = (
        Index("idx_line_entry", "entry_id"),
        Index("idx_line_account", "account_code"),
        Index("idx_line_month_settled", "month_settled"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transaction_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    account_code: Mapped[str] = mapped_column(String(80), nullable=False)

    account_name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[str] = mapped_column(String(20), nullable=False)

    debit: Mapped[Decimal] = mapped_column(MinorUnits(), nullable=False, default=ZERO)

    credit: Mapped[Decimal] = mapped_column(MinorUnits(), nullable=False, default=ZERO)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    charge_type: Mapped[ChargeType | None] = mapped_column(String(20), nullable=True)

    # Obligation period this line settles ("YYYY-MM")
    month_settled: Mapped[str | None] = mapped_column(String(7), nullable=True)

    entry: Mapped[TransactionEntry] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<TransactionLine {self.account_code} "
            f"Dr {self.debit} Cr {self.credit}>"
        )

    @property
    def amount(self) -> Decimal:
        return self.debit if self.debit else self.credit

    @property
    def is_debit(self) -> bool:
        return self.debit > 0
