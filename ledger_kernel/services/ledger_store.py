"""
LedgerStore -- the single posting boundary for transaction entries.

Responsibility:
    Validates and persists EntryDraft objects as posted TransactionEntry
    rows, streams entries back out by filter, and hosts the two lifecycle
    operations that touch existing entries (approval stamp and the
    administrative purge used by duplicate cleanup).  Reversal is delegated
    to ReversalService.

Architecture position:
    Kernel > Services.  Every write path (accrual, allocation, reversal,
    correction) goes through ``post``.

Invariants enforced:
    - Balance: total debits == total credits to the cent, checked before any
      row is flushed (UnbalancedEntryError).
    - One-sided lines: exactly one of debit/credit is non-zero, no negative
      amounts, no sub-cent amounts (InvalidLineError).
    - Strict accounts: every code must resolve to an active account
      (UnknownAccountError, InactiveAccountError).
    - Accrual idempotency: the insert runs in a savepoint; a violation of
      uq_posted_accrual_student_period becomes DuplicateAccrualError and the
      caller's transaction stays usable.

Failure modes:
    - All of the above raise before the caller's transaction is affected.
    - IntegrityError for any other constraint violation propagates.

Audit relevance:
    Every posted entry is logged with transaction_id, source, totals and
    line count.  Purges log every removed transaction_id with the reason.
"""

import secrets
import string
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.immutability import PURGE_FLAG
from ledger_kernel.db.types import ZERO, is_cents_exact
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import EntryDraft, LineSpec
from ledger_kernel.exceptions import (
    DuplicateAccrualError,
    EntryNotFoundError,
    InactiveAccountError,
    InvalidLineError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.transaction_entry import (
    ChargeType,
    EntrySource,
    EntryStatus,
    TransactionEntry,
    TransactionLine,
)
from ledger_kernel.selectors.ledger_selector import LedgerFilter
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")

_ID_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_YIELD_PER = 200


def generate_transaction_id(clock: Clock) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"TXN{clock.now():%Y%m%d%H%M%S}{suffix}"


class LedgerStore(BaseService[TransactionEntry]):
    """
    Posting boundary and entry repository.

    Contract:
        ``post`` either flushes one complete, balanced, posted entry or
        raises without leaving anything in the session.

    Guarantees:
        - Stored total_debit / total_credit equal the line sums.
        - account_name / account_type are copied from the registry at post
          time.

    Non-goals:
        - Does NOT commit.
        - Does NOT edit posted entries; corrections are new entries.
    """

    def __init__(self, session: Session, clock: Clock | None = None,
                 registry: AccountRegistry | None = None):
        super().__init__(session, clock)
        self.registry = registry or AccountRegistry(session, self.clock)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def _validate_line(self, line: LineSpec) -> None:
        for side, value in (("debit", line.debit), ("credit", line.credit)):
            if not isinstance(value, Decimal):
                raise InvalidLineError(line.account_code, f"{side} must be Decimal, got {type(value).__name__}")
            if value < ZERO:
                raise InvalidLineError(line.account_code, f"negative {side} {value}")
            if not is_cents_exact(value):
                raise InvalidLineError(line.account_code, f"{side} {value} has sub-cent precision")
        if (line.debit > ZERO) == (line.credit > ZERO):
            raise InvalidLineError(
                line.account_code,
                "exactly one of debit/credit must be non-zero "
                f"(debit={line.debit}, credit={line.credit})",
            )

    def post(self, draft: EntryDraft) -> TransactionEntry:
        """
        Validate and persist a draft as a posted entry.

        Raises:
            InvalidLineError, UnknownAccountError, InactiveAccountError,
            UnbalancedEntryError, DuplicateAccrualError.
        """
        if len(draft.lines) < 2:
            raise InvalidLineError(
                draft.lines[0].account_code if draft.lines else "<none>",
                "an entry needs at least two lines",
            )
        for line in draft.lines:
            self._validate_line(line)

        total_debit = draft.total_debit
        total_credit = draft.total_credit
        if total_debit != total_credit:
            logger.error(
                "entry_unbalanced",
                extra={
                    "transaction_id": draft.transaction_id,
                    "source": EntrySource(draft.source).value,
                    "debits": str(total_debit),
                    "credits": str(total_credit),
                },
            )
            raise UnbalancedEntryError(str(total_debit), str(total_credit), draft.transaction_id)

        accounts = {}
        for line in draft.lines:
            account = self.registry.resolve(line.account_code)
            if not account.is_active:
                raise InactiveAccountError(line.account_code)
            accounts[line.account_code] = account

        source = EntrySource(draft.source)
        entry = TransactionEntry(
            transaction_id=draft.transaction_id or generate_transaction_id(self.clock),
            entry_date=draft.entry_date,
            description=draft.description,
            reference=draft.reference,
            source=source.value,
            source_id=draft.source_id,
            source_model=draft.source_model,
            residence_id=draft.residence_id,
            student_id=draft.student_id,
            accrual_period=draft.accrual_period,
            entry_metadata=draft.metadata.to_dict() if draft.metadata is not None else None,
            total_debit=total_debit,
            total_credit=total_credit,
            reversal_of_id=draft.reversal_of_id,
            status=EntryStatus.POSTED.value,
            posted_at=self.clock.now(),
            created_by=draft.created_by,
        )
        for seq, line in enumerate(draft.lines):
            account = accounts[line.account_code]
            entry.lines.append(
                TransactionLine(
                    line_seq=seq,
                    account_code=line.account_code,
                    account_name=account.name,
                    account_type=AccountType(account.account_type).value,
                    debit=line.debit,
                    credit=line.credit,
                    description=line.description,
                    charge_type=ChargeType(line.charge_type).value if line.charge_type else None,
                    month_settled=line.month_settled,
                    created_by=draft.created_by,
                )
            )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            if source == EntrySource.RENTAL_ACCRUAL and draft.accrual_period:
                existing = self._find_accrual(draft.student_id, draft.accrual_period)
                raise DuplicateAccrualError(
                    draft.student_id,
                    draft.accrual_period,
                    existing.transaction_id if existing is not None else None,
                )
            raise

        logger.info(
            "entry_posted",
            extra={
                "transaction_id": entry.transaction_id,
                "source": source.value,
                "entry_date": entry.entry_date,
                "total": str(total_debit),
                "line_count": len(entry.lines),
                "student_id": entry.student_id,
            },
        )
        return entry

    def _find_accrual(self, student_id: str | None, period: str) -> TransactionEntry | None:
        return self.session.execute(
            select(TransactionEntry).where(
                TransactionEntry.student_id == student_id,
                TransactionEntry.accrual_period == period,
                TransactionEntry.source == EntrySource.RENTAL_ACCRUAL.value,
                TransactionEntry.status == EntryStatus.POSTED.value,
            )
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, transaction_id: str, for_update: bool = False) -> TransactionEntry:
        stmt = select(TransactionEntry).where(TransactionEntry.transaction_id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        entry = self.session.execute(stmt).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(transaction_id)
        return entry

    def find_accrual(self, student_id: str, period: str) -> TransactionEntry | None:
        return self._find_accrual(student_id, period)

    def find_by_filter(self, criteria: LedgerFilter | None = None,
                       yield_per: int = DEFAULT_YIELD_PER) -> Iterator[TransactionEntry]:
        """Lazily stream matching entries in (date, created) order."""
        stmt = (criteria or LedgerFilter()).to_statement().execution_options(yield_per=yield_per)
        yield from self.session.scalars(stmt)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reverse(self, transaction_id: str, reason: str, effective_date: date | None = None,
                created_by: str = "system"):
        """Post the inverse of an entry; see ReversalService.reverse."""
        from ledger_kernel.services.reversal_service import ReversalService

        return ReversalService(self).reverse(
            transaction_id, reason, effective_date=effective_date, created_by=created_by
        )

    def approve(self, transaction_id: str, approved_by: str) -> TransactionEntry:
        entry = self.get(transaction_id, for_update=True)
        entry.approved_by = approved_by
        entry.approved_at = self.clock.now()
        self.session.flush()
        logger.info(
            "entry_approved",
            extra={"transaction_id": transaction_id, "approved_by": approved_by},
        )
        return entry

    def purge(self, transaction_ids: Iterable[str], reason: str) -> list[str]:
        """
        Administrative delete of posted entries.

        Used only to remove duplicate artefacts (e.g. duplicate reversals);
        every removal is logged with its reason.
        """
        removed: list[str] = []
        self.session.info[PURGE_FLAG] = True
        try:
            for transaction_id in transaction_ids:
                entry = self.get(transaction_id)
                self.session.delete(entry)
                removed.append(transaction_id)
                logger.warning(
                    "entry_purged",
                    extra={
                        "transaction_id": transaction_id,
                        "source": str(entry.source),
                        "reason": reason,
                    },
                )
            self.session.flush()
        finally:
            self.session.info.pop(PURGE_FLAG, None)
        return removed
