"""
ReversalService -- cancel a posted entry with its exact inverse.

Responsibility:
    Validates reversal preconditions, builds the swapped-sides draft, posts
    it through LedgerStore and marks the original reversed -- all inside the
    caller's transaction.

Architecture position:
    Kernel > Services.  Consumes LedgerStore.  Called by LedgerStore.reverse,
    CorrectionService and RentalLedger.

Invariants enforced:
    - Original lines are never touched; only the original's status moves
      posted -> reversed.
    - The inverse entry is balanced because every line keeps its amount and
      only swaps side.
    - At most one reversal per original: the original is loaded
      ``FOR UPDATE`` and must still be posted.

Failure modes:
    - EntryNotFoundError: no entry with that transaction_id.
    - AlreadyReversedError: the entry is not in posted state.

Audit relevance:
    reversal_of_id and reference both point at the original, and the
    ReversalMetadata carries the reason.
"""

from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from ledger_kernel.domain.dtos import EntryDraft, LineSpec
from ledger_kernel.domain.metadata import ReversalKind, ReversalMetadata
from ledger_kernel.exceptions import AlreadyReversedError, EntryNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.transaction_entry import EntrySource, EntryStatus, TransactionEntry

logger = get_logger("services.reversal")


@dataclass(frozen=True)
class ReversalResult:
    """Immutable result of a successful reversal."""

    original_transaction_id: str
    reversal_transaction_id: str
    reversal_entry_id: UUID
    effective_date: date
    reversed_at: datetime
    reversal_entry: TransactionEntry


class ReversalService:
    """
    Contract:
        Accepts a transaction id and a reason, posts the inverse entry and
        flips the original to reversed.

    Non-goals:
        - Does NOT commit.
        - Does NOT handle partial (line-level) reversals.
    """

    def __init__(self, store):
        self._store = store
        self._session = store.session
        self._clock = store.clock

    def reverse(
        self,
        transaction_id: str,
        reason: str,
        effective_date: date | None = None,
        kind: ReversalKind = ReversalKind.REVERSAL,
        created_by: str = "system",
    ) -> ReversalResult:
        """
        Post the inverse of ``transaction_id``.

        The reversal is dated ``effective_date`` or today's date from the
        injected clock.
        """
        original = self._load_and_validate(transaction_id)
        source = EntrySource(original.source)
        when = effective_date or self._clock.today()

        lines = tuple(
            LineSpec(
                account_code=line.account_code,
                debit=line.credit,
                credit=line.debit,
                description=f"Reversal: {line.description or line.account_name}",
                charge_type=line.charge_type,
                month_settled=None,
            )
            for line in original.lines
        )
        draft = EntryDraft(
            entry_date=when,
            description=f"Reversal of {original.transaction_id}: {reason}",
            source=source.reversal_source,
            lines=lines,
            reference=original.transaction_id,
            source_id=original.source_id,
            source_model=original.source_model,
            residence_id=original.residence_id,
            student_id=original.student_id,
            metadata=ReversalMetadata(
                original_transaction_id=original.transaction_id,
                original_source=source.value,
                reason=reason,
                student_id=original.student_id,
                reversal_kind=kind,
            ),
            reversal_of_id=original.id,
            created_by=created_by,
        )
        reversal = self._store.post(draft)

        original.status = EntryStatus.REVERSED.value
        self._session.flush()

        logger.info(
            "reversal_completed",
            extra={
                "original_transaction_id": original.transaction_id,
                "reversal_transaction_id": reversal.transaction_id,
                "reversal_kind": ReversalKind(kind).value,
                "effective_date": when,
                "reason": reason,
            },
        )
        return ReversalResult(
            original_transaction_id=original.transaction_id,
            reversal_transaction_id=reversal.transaction_id,
            reversal_entry_id=reversal.id,
            effective_date=when,
            reversed_at=self._clock.now(),
            reversal_entry=reversal,
        )

    def _load_and_validate(self, transaction_id: str) -> TransactionEntry:
        # Row lock serializes concurrent reversals of the same entry
        try:
            original = self._store.get(transaction_id, for_update=True)
        except EntryNotFoundError:
            logger.warning("reversal_target_missing", extra={"transaction_id": transaction_id})
            raise

        if original.status != EntryStatus.POSTED:
            logger.warning(
                "reversal_rejected",
                extra={"transaction_id": transaction_id, "status": str(original.status)},
            )
            raise AlreadyReversedError(transaction_id, EntryStatus(original.status).value)
        return original
