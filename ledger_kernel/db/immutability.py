"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                 | Allowed changes
------------------|--------------------------------|-------------------------------------
TransactionEntry  | Once status = posted           | status posted -> reversed,
                  |                                | approved_by, approved_at, updated_at
TransactionEntry  | Once status = reversed         | updated_at only
TransactionLine   | When parent entry is posted    | none
                  | or reversed                    |

Deletes of posted or reversed entries (and their lines) are rejected unless
the session is inside LedgerStore's administrative purge, which sets
``session.info["ledger_purge"]``.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update] --> _check_entry_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_entry_delete() --------/

The posting workflow inserts entries already in POSTED state, so inserts are
never blocked.  "Was posted" is decided from attribute history, not from the
new value, so the posted -> reversed transition itself is permitted.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()   # idempotent; create_tables() calls it
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import object_session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

PURGE_FLAG = "ledger_purge"

_POSTED_ENTRY_MUTABLE_FIELDS = frozenset({"status", "approved_by", "approved_at", "updated_at"})
_REVERSED_ENTRY_MUTABLE_FIELDS = frozenset({"updated_at"})


def _purge_in_progress(target) -> bool:
    session = object_session(target)
    return session is not None and bool(session.info.get(PURGE_FLAG))


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_entry_immutability(mapper, connection, target):
    """Prevent updates to posted or reversed TransactionEntry rows."""
    from ledger_kernel.models.transaction_entry import EntryStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    elif not status_history.added:
        previous = target.status
    else:
        # Status set for the first time on a pending row
        return

    if previous == EntryStatus.POSTED:
        allowed = _POSTED_ENTRY_MUTABLE_FIELDS
        if status_history.added and status_history.added[0] != EntryStatus.REVERSED:
            _blocked(
                "TransactionEntry",
                target.transaction_id,
                "UPDATE",
                f"posted entry may only move to reversed, not {status_history.added[0]}",
                field="status",
            )
    elif previous == EntryStatus.REVERSED:
        allowed = _REVERSED_ENTRY_MUTABLE_FIELDS
    else:
        return

    for attr in inspect(target).attrs:
        if attr.key in allowed or attr.key in ("lines", "reversal_of"):
            continue
        if attr.history.has_changes():
            _blocked(
                "TransactionEntry",
                target.transaction_id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on {previous} entry",
                field=attr.key,
            )


def _check_entry_delete(mapper, connection, target):
    """Prevent deletion of posted or reversed entries outside a purge."""
    from ledger_kernel.models.transaction_entry import EntryStatus

    if target.status == EntryStatus.DRAFT or _purge_in_progress(target):
        return
    _blocked(
        "TransactionEntry",
        target.transaction_id,
        "DELETE",
        "Posted entries cannot be deleted; post a reversal instead",
    )


def _parent_is_final(target) -> bool:
    from ledger_kernel.models.transaction_entry import EntryStatus

    entry = target.entry
    return entry is not None and entry.status != EntryStatus.DRAFT


def _check_line_immutability(mapper, connection, target):
    """Prevent updates to lines of a posted or reversed entry."""
    if _parent_is_final(target):
        _blocked(
            "TransactionLine",
            str(target.id),
            "UPDATE",
            "Lines cannot be modified after the parent entry is posted",
        )


def _check_line_delete(mapper, connection, target):
    if _parent_is_final(target) and not _purge_in_progress(target):
        _blocked(
            "TransactionLine",
            str(target.id),
            "DELETE",
            "Lines cannot be deleted after the parent entry is posted",
        )


_LISTENERS = (
    ("TransactionEntry", "before_update", _check_entry_immutability),
    ("TransactionEntry", "before_delete", _check_entry_delete),
    ("TransactionLine", "before_update", _check_line_immutability),
    ("TransactionLine", "before_delete", _check_line_delete),
)


def _targets() -> dict:
    from ledger_kernel.models.transaction_entry import TransactionEntry, TransactionLine

    return {"TransactionEntry": TransactionEntry, "TransactionLine": TransactionLine}


def register_immutability_listeners() -> None:
    """Register all immutability listeners (safe to call repeatedly)."""
    targets = _targets()
    for name, event_name, fn in _LISTENERS:
        if not event.contains(targets[name], event_name, fn):
            event.listen(targets[name], event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove immutability listeners. FOR TESTING ONLY."""
    targets = _targets()
    for name, event_name, fn in _LISTENERS:
        if event.contains(targets[name], event_name, fn):
            event.remove(targets[name], event_name, fn)
