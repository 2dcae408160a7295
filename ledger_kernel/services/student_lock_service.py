"""
StudentLockService -- per-student serialization of ledger writes.

Responsibility:
    Serializes the read-outstanding / compute / write-settlement critical
    section for one student, so two concurrent payments (or a payment and a
    reversal) cannot both see the same outstanding balance.

Architecture position:
    Kernel > Services.  Called by RentalLedger before any allocation,
    accrual or correction for a student.

Invariants enforced:
    Two layers, both held until the caller's transaction ends:
      1. StudentLockRegistry -- an in-process RLock per student, acquired by
         the facade around the whole unit of work (commit included).
      2. StudentLockService.acquire -- ``SELECT ... FOR UPDATE`` on the
         student's row in ``student_ledger_locks`` plus a version bump, so
         separate processes sharing one PostgreSQL database serialize too.
    Different students never contend on either layer.

Failure modes:
    - IntegrityError on concurrent first-time row creation is absorbed by a
      savepoint rollback and a re-read under lock.
"""

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.student_lock import StudentLedgerLock

logger = get_logger("services.student_lock")


class StudentLockRegistry:
    """
    In-process lock per student id.

    Guarantees:
        - ``hold(student_id)`` is re-entrant within one thread.
        - Lock objects are dropped once no thread holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[str, list] = {}

    @contextmanager
    def hold(self, student_id: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.setdefault(student_id, [threading.RLock(), 0])
            slot[1] += 1
        slot[0].acquire()
        try:
            yield
        finally:
            slot[0].release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._slots.pop(student_id, None)

    def active_count(self) -> int:
        with self._guard:
            return len(self._slots)


class StudentLockService:
    """
    Database row lock per student.

    Contract:
        ``acquire(student_id)`` returns only when the caller's transaction
        holds the student's lock row.  The lock is released by the caller's
        commit or rollback.

    Non-goals:
        - Does NOT commit.  Does NOT provide cross-student ordering.
    """

    def __init__(self, session: Session):
        self._session = session

    def _select_locked(self, student_id: str) -> StudentLedgerLock | None:
        return self._session.execute(
            select(StudentLedgerLock)
            .where(StudentLedgerLock.student_id == student_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def acquire(self, student_id: str) -> int:
        """Lock the student's row and return its new version."""
        row = self._select_locked(student_id)

        if row is None:
            savepoint = self._session.begin_nested()
            try:
                row = StudentLedgerLock(student_id=student_id, version=1)
                self._session.add(row)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "student_lock_acquired",
                    extra={"student_id": student_id, "version": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "student_lock_race_retry",
                    extra={"student_id": student_id},
                )
                savepoint.rollback()
                row = self._select_locked(student_id)
                if row is None:
                    raise

        row.version += 1
        self._session.flush()
        logger.debug(
            "student_lock_acquired",
            extra={"student_id": student_id, "version": row.version},
        )
        return row.version
