"""
Module: ledger_kernel.models.student_lock
Responsibility: One lockable row per student.  Row-level locking on this
    table serializes the read-outstanding / compute / write-settlement
    critical section for a single student.
Architecture position: Kernel > Models.  Used only by StudentLockService.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class StudentLedgerLock(Base):
    """
    Per-student lock row.

    Each locked section bumps ``version`` so that the row is written (and
    therefore held) until the caller's transaction ends, on every backend.
    """

    __tablename__ = "student_ledger_locks"

    student_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
