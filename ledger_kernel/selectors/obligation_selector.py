"""
Module: ledger_kernel.selectors.obligation_selector
Responsibility: The obligation read model -- what a student owes per billing
    period and per charge component, derived from posted lines every time.
Architecture position: Kernel > Selectors.  Read by AllocationService (under
    the student's lock), CorrectionService and RentalLedger.query_outstanding.

Invariants enforced:
    - owed(period, component) = posted rental_accrual debits to the student's
      receivable sub-account with that charge_type.
    - settled(period, component) = posted credits to the same sub-account
      tagged month_settled = period with that charge_type.
    - outstanding = max(0, owed - settled).  Nothing is cached: reversed
      accruals and reversed settlements drop out because only posted entries
      are read.

Failure modes:
    - None.  A student without accruals yields an empty list.
"""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import BigInteger, func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, from_minor_units
from ledger_kernel.models.account import SUBACCOUNT_SEPARATOR
from ledger_kernel.models.transaction_entry import (
    ChargeType,
    EntrySource,
    EntryStatus,
    TransactionEntry,
    TransactionLine,
)
from ledger_kernel.selectors.base import BaseSelector

DEFAULT_RECEIVABLE_CONTROL = "1100"


@dataclass(frozen=True)
class ObligationDTO:
    """One student's obligation for one billing period."""

    student_id: str
    period: str
    accrual_transaction_id: str | None
    rent_owed: Decimal = ZERO
    admin_owed: Decimal = ZERO
    deposit_owed: Decimal = ZERO
    rent_settled: Decimal = ZERO
    admin_settled: Decimal = ZERO
    deposit_settled: Decimal = ZERO

    def owed(self, charge_type: ChargeType | str) -> Decimal:
        return getattr(self, f"{ChargeType(charge_type).value}_owed")

    def settled(self, charge_type: ChargeType | str) -> Decimal:
        return getattr(self, f"{ChargeType(charge_type).value}_settled")

    def outstanding(self, charge_type: ChargeType | str) -> Decimal:
        return max(ZERO, self.owed(charge_type) - self.settled(charge_type))

    @property
    def rent_outstanding(self) -> Decimal:
        return self.outstanding(ChargeType.RENT)

    @property
    def admin_outstanding(self) -> Decimal:
        return self.outstanding(ChargeType.ADMIN)

    @property
    def deposit_outstanding(self) -> Decimal:
        return self.outstanding(ChargeType.DEPOSIT)

    @property
    def total_owed(self) -> Decimal:
        return self.rent_owed + self.admin_owed + self.deposit_owed

    @property
    def total_outstanding(self) -> Decimal:
        return self.rent_outstanding + self.admin_outstanding + self.deposit_outstanding

    @property
    def is_settled(self) -> bool:
        return self.total_outstanding == ZERO


class ObligationSelector(BaseSelector[TransactionEntry]):
    """
    Derives per-period obligations for one student.

    Contract:
        Results are ordered oldest period first, which is the FIFO order.
    """

    def __init__(self, session: Session, receivable_control: str = DEFAULT_RECEIVABLE_CONTROL):
        super().__init__(session)
        self.receivable_control = receivable_control

    def _receivable(self, student_id: str) -> str:
        return f"{self.receivable_control}{SUBACCOUNT_SEPARATOR}{student_id}"

    def has_accrual_history(self, student_id: str) -> bool:
        found = self.session.execute(
            select(TransactionEntry.id)
            .where(
                TransactionEntry.student_id == student_id,
                TransactionEntry.source == EntrySource.RENTAL_ACCRUAL.value,
                TransactionEntry.status == EntryStatus.POSTED.value,
            )
            .limit(1)
        ).first()
        return found is not None

    def _owed(self, student_id: str) -> tuple[dict[str, str], dict[tuple[str, str], Decimal]]:
        rows = self.session.execute(
            select(
                TransactionEntry.accrual_period,
                TransactionEntry.transaction_id,
                TransactionLine.charge_type,
                func.sum(TransactionLine.debit, type_=BigInteger),
            )
            .join(TransactionLine, TransactionLine.entry_id == TransactionEntry.id)
            .where(
                TransactionEntry.student_id == student_id,
                TransactionEntry.source == EntrySource.RENTAL_ACCRUAL.value,
                TransactionEntry.status == EntryStatus.POSTED.value,
                TransactionLine.account_code == self._receivable(student_id),
                TransactionLine.debit > 0,
            )
            .group_by(
                TransactionEntry.accrual_period,
                TransactionEntry.transaction_id,
                TransactionLine.charge_type,
            )
        ).all()
        accrual_ids: dict[str, str] = {}
        owed: dict[tuple[str, str], Decimal] = {}
        for period, transaction_id, charge_type, cents in rows:
            accrual_ids[period] = transaction_id
            key = (period, charge_type or ChargeType.RENT.value)
            owed[key] = owed.get(key, ZERO) + from_minor_units(int(cents))
        return accrual_ids, owed

    def _settled(self, student_id: str) -> dict[tuple[str, str], Decimal]:
        rows = self.session.execute(
            select(
                TransactionLine.month_settled,
                TransactionLine.charge_type,
                func.sum(TransactionLine.credit, type_=BigInteger),
            )
            .join(TransactionEntry, TransactionLine.entry_id == TransactionEntry.id)
            .where(
                TransactionEntry.status == EntryStatus.POSTED.value,
                TransactionLine.account_code == self._receivable(student_id),
                TransactionLine.credit > 0,
                TransactionLine.month_settled.is_not(None),
            )
            .group_by(TransactionLine.month_settled, TransactionLine.charge_type)
        ).all()
        settled: dict[tuple[str, str], Decimal] = {}
        for period, charge_type, cents in rows:
            key = (period, charge_type or ChargeType.RENT.value)
            settled[key] = settled.get(key, ZERO) + from_minor_units(int(cents))
        return settled

    def obligations(self, student_id: str) -> list[ObligationDTO]:
        """Every accrued period for the student, oldest first."""
        accrual_ids, owed = self._owed(student_id)
        settled = self._settled(student_id)

        result = []
        for period in sorted(accrual_ids):
            amounts = {}
            for charge in ChargeType:
                amounts[f"{charge.value}_owed"] = owed.get((period, charge.value), ZERO)
                amounts[f"{charge.value}_settled"] = settled.get((period, charge.value), ZERO)
            result.append(
                ObligationDTO(
                    student_id=student_id,
                    period=period,
                    accrual_transaction_id=accrual_ids[period],
                    **amounts,
                )
            )
        return result

    def outstanding(self, student_id: str) -> list[ObligationDTO]:
        """Periods with anything left to pay, oldest first."""
        return [o for o in self.obligations(student_id) if not o.is_settled]

    def total_outstanding(self, student_id: str) -> Decimal:
        return sum((o.total_outstanding for o in self.obligations(student_id)), ZERO)

    def settled_periods(self, student_id: str) -> set[str]:
        """Periods that any posted settlement line is tagged with."""
        return {period for period, _ in self._settled(student_id)}
