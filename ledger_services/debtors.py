"""
Debtor directory -- where accrual runs learn who owes rent.

Responsibility:
    Defines the DebtorRecord shape, the DebtorDirectory protocol consumed by
    AccrualService, an in-memory implementation and a YAML-backed loader.

Failure modes:
    - ValueError on malformed records (bad dates, negative amounts, lease
      ending before it starts).
    - FileNotFoundError / yaml.YAMLError from the loader.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from ledger_engines.accrual import LeaseTerms
from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.periods import BillingPeriod


@dataclass(frozen=True)
class DebtorRecord:
    """One student with an active lease."""

    student_id: str
    lease_start_date: date
    lease_end_date: date
    room_price: Decimal
    admin_fee: Decimal = ZERO
    deposit_amount: Decimal = ZERO
    student_name: str | None = None
    residence_id: str | None = None

    def __post_init__(self) -> None:
        if not self.student_id:
            raise ValueError("student_id cannot be empty")
        # Raises ValueError on inconsistent dates or amounts
        _ = self.terms

    @property
    def terms(self) -> LeaseTerms:
        return LeaseTerms(
            start_date=self.lease_start_date,
            end_date=self.lease_end_date,
            room_price=self.room_price,
            admin_fee=self.admin_fee,
            deposit_amount=self.deposit_amount,
        )

    def covers(self, period: BillingPeriod | str) -> bool:
        return self.terms.covers(BillingPeriod.parse(period))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DebtorRecord:
        def _date(value: Any) -> date:
            return value if isinstance(value, date) else date.fromisoformat(str(value))

        return cls(
            student_id=str(data["student_id"]),
            lease_start_date=_date(data["lease_start_date"]),
            lease_end_date=_date(data["lease_end_date"]),
            room_price=to_money(str(data["room_price"])),
            admin_fee=to_money(str(data.get("admin_fee", "0"))),
            deposit_amount=to_money(str(data.get("deposit_amount", "0"))),
            student_name=data.get("student_name"),
            residence_id=data.get("residence_id"),
        )


@runtime_checkable
class DebtorDirectory(Protocol):
    """Source of debtors for accrual runs."""

    def active_debtors(self) -> Iterable[DebtorRecord]:
        ...


class StaticDebtorDirectory:
    """Fixed, in-memory list of debtors."""

    def __init__(self, records: Iterable[DebtorRecord] = ()):
        self._records: dict[str, DebtorRecord] = {}
        for record in records:
            self.add(record)

    def add(self, record: DebtorRecord) -> None:
        if record.student_id in self._records:
            raise ValueError(f"Duplicate debtor: {record.student_id}")
        self._records[record.student_id] = record

    def get(self, student_id: str) -> DebtorRecord | None:
        return self._records.get(student_id)

    def active_debtors(self) -> Iterator[DebtorRecord]:
        return iter(sorted(self._records.values(), key=lambda r: r.student_id))

    def __len__(self) -> int:
        return len(self._records)


def load_debtor_directory(path: Path | str) -> StaticDebtorDirectory:
    """
    Read debtors from YAML.

    Expected layout::

        debtors:
          - student_id: S001
            lease_start_date: 2025-05-12
            lease_end_date: 2025-12-31
            room_price: "220.00"
            admin_fee: "20.00"
            deposit_amount: "220.00"
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return StaticDebtorDirectory(DebtorRecord.from_dict(d) for d in data.get("debtors", []))
