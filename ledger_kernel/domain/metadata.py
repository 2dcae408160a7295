"""
Typed entry metadata.

Responsibility:
    A closed tagged union replacing a free-form metadata bag.  Each entry
    carries exactly one variant, serialized to JSON with a ``kind``
    discriminator and rebuilt with ``metadata_from_dict``.

Invariants enforced:
    - SettlementMetadata requires ``month_settled`` unless the allocation is
      an advance (prepayment not yet tied to a period).
    - Amounts are serialized as strings so Decimal precision survives JSON.
"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Union


class AllocationType(str, Enum):
    """How a settlement line relates to the obligation it touches."""

    FULL = "full"
    PARTIAL = "partial"
    ADVANCE = "advance"
    ADVANCE_RELEASE = "advance_release"


class ReversalKind(str, Enum):
    REVERSAL = "reversal"
    FORFEITURE = "forfeiture"


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _plain(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, val in data.items():
        if isinstance(val, Decimal):
            out[key] = str(val)
        elif isinstance(val, Enum):
            out[key] = val.value
        elif isinstance(val, tuple):
            out[key] = list(val)
        else:
            out[key] = val
    return out


@dataclass(frozen=True)
class AccrualMetadata:
    student_id: str
    accrual_month: int
    accrual_year: int
    rent_amount: Decimal
    admin_fee: Decimal
    deposit_amount: Decimal
    total_amount: Decimal
    lease_start: bool = False
    student_name: str | None = None
    type: str = "rent_accrual"
    kind: str = field(default="accrual", init=False)

    @property
    def period_key(self) -> str:
        return f"{self.accrual_year:04d}-{self.accrual_month:02d}"

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccrualMetadata":
        return cls(
            student_id=data["student_id"],
            accrual_month=int(data["accrual_month"]),
            accrual_year=int(data["accrual_year"]),
            rent_amount=_dec(data["rent_amount"]),
            admin_fee=_dec(data["admin_fee"]),
            deposit_amount=_dec(data["deposit_amount"]),
            total_amount=_dec(data["total_amount"]),
            lease_start=bool(data.get("lease_start", False)),
            student_name=data.get("student_name"),
            type=data.get("type", "rent_accrual"),
        )


@dataclass(frozen=True)
class SettlementMetadata:
    student_id: str
    payment_id: str
    payment_types: tuple[str, ...]
    allocation_type: AllocationType
    month_settled: str | None = None
    payment_method: str | None = None
    kind: str = field(default="settlement", init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "allocation_type", AllocationType(self.allocation_type))
        object.__setattr__(self, "payment_types", tuple(self.payment_types))
        if self.allocation_type != AllocationType.ADVANCE and not self.month_settled:
            raise ValueError(
                f"month_settled is required for {self.allocation_type.value} settlements"
            )

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettlementMetadata":
        return cls(
            student_id=data["student_id"],
            payment_id=data["payment_id"],
            payment_types=tuple(data.get("payment_types", ())),
            allocation_type=AllocationType(data["allocation_type"]),
            month_settled=data.get("month_settled"),
            payment_method=data.get("payment_method"),
        )


@dataclass(frozen=True)
class ReversalMetadata:
    original_transaction_id: str
    original_source: str
    reason: str
    student_id: str | None = None
    reversal_kind: ReversalKind = ReversalKind.REVERSAL
    kind: str = field(default="reversal", init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "reversal_kind", ReversalKind(self.reversal_kind))

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReversalMetadata":
        return cls(
            original_transaction_id=data["original_transaction_id"],
            original_source=data["original_source"],
            reason=data["reason"],
            student_id=data.get("student_id"),
            reversal_kind=ReversalKind(data.get("reversal_kind", "reversal")),
        )


@dataclass(frozen=True)
class AdjustmentMetadata:
    student_id: str
    adjustment_type: str
    reason: str
    month_settled: str | None = None
    related_transaction_id: str | None = None
    kind: str = field(default="adjustment", init=False)

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdjustmentMetadata":
        return cls(
            student_id=data["student_id"],
            adjustment_type=data["adjustment_type"],
            reason=data["reason"],
            month_settled=data.get("month_settled"),
            related_transaction_id=data.get("related_transaction_id"),
        )


EntryMetadata = Union[AccrualMetadata, SettlementMetadata, ReversalMetadata, AdjustmentMetadata]

_BY_KIND: dict[str, type] = {
    "accrual": AccrualMetadata,
    "settlement": SettlementMetadata,
    "reversal": ReversalMetadata,
    "adjustment": AdjustmentMetadata,
}


def metadata_from_dict(data: dict[str, Any] | None) -> EntryMetadata | None:
    """Rebuild the metadata variant stored on an entry."""
    if not data:
        return None
    kind = data.get("kind")
    cls = _BY_KIND.get(kind)
    if cls is None:
        raise ValueError(f"Unknown metadata kind: {kind!r}")
    return cls.from_dict(data)
