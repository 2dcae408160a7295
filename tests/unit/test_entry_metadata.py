"""
Typed entry metadata tests.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.metadata import (
    AccrualMetadata,
    AllocationType,
    ReversalKind,
    ReversalMetadata,
    SettlementMetadata,
    metadata_from_dict,
)


class TestSettlementMetadata:
    def test_period_required_for_matched_settlement(self):
        with pytest.raises(ValueError, match="month_settled"):
            SettlementMetadata(
                student_id="S001",
                payment_id="PAY-1",
                payment_types=("rent",),
                allocation_type=AllocationType.FULL,
            )

    def test_advance_has_no_period(self):
        meta = SettlementMetadata(
            student_id="S001",
            payment_id="PAY-1",
            payment_types=["rent"],
            allocation_type="advance",
        )
        assert meta.allocation_type is AllocationType.ADVANCE
        assert meta.payment_types == ("rent",)
        assert meta.to_dict()["month_settled"] is None


class TestSerialization:
    def test_accrual_amounts_survive_json(self):
        meta = AccrualMetadata(
            student_id="S001",
            accrual_month=5,
            accrual_year=2025,
            rent_amount=Decimal("134.84"),
            admin_fee=Decimal("20.00"),
            deposit_amount=Decimal("220.00"),
            total_amount=Decimal("374.84"),
            lease_start=True,
        )
        data = meta.to_dict()
        assert data["kind"] == "accrual"
        assert data["rent_amount"] == "134.84"
        rebuilt = metadata_from_dict(data)
        assert rebuilt == meta
        assert rebuilt.period_key == "2025-05"

    def test_reversal_kind_preserved(self):
        meta = ReversalMetadata(
            original_transaction_id="TXN1",
            original_source="rental_accrual",
            reason="left early",
            reversal_kind="forfeiture",
        )
        assert metadata_from_dict(meta.to_dict()).reversal_kind is ReversalKind.FORFEITURE

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            metadata_from_dict({"kind": "mystery"})

    def test_empty_is_none(self):
        assert metadata_from_dict(None) is None
        assert metadata_from_dict({}) is None
