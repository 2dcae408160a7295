"""
Money representation tests.

Decimal only, cents in storage, half-up rounding.
"""

from decimal import Decimal

import pytest

from ledger_kernel.db.types import (
    ZERO,
    from_minor_units,
    is_cents_exact,
    round_money,
    to_minor_units,
    to_money,
)


class TestRoundMoney:
    def test_half_up(self):
        assert round_money(Decimal("36.665")) == Decimal("36.67")
        assert round_money(Decimal("36.664")) == Decimal("36.66")

    def test_quantizes_to_cents(self):
        assert round_money(Decimal("220")) == Decimal("220.00")
        assert str(round_money(Decimal("220"))) == "220.00"


class TestToMoney:
    def test_rejects_float(self):
        with pytest.raises(TypeError):
            to_money(0.1)

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_money("twelve")

    def test_accepts_str_and_int(self):
        assert to_money("12.5") == Decimal("12.50")
        assert to_money(3) == Decimal("3.00")


class TestMinorUnits:
    def test_round_trip_exact(self):
        assert to_minor_units(Decimal("220.00")) == 22000
        assert from_minor_units(22000) == Decimal("220.00")

    def test_sub_cent_rejected(self):
        assert not is_cents_exact(Decimal("0.001"))
        with pytest.raises(ValueError):
            to_minor_units(Decimal("0.001"))

    def test_zero(self):
        assert from_minor_units(0) == ZERO

    def test_repeated_thirds_do_not_drift(self):
        """Three prorated cents-exact amounts sum back exactly."""
        third = round_money(Decimal("110.00") / 3)
        total = sum((third for _ in range(3)), ZERO)
        assert total == Decimal("110.01")
        assert to_minor_units(total) == 11001
