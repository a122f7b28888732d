"""Unit tests for numeric coercion of Alpaca payloads."""

from enum import Enum

import pytest
from pydantic import ValidationError

from alpaca_finance.models.account import Account
from alpaca_finance.utils.coercion import to_float, to_int, to_optional_float, to_wire_string


@pytest.mark.unit
class TestToFloat:

    def test_accepts_numeric_string(self):
        assert to_float("179.08") == 179.08

    def test_accepts_numbers(self):
        assert to_float(3) == 3.0
        assert to_float(-23140.2) == -23140.2

    def test_rejects_garbage_string(self):
        with pytest.raises(ValueError, match="invalid number"):
            to_float("abc")

    def test_rejects_boolean(self):
        with pytest.raises(ValueError, match="wrong type"):
            to_float(True)

    def test_rejects_other_types(self):
        with pytest.raises(ValueError, match="wrong type"):
            to_float([1.0])

    def test_optional_passes_none_through(self):
        assert to_optional_float(None) is None
        assert to_optional_float("1.5") == 1.5


@pytest.mark.unit
class TestToInt:

    def test_accepts_integer_string(self):
        assert to_int("100") == 100

    def test_accepts_int(self):
        assert to_int(15) == 15

    def test_rejects_decimal_string(self):
        with pytest.raises(ValueError, match="invalid integer"):
            to_int("1.5")

    def test_rejects_float_and_bool(self):
        with pytest.raises(ValueError):
            to_int(1.0)
        with pytest.raises(ValueError):
            to_int(False)


@pytest.mark.unit
class TestToWireString:

    class Color(str, Enum):
        RED = "red"

    def test_enum_uses_value(self):
        assert to_wire_string(self.Color.RED) == "red"

    def test_integral_float_drops_fraction(self):
        assert to_wire_string(100.0) == "100"

    def test_other_values(self):
        assert to_wire_string(101.5) == "101.5"
        assert to_wire_string(7) == "7"


@pytest.mark.unit
class TestModelCoercion:

    def test_string_and_number_fields_decode_identically(self, sample_account):
        """Numeric fields sent as strings or numbers produce the same account."""
        as_numbers = dict(sample_account)
        for key in ("cash", "equity", "long_market_value", "short_market_value", "buying_power"):
            as_numbers[key] = float(sample_account[key])

        assert Account.model_validate(sample_account) == Account.model_validate(as_numbers)

    def test_non_numeric_string_is_a_validation_error(self, sample_account):
        sample_account["cash"] = "lots"

        with pytest.raises(ValidationError):
            Account.model_validate(sample_account)
