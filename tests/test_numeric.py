"""
Tests for decimal conversion, rounding and tolerance comparison
"""
from decimal import Decimal

import pytest

from cfdi_generator.core.numeric import (
    MONETARY, QUANTITY, RATE, NumericPolicy, decimal_places, format_decimal, to_decimal
)


def test_precision_constants():
    assert (MONETARY, QUANTITY, RATE) == (2, 6, 6)


def test_round_half_up():
    """Ties round away from zero, never to even"""
    assert NumericPolicy.round(Decimal("2.675"), 2) == Decimal("2.68")
    assert NumericPolicy.round("0.125", 2) == Decimal("0.13")
    assert NumericPolicy.round("-2.675", 2) == Decimal("-2.68")
    assert NumericPolicy.round("5.3328", 2) == Decimal("5.33")


def test_round_keeps_requested_scale():
    assert str(NumericPolicy.round("16", 2)) == "16.00"
    assert str(NumericPolicy.round("0.16", RATE)) == "0.160000"


def test_to_decimal_rejects_float():
    with pytest.raises(TypeError):
        to_decimal(1.5)


def test_to_decimal_conversions():
    assert to_decimal(None) is None
    assert to_decimal(3) == Decimal("3")
    assert to_decimal("250.50") == Decimal("250.50")
    with pytest.raises(ValueError):
        to_decimal("abc")


def test_equals_within_tolerance_exact():
    policy = NumericPolicy()
    assert policy.equals_within_tolerance("383.83", "383.834", MONETARY)
    assert not policy.equals_within_tolerance("383.83", "383.84", MONETARY)


def test_equals_within_tolerance_with_epsilon():
    policy = NumericPolicy(tolerance="0.01")
    assert policy.equals_within_tolerance("383.83", "383.84", MONETARY)
    assert not policy.equals_within_tolerance("383.83", "383.85", MONETARY)


def test_equals_within_tolerance_absent_values():
    policy = NumericPolicy()
    assert policy.equals_within_tolerance(None, None, MONETARY)
    assert not policy.equals_within_tolerance(None, "1.00", MONETARY)
    assert not policy.equals_within_tolerance("1.00", None, MONETARY)


def test_negative_tolerance_rejected():
    with pytest.raises(ValueError):
        NumericPolicy(tolerance="-0.01")


def test_multiply_and_total():
    policy = NumericPolicy()
    assert policy.multiply("33.33", "0.160000", MONETARY) == Decimal("5.33")
    assert policy.multiply("250.50", "0.160000", MONETARY) == Decimal("40.08")
    assert policy.total(["1.10", None, Decimal("2.20")]) == Decimal("3.30")
    assert policy.total([]) == Decimal("0")


def test_decimal_places_and_format():
    assert decimal_places(Decimal("1.500")) == 3
    assert decimal_places(Decimal("100")) == 0
    assert format_decimal(Decimal("0.160000")) == "0.160000"
    assert format_decimal(Decimal("1E+2")) == "100"


def test_round_beyond_default_precision():
    value = Decimal("123456789012345678901234567890.125")
    assert NumericPolicy.round(value, 2) == Decimal("123456789012345678901234567890.13")
    assert NumericPolicy().multiply("100000000000000", "10000000000000.005", 2) == Decimal(
        "1000000000000000500000000000.00"
    )
