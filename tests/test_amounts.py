import random

import pytest

from storefront.amounts import (
    amount_key_candidates,
    amounts_match,
    format_amount,
    generate_unique_amount,
    parse_amount,
    round2,
    round6,
)


@pytest.mark.parametrize("subtotal", [0.01, 1.0, 18.5, 24.99, 149.99, 32.0, 999.999999, 12345.67])
def test_unique_amount_within_one_cent_of_subtotal(subtotal):
    rng = random.Random(7)
    for _ in range(500):
        amount = generate_unique_amount(subtotal, rng)
        assert 0 <= amount - subtotal < 0.01
        assert round6(amount) == amount


def test_unique_amount_uses_offset_range():
    class Fixed:
        def __init__(self, value):
            self.value = value

        def randrange(self, n):
            return self.value

    assert generate_unique_amount(24.99, Fixed(0)) == 24.99
    assert generate_unique_amount(24.99, Fixed(9999)) == 24.999999
    assert generate_unique_amount(24.99, Fixed(1234)) == 24.991234


def test_unique_amount_never_below_subtotal_with_extra_decimals():
    class Zero:
        def randrange(self, n):
            return 0

    amount = generate_unique_amount(10.0000004, Zero())
    assert amount >= 10.0000004
    assert amount == 10.000001


def test_rounding_is_half_up():
    assert round2(2.675) == 2.68
    assert round2(99964.0) == 99964.0
    assert round6(1.0000005) == 1.000001


def test_format_amount_six_places():
    assert format_amount(24.99) == "24.990000"
    assert format_amount(24.991234) == "24.991234"


def test_amount_key_candidates_order():
    assert list(amount_key_candidates(10.5)) == [
        "10.500000",
        "10.500001",
        "10.499999",
        "10.500002",
        "10.499998",
    ]


def test_amounts_match_tolerance():
    assert amounts_match(24.9912345, 24.991234)
    assert amounts_match(24.991234, 24.991234)
    assert not amounts_match(24.991244, 24.991234)
    assert not amounts_match(24.99, 24.991234)


@pytest.mark.parametrize(
    "raw, expected",
    [("24.99", 24.99), (24.99, 24.99), (3, 3.0), ("", None), (None, None), ("abc", None), (True, None), ("nan", None)],
)
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected
