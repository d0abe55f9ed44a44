# storefront/amounts.py
"""Money helpers for USDC amounts (6 decimals) and fiat amounts (2 decimals).

Orders are told apart by the exact amount the payer sends: the subtotal plus a
random offset of whole micro-units below one cent.
"""
import random
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Optional

MICRO = Decimal("0.000001")
CENT = Decimal("0.01")

# offset range in micro-units: 0 .. 0.009999
MAX_OFFSET_MICROS = 10_000

# Absolute tolerance used when comparing a ledger amount with an order amount.
AMOUNT_TOLERANCE = 0.000001

# Tried in this order when the exact amount key is missing.
AMOUNT_PERTURBATIONS = (0.000001, -0.000001, 0.000002, -0.000002)


def round6(value: float) -> float:
    return float(Decimal(repr(value)).quantize(MICRO, rounding=ROUND_HALF_UP))


def round2(value: float) -> float:
    return float(Decimal(repr(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def format_amount(value: float) -> str:
    """Amount as used in store keys, e.g. ``24.993127``."""
    return f"{value:.6f}"


def generate_unique_amount(subtotal: float, rng: Optional[random.Random] = None) -> float:
    rng = rng or random
    offset = rng.randrange(MAX_OFFSET_MICROS) / 1_000_000
    amount = round6(subtotal + offset)
    # a subtotal with more than 6 decimals may round below itself
    if amount < subtotal:
        amount = round6(amount + 0.000001)
    return amount


def amounts_match(observed: float, expected: float) -> bool:
    return abs(observed - expected) < AMOUNT_TOLERANCE


def amount_key_candidates(amount: float) -> Iterator[str]:
    """Formatted amounts to look up: the exact one first, then small drifts."""
    yield format_amount(amount)
    for delta in AMOUNT_PERTURBATIONS:
        yield format_amount(amount + delta)


def parse_amount(raw) -> Optional[float]:
    """Best-effort float parse of an amount coming from a webhook or ledger."""
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value
