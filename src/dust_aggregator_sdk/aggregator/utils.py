"""Utility functions for the Dust Aggregator."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

# Minor units per whole USD
MINOR_UNITS_PER_USD = 100

# Largest amount the contract accepts (u64)
MAX_U64 = 2**64 - 1

# Fixed gas fee charged by the aggregator contract per batch
FIXED_GAS_FEE = Decimal("22")

# Fee estimates for the savings display (in the source chain's native unit)
INDIVIDUAL_TX_FEE = Decimal("0.005")
BATCH_TX_FEE = Decimal("0.0075")

Number = Union[Decimal, int, float, str]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def scale_to_minor_units(value: Number) -> int:
    """Scale a USD-equivalent value to integer minor units.

    Rounds half up, so the conversion matches the contract front-end.

    Args:
        value: USD value (e.g., Decimal("0.42"))

    Returns:
        Value in minor units (e.g., 42)
    """
    scaled = _to_decimal(value) * MINOR_UNITS_PER_USD
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def minor_units_to_value(amount: int) -> Decimal:
    """Convert minor units back to a USD value.

    Args:
        amount: Value in minor units (e.g., 42)

    Returns:
        USD value (e.g., Decimal("0.42"))
    """
    return Decimal(amount) / MINOR_UNITS_PER_USD


def format_minor_units(amount: int) -> str:
    """Format minor units as a USD string with two decimals (e.g., "0.42")."""
    return f"{minor_units_to_value(amount):.2f}"


def total_value(items: Iterable) -> Decimal:
    """Sum the implied USD value of dust items."""
    return sum((item.implied_value for item in items), Decimal(0))


def per_participant_fee_share(
    participants: int, fixed_fee: Number = FIXED_GAS_FEE
) -> Decimal:
    """Share of the fixed batch fee paid by each participant.

    Informational only; submitted invocations carry a fixed fee hint.
    A lone participant is charged as if the fee were split two ways.

    Args:
        participants: Number of deposits sharing the batch
        fixed_fee: Fixed fee for one batch settlement

    Returns:
        Fee share per participant
    """
    return _to_decimal(fixed_fee) / max(participants, 2)


def estimate_gas_savings(
    item_count: int,
    individual_fee: Number = INDIVIDUAL_TX_FEE,
    batch_fee: Number = BATCH_TX_FEE,
) -> Decimal:
    """Estimate fees saved by settling ``item_count`` items in one batch.

    Negative for batches too small to amortize the batch fee.
    """
    return item_count * _to_decimal(individual_fee) - _to_decimal(batch_fee)
