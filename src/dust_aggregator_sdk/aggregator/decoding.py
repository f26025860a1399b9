"""Result decoding for the Dust Aggregator contract.

Contract return values arrive type-tagged, e.g. ``{"type": "u64", "value": "42"}``
or ``{"type": "void"}``. Decoding validates the tag against the operation's
declared return type instead of casting whatever came back.
"""

from typing import Any, Mapping, Optional

from .errors import DecodeError
from .types import DecodedValue, OperationRequest, ReturnType
from .utils import MAX_U64


def decode_result(raw: Optional[Mapping[str, Any]], expected: ReturnType) -> DecodedValue:
    """Decode a type-tagged contract return value.

    Args:
        raw: Return value as reported by the settlement node (None if absent)
        expected: Declared return type ("u64" or "void")

    Returns:
        The integer value for "u64", None for "void"

    Raises:
        DecodeError: If the type tag does not match or the value is malformed
    """
    if expected not in ("u64", "void"):
        raise DecodeError(f"Unsupported return type: {expected}")

    if raw is None:
        if expected == "void":
            return None
        raise DecodeError("Missing return value, expected u64")

    if not isinstance(raw, Mapping):
        raise DecodeError(f"Malformed return value: {raw!r}")

    tag = raw.get("type")
    if tag != expected:
        raise DecodeError(f"Unsupported return value type: {tag}, expected {expected}")

    if expected == "void":
        return None

    value = raw.get("value")
    if isinstance(value, bool):
        raise DecodeError(f"Malformed u64 value: {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Malformed u64 value: {value!r}", cause=e)
    if isinstance(value, float) or number < 0 or number > MAX_U64:
        raise DecodeError(f"Value out of u64 range: {value!r}")
    return number


def decode_for(request: OperationRequest, raw: Optional[Mapping[str, Any]]) -> DecodedValue:
    """Decode a return value using the request's declared return type."""
    return decode_result(raw, request.returns)
