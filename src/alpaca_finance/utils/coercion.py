"""Numeric coercion helpers for Alpaca payloads.

Alpaca sends most numeric fields as JSON strings ("179.08") but some as
plain numbers. The annotated types below accept either and reject anything
else, so models decode identically whatever the wire representation.
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator


def to_float(value: Any) -> float:
    """Coerce a JSON number or numeric string to float."""
    if isinstance(value, bool):
        raise ValueError("wrong type: boolean is not a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"invalid number: {value!r}") from None
    raise ValueError(f"wrong type: {type(value).__name__}")


def to_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return to_float(value)


def to_int(value: Any) -> int:
    """Coerce a JSON integer or integer string to int."""
    if isinstance(value, bool):
        raise ValueError("wrong type: boolean is not a number")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValueError(f"invalid integer: {value!r}") from None
    raise ValueError(f"wrong type: {type(value).__name__}")


def to_wire_string(value: Any) -> str:
    """Render a request field the way Alpaca expects it in JSON bodies."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


Float = Annotated[float, BeforeValidator(to_float)]
Int = Annotated[int, BeforeValidator(to_int)]
OptionalFloat = Annotated[Optional[float], BeforeValidator(to_optional_float)]
