"""Unit conversions for storage sizes."""

from __future__ import annotations

from typing import Any

import bitmath

__all__ = ["bytes_to_quantity", "quantity_to_bytes"]

_BINARY_SUFFIXES = (
    ("Ti", 1024**4),
    ("Gi", 1024**3),
    ("Mi", 1024**2),
    ("Ki", 1024),
)


def quantity_to_bytes(quantity: Any) -> int:
    """Convert a Kubernetes storage quantity to a number of bytes.

    Parameters
    ----------
    quantity
        Quantity as a string, such as ``5Gi`` or ``500M``.

    Returns
    -------
    int
        Equivalent number of bytes.

    Raises
    ------
    ValueError
        Raised if the input string is not a valid byte specification.
    """
    quantity = str(quantity).strip()
    if quantity.isdigit():
        return int(quantity)
    return int(bitmath.parse_string_unsafe(quantity).bytes)


def bytes_to_quantity(val: int) -> str:
    """Convert a number of bytes into a Kubernetes storage quantity.

    The largest binary suffix that represents the value exactly is used, so
    the result round-trips through `quantity_to_bytes` without loss.

    Parameters
    ----------
    val
        Number of bytes.

    Returns
    -------
    str
        Quantity string, like ``3Gi``.
    """
    for suffix, factor in _BINARY_SUFFIXES:
        if val and val % factor == 0:
            return f"{val // factor}{suffix}"
    return str(val)
