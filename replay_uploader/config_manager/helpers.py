"""Helpers for parsing configuration values."""

import re

_BYTE_VALUE_PATTERN = re.compile(r"^(\d+)\s*([a-z]*)$")

_UNIT_MULTIPLIERS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
}


def parse_bytes(value: int | str) -> int:
    """Parse a byte count such as ``5242880``, ``"512k"`` or ``"8 MB"``.

    Units are case-insensitive binary multiples.

    Raises:
        ValueError: If the value is malformed or uses an unknown unit.
    """
    if isinstance(value, int):
        return value

    match = _BYTE_VALUE_PATTERN.match(str(value).strip().lower())
    if match is None:
        raise ValueError(f"Invalid byte value: {value!r}")

    amount, unit = match.groups()
    if unit not in _UNIT_MULTIPLIERS:
        raise ValueError(f"Unknown byte unit in {value!r}")
    return int(amount) * _UNIT_MULTIPLIERS[unit]
