"""Small shared helpers: integer bounds, configuration loading and MAC formatting."""

from __future__ import annotations

import configparser
import re
from collections.abc import Mapping
from pathlib import Path

SIZE_MAX = (1 << 64) - 1
UINT_MAX = (1 << 32) - 1

MAC_STRLEN = 18

_ATOI_RE = re.compile(r"\s*([+-]?\d+)")
_HEX_FIELD_RE = re.compile(r"\s*([0-9a-fA-F]{1,2})")

CONFIG_CANDIDATES = (
    Path(".config") / "miraclecastrc",
    Path(".miraclecast"),
)


def align_power2(value: int) -> int:
    """Round up to the next power of two.

    Zero maps to zero, and results that do not fit a 64-bit size map to zero.
    """
    if value < 0:
        raise ValueError("value must not be negative")
    if value == 0:
        return 0
    if value == 1:
        return 1
    result = 1 << (value - 1).bit_length()
    if result > SIZE_MAX:
        return 0
    return result


def checked_mult(value: int, factor: int, maximum: int) -> int:
    """Multiply two non-negative integers, raising OverflowError above ``maximum``."""
    if value < 0 or factor < 0:
        raise ValueError("operands must not be negative")
    result = value * factor
    if result > maximum:
        raise OverflowError(f"{value} * {factor} exceeds {maximum}")
    return result


def clamp(value, low, high):
    """Clamp ``value`` between ``low`` and ``high``."""
    if value > high:
        return high
    if value < low:
        return low
    return value


def load_ini_file(home: str | Path | None = None) -> configparser.ConfigParser | None:
    """Load the user configuration from ``~/.config/miraclecastrc`` or ``~/.miraclecast``.

    Returns None if neither file can be read and parsed.
    """
    base = Path(home) if home is not None else Path.home()
    for candidate in CONFIG_CANDIDATES:
        path = base / candidate
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str  # keys are case sensitive
        try:
            with path.open(encoding="utf-8") as handle:
                parser.read_file(handle, source=str(path))
        except (OSError, UnicodeDecodeError, configparser.Error):
            continue
        return parser
    return None


def reformat_mac(text: str) -> str:
    """Normalise a MAC address to lower-case, zero-padded ``xx:xx:xx:xx:xx:xx``.

    Parsing stops at the first malformed field; missing fields become zero.
    """
    octets = [0] * 6
    pos = 0
    for index in range(6):
        if index > 0:
            if not text.startswith(":", pos):
                break
            pos += 1
        match = _HEX_FIELD_RE.match(text, pos)
        if not match:
            break
        octets[index] = int(match.group(1), 16)
        pos = match.end()
    return ":".join(f"{octet:02x}" for octet in octets)


def _atoi(text: str) -> int:
    match = _ATOI_RE.match(text)
    return int(match.group(1)) if match else 0


def ifindex_from_properties(properties: Mapping[str, str]) -> int:
    """Return the interface index from a device's ``IFINDEX`` property, or 0."""
    value = properties.get("IFINDEX")
    if value is None:
        return 0
    return _atoi(value) & UINT_MAX