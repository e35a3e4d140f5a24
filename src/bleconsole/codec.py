"""
Conversion between raw characteristic bytes and their textual display forms.

``decode`` accepts any byte sequence. ``encode`` either returns the complete
payload or raises a ``FormatError``; it never returns a partial buffer.
"""

import re
from enum import Enum

from .errors import (
    FormatError,
    InvalidCharacterError,
    InvalidLengthError,
    OutOfRangeError,
)


class DataFormat(Enum):
    """Display format used for both writes and reads."""

    UTF8 = "UTF8"
    ASCII = "ASCII"
    DEC = "Dec"
    HEX = "Hex"
    BIN = "Bin"


FORMAT_NAMES = {
    "utf8": DataFormat.UTF8,
    "ascii": DataFormat.ASCII,
    "dec": DataFormat.DEC,
    "decimal": DataFormat.DEC,
    "hex": DataFormat.HEX,
    "hexdecimal": DataFormat.HEX,
    "hexadecimal": DataFormat.HEX,
    "bin": DataFormat.BIN,
    "binary": DataFormat.BIN,
}

_ESCAPES = {"\\t": "\t", "\\n": "\n", "\\r": "\r"}

_HEX_DIGITS = re.compile(r"[0-9A-Fa-f]*")
_BIN_GROUP = re.compile(r"[01]*")


def parse_format(name: str) -> DataFormat | None:
    """Look up a display format by its (case-insensitive) command name."""
    return FORMAT_NAMES.get(name.strip().lower())


def expand_escapes(text: str) -> str:
    """Expand the C-style ``\\t``, ``\\n`` and ``\\r`` sequences."""
    for escape, char in _ESCAPES.items():
        text = text.replace(escape, char)
    return text


def encode(text: str, fmt: DataFormat) -> bytes:
    """Convert user text to the bytes to write.

    Args:
        text: Payload as typed by the user
        fmt: Active display format

    Returns:
        Payload bytes

    Raises:
        FormatError: If text is not valid for the format
    """
    if fmt is DataFormat.UTF8:
        return text.encode("utf-8")
    if fmt is DataFormat.ASCII:
        return _encode_ascii(text)
    if fmt is DataFormat.HEX:
        return _encode_hex(text)
    if fmt is DataFormat.DEC:
        return _encode_dec(text)
    if fmt is DataFormat.BIN:
        return _encode_bin(text)
    raise FormatError(f"Unsupported format: {fmt}")


def decode(data: bytes, fmt: DataFormat) -> str:
    """Render bytes in the given display format.

    Args:
        data: Raw characteristic value
        fmt: Active display format

    Returns:
        Rendered text (empty for an empty value)
    """
    data = bytes(data)
    if fmt is DataFormat.UTF8:
        return data.decode("utf-8", errors="replace")
    if fmt is DataFormat.ASCII:
        return "".join(chr(b) if b < 0x80 else "?" for b in data)
    if fmt is DataFormat.HEX:
        return " ".join(f"{b:02X}" for b in data)
    if fmt is DataFormat.DEC:
        return " ".join(str(b) for b in data)
    return " ".join(f"{b:08b}" for b in data)


def _encode_ascii(text: str) -> bytes:
    for position, char in enumerate(text):
        if ord(char) > 0x7F:
            raise OutOfRangeError(
                f"Character {char!r} at position {position} is not 7-bit ASCII"
            )
    return text.encode("ascii")


def _encode_hex(text: str) -> bytes:
    digits = []
    for token in text.split():
        if token[:2] in ("0x", "0X"):
            token = token[2:]
        if not _HEX_DIGITS.fullmatch(token):
            raise InvalidCharacterError(f"Invalid hex value: {token!r}")
        digits.append(token)

    joined = "".join(digits)
    if not joined or len(joined) % 2:
        raise InvalidLengthError("Hex input must be whole pairs of digits")
    return bytes.fromhex(joined)


def _encode_dec(text: str) -> bytes:
    values = [int(token) for token in re.findall(r"\d+", text)]
    if not values:
        raise InvalidLengthError("Decimal input must hold at least one value")
    for value in values:
        if value > 0xFF:
            raise OutOfRangeError(f"Decimal value {value} is outside 0-255")
    return bytes(values)


def _encode_bin(text: str) -> bytes:
    groups = text.split()
    if not groups:
        raise InvalidLengthError("Binary input must hold at least one 8-bit group")

    values = []
    for group in groups:
        if not _BIN_GROUP.fullmatch(group):
            raise InvalidCharacterError(f"Invalid binary group: {group!r}")
        if len(group) != 8:
            raise InvalidLengthError(f"Binary group {group!r} is not 8 digits")
        values.append(int(group, 2))
    return bytes(values)
