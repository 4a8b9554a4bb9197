"""String encodings found in the client executable, and in-place byte replacement.

The client stores most of its URLs in a length-prefixed record::

    u32 LE length | c0 00 c1 00 ... c(n-1)

i.e. each character as a single byte followed by a zero byte, except
the last character which has no trailing zero. A record for a string of
length ``n`` therefore occupies ``4 + n + (n - 1)`` bytes. Some strings
are plain UTF-16LE instead.

Replacements never change the size of the buffer: the new encoding is
written over the start of each occurrence, and is refused when it is
longer than the original.
"""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger()

LENGTH_PREFIX = struct.Struct("<I")


class StringEncoder(ABC):
    """Encodes a string into the byte form it has inside the binary."""

    name: str = ""

    @abstractmethod
    def encode(self, text: str) -> bytes:
        """Encode a string.

        Args:
            text: ASCII text

        Returns:
            Encoded bytes
        """
        ...


class LengthPrefixedEncoder(StringEncoder):
    """u32 length followed by zero-interleaved characters, no trailing zero."""

    name = "length_prefixed"

    def encode(self, text: str) -> bytes:
        if not text:
            return LENGTH_PREFIX.pack(0)
        body = bytearray()
        for i, char in enumerate(text):
            body.append(ord(char))
            if i < len(text) - 1:
                body.append(0x00)
        return LENGTH_PREFIX.pack(len(text)) + bytes(body)


class Utf16LEEncoder(StringEncoder):
    """Plain UTF-16LE, the .NET in-memory string form."""

    name = "utf16le"

    def encode(self, text: str) -> bytes:
        return text.encode("utf-16-le")


LENGTH_PREFIXED = LengthPrefixedEncoder()
UTF16LE = Utf16LEEncoder()

# Fixed search order for patch targets that may appear in either form.
DEFAULT_ENCODERS: tuple[StringEncoder, ...] = (LENGTH_PREFIXED, UTF16LE)


def find_all_occurrences(data: bytes | bytearray, pattern: bytes) -> list[int]:
    """Find every offset of ``pattern`` in ``data``, overlapping matches included."""
    positions = []
    if not pattern:
        return positions
    pos = data.find(pattern)
    while pos != -1:
        positions.append(pos)
        pos = data.find(pattern, pos + 1)
    return positions


def replace_bytes(data: bytearray, old: bytes, new: bytes) -> int:
    """Overwrite every occurrence of ``old`` with ``new`` in place.

    Only ``len(new)`` bytes are written at each occurrence; a shorter
    replacement leaves the tail of the original bytes untouched.

    Args:
        data: Buffer to modify
        old: Bytes to search for
        new: Replacement bytes, no longer than ``old``

    Returns:
        Number of occurrences replaced, 0 if ``new`` is longer than ``old``
    """
    if len(new) > len(old):
        logger.warning(
            "replacement_too_long",
            new_length=len(new),
            old_length=len(old),
        )
        return 0

    positions = find_all_occurrences(data, old)
    for pos in positions:
        data[pos:pos + len(new)] = new
    return len(positions)


def replace_string(
    data: bytearray,
    old: str,
    new: str,
    encoder: StringEncoder = LENGTH_PREFIXED,
) -> int:
    """Encode both strings with ``encoder`` and replace in place."""
    return replace_bytes(data, encoder.encode(old), encoder.encode(new))


def contains_string(data: bytes | bytearray, text: str, encoder: StringEncoder = LENGTH_PREFIXED) -> bool:
    return encoder.encode(text) in data
