"""String encodings found in the game client binary."""

from launcher_core.formats.strings import (
    DEFAULT_ENCODERS,
    LENGTH_PREFIXED,
    UTF16LE,
    LengthPrefixedEncoder,
    StringEncoder,
    Utf16LEEncoder,
    contains_string,
    find_all_occurrences,
    replace_bytes,
    replace_string,
)

__all__ = [
    "StringEncoder",
    "LengthPrefixedEncoder",
    "Utf16LEEncoder",
    "LENGTH_PREFIXED",
    "UTF16LE",
    "DEFAULT_ENCODERS",
    "find_all_occurrences",
    "replace_bytes",
    "replace_string",
    "contains_string",
]
