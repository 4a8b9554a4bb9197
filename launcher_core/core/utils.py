"""Shared utilities for launcher-core."""

from __future__ import annotations

import platform
import re
import sys

_V_PATTERN = re.compile(r"v(\d+)")
_PWR_PATTERN = re.compile(r"(\d+)\.pwr")
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def get_os_name() -> str:
    """Get the platform name used in archive URLs.

    Returns:
        One of "windows", "darwin" or "linux"
    """
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def get_arch() -> str:
    """Get the CPU architecture used in archive URLs.

    Returns:
        "arm64" for ARM machines, "amd64" otherwise
    """
    machine = platform.machine().lower()
    if machine in {"arm64", "aarch64", "armv8l"}:
        return "arm64"
    return "amd64"


def platform_key() -> str:
    """Get the version-info platform key, e.g. "windows-amd64"."""
    return f"{get_os_name()}-{get_arch()}"


def extract_version_number(version: str | int | None) -> int:
    """Extract a build ordinal from the formats the backend has used.

    Args:
        version: "v8", "v8-windows-amd64.pwr", "7.pwr", "12" or an int

    Returns:
        Build ordinal, 0 if it cannot be parsed

    Example:
        >>> extract_version_number("v8-windows-amd64.pwr")
        8
        >>> extract_version_number("7.pwr")
        7
    """
    if version is None or version == "":
        return 0
    if isinstance(version, int):
        return version

    v_match = _V_PATTERN.search(version)
    if v_match:
        return int(v_match.group(1))

    pwr_match = _PWR_PATTERN.search(version)
    if pwr_match:
        return int(pwr_match.group(1))

    int_match = _LEADING_INT.match(version)
    if int_match:
        return int(int_match.group(1))
    return 0


def format_size(size: int | float) -> str:
    """Format byte size in human-readable format.

    Args:
        size: Size in bytes

    Returns:
        Human-readable size string

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536)
        '1.5 KB'
    """
    if size < 0:
        return "0 B"

    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} PB"
