"""Content integrity verification for downloaded archives.

Archives are identified by a SHA-256 hex digest published alongside
the download URL. Verification is a pure comparison of the digest of
the bytes on disk against the expected digest; a missing expected
digest means the archive is accepted as-is.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import structlog

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024


class IntegrityError(Exception):
    """Raised when content verification fails.

    Attributes:
        expected: Expected digest
        actual: Actual digest
        path: File that failed verification
        url: Where the file was downloaded from
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        actual: str | None = None,
        path: Path | None = None,
        url: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.path = path
        self.url = url
        super().__init__(message)


def compute_checksum(data: bytes) -> str:
    """Compute the SHA-256 hex digest of in-memory data."""
    return hashlib.sha256(data).hexdigest()


def compute_file_checksum(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file.

    Args:
        path: File to hash

    Returns:
        Lowercase hex digest
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def validate_checksum(path: Path, expected: str | None) -> bool:
    """Check a file against an expected digest.

    Args:
        path: File to check
        expected: Expected SHA-256 hex digest, None to skip validation

    Returns:
        True if no digest was expected or the digests match
    """
    if not expected:
        return True

    actual = compute_file_checksum(path)
    matches = actual == expected.strip().lower()
    if not matches:
        logger.debug("checksum_mismatch", path=str(path), expected=expected, actual=actual)
    return matches


def verify_file_checksum(path: Path, expected: str | None, url: str | None = None) -> bool:
    """Verify a file against an expected digest.

    Args:
        path: File to check
        expected: Expected SHA-256 hex digest, None to skip validation
        url: Source URL, attached to the error for diagnostics

    Returns:
        True if the file is valid

    Raises:
        IntegrityError: If the digest does not match
    """
    if not expected:
        return True

    actual = compute_file_checksum(path)
    if actual != expected.strip().lower():
        raise IntegrityError(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
            path=path,
            url=url,
        )
    return True
