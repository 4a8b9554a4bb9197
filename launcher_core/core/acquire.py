"""Archive acquisition: cache reuse, download and integrity gate.

Cached archives are disposable. A cached file is reused only when it
is above the minimum size and its digest matches; anything else is
deleted and fetched again. A freshly downloaded file that fails its
digest check is deleted and reported as an IntegrityError, it is
never retried automatically.
"""

from __future__ import annotations

from pathlib import Path

import httpx
import structlog

from launcher_core.core.download import Downloader, NetworkError
from launcher_core.core.integrity import IntegrityError, validate_checksum, verify_file_checksum
from launcher_core.core.types import ProgressCallback
from launcher_core.core.utils import format_size, get_arch, get_os_name

logger = structlog.get_logger()

DEFAULT_MIN_CACHED_SIZE = 1024 * 1024


class ArchiveAcquirer:
    """Downloads archives into the cache directory and validates them."""

    def __init__(
        self,
        downloader: Downloader | None = None,
        min_cached_size: int = DEFAULT_MIN_CACHED_SIZE,
    ):
        self.downloader = downloader or Downloader()
        self.min_cached_size = min_cached_size

    def _check_platform_supported(self) -> None:
        if get_os_name() == "darwin" and get_arch() == "amd64":
            raise NetworkError(
                "No archives are published for Intel macOS (darwin-amd64)"
            )

    def _reuse_cached(self, dest: Path, checksum: str | None) -> bool:
        if not dest.exists():
            return False

        size = dest.stat().st_size
        if size <= self.min_cached_size:
            logger.debug("archive_cache_too_small", path=str(dest), size=size)
            return False

        if validate_checksum(dest, checksum):
            logger.info("archive_cache_hit", path=str(dest), size=format_size(size))
            return True

        logger.warning("archive_cache_checksum_mismatch", path=str(dest))
        dest.unlink()
        return False

    def acquire(
        self,
        url: str,
        dest: Path,
        checksum: str | None = None,
        progress: ProgressCallback | None = None,
        allow_retry: bool = True,
    ) -> Path:
        """Make a valid archive available at ``dest``.

        Args:
            url: Archive download URL
            dest: Cache path for the archive
            checksum: Expected SHA-256 hex digest, None to skip validation
            progress: Optional progress callback
            allow_retry: Retry transient network failures with backoff

        Returns:
            Path to the validated archive

        Raises:
            NetworkError: If the download fails
            IntegrityError: If the downloaded archive does not match ``checksum``
        """
        self._check_platform_supported()

        if self._reuse_cached(dest, checksum):
            return dest

        logger.info("archive_download_start", url=url, path=str(dest))
        if progress:
            progress(f"Downloading {dest.name}...", 0)

        try:
            if allow_retry:
                self.downloader.download_with_retry(url, dest, progress)
            else:
                self.downloader.download_file(url, dest, progress)
        except (httpx.HTTPError, OSError) as e:
            raise NetworkError(
                f"Archive download failed: {e} (url={url}, path={dest})",
                url=url,
                path=dest,
            ) from e

        size = dest.stat().st_size
        logger.info("archive_downloaded", path=str(dest), size=format_size(size))

        try:
            verify_file_checksum(dest, checksum, url=url)
        except IntegrityError:
            logger.error("archive_checksum_failed", path=str(dest), url=url)
            dest.unlink(missing_ok=True)
            raise

        if progress and checksum:
            progress("Archive checksum verified", 100)
        logger.info("archive_validated", path=str(dest))
        return dest
