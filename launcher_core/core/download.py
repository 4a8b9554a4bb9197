"""HTTP downloader with retry and exponential backoff."""

from __future__ import annotations

import time
from pathlib import Path

import httpx
import structlog

from launcher_core.core.config import NetworkConfig
from launcher_core.core.types import ProgressCallback

logger = structlog.get_logger()

STREAM_CHUNK_SIZE = 64 * 1024
# Status codes worth retrying; anything else in 4xx is permanent.
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


class NetworkError(Exception):
    """Raised when a download fails.

    Attributes:
        url: URL being fetched
        path: Destination path, if any
    """

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        path: Path | None = None,
    ):
        self.url = url
        self.path = path
        super().__init__(message)


def is_transient_error(error: Exception) -> bool:
    """Check whether a download error is worth retrying.

    Transport failures (timeouts, resets, DNS hiccups) and server-side
    or throttling statuses are transient; other HTTP statuses are not.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS
    return isinstance(error, httpx.TransportError)


class Downloader:
    """Streaming HTTP downloader.

    Files are streamed to a ``.part`` sibling and renamed into place
    only once the body has been fully received.
    """

    def __init__(self, config: NetworkConfig | None = None):
        """Initialize downloader.

        Args:
            config: Optional network configuration
        """
        self.config = config or NetworkConfig()
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
                headers={"User-Agent": self.config.user_agent},
            )
        return self._client

    def download_file(
        self,
        url: str,
        dest: Path,
        progress: ProgressCallback | None = None,
    ) -> Path:
        """Download a URL to a file in a single attempt.

        Args:
            url: URL to download
            dest: Destination file path
            progress: Optional callback, called as (message, percent, downloaded, total)

        Returns:
            Destination path

        Raises:
            httpx.HTTPError: On any transport or status failure
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        part_path = dest.with_name(dest.name + ".part")

        try:
            with self.client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("Content-Length", 0)) or None
                downloaded = 0
                with open(part_path, "wb") as f:
                    for chunk in response.iter_bytes(STREAM_CHUNK_SIZE):
                        f.write(chunk)
                        downloaded += len(chunk)
                        if progress:
                            percent = downloaded * 100.0 / total if total else None
                            progress("Downloading...", percent, downloaded, total)
            part_path.replace(dest)
        except BaseException:
            if part_path.exists():
                part_path.unlink()
            raise

        logger.debug("download_complete", url=url, path=str(dest), size=dest.stat().st_size)
        return dest

    def download_with_retry(
        self,
        url: str,
        dest: Path,
        progress: ProgressCallback | None = None,
    ) -> Path:
        """Download a URL, retrying transient failures with exponential backoff.

        Args:
            url: URL to download
            dest: Destination file path
            progress: Optional progress callback

        Returns:
            Destination path

        Raises:
            httpx.HTTPError: The last error, once retries are exhausted or
                a non-transient error occurs
        """
        last_error: httpx.HTTPError | None = None

        for attempt in range(self.config.max_retries + 1):
            try:
                return self.download_file(url, dest, progress)
            except httpx.HTTPError as e:
                last_error = e
                if attempt < self.config.max_retries and is_transient_error(e):
                    wait_time = self.config.base_backoff * (2 ** attempt)
                    logger.warning(
                        "download_retry",
                        url=url,
                        attempt=attempt + 1,
                        wait=wait_time,
                        error=str(e)
                    )
                    if progress:
                        progress(f"Download failed, retrying ({attempt + 1}/{self.config.max_retries})...", None)
                    time.sleep(wait_time)
                    continue
                break

        logger.error("download_failed", url=url, error=str(last_error))
        if last_error:
            raise last_error
        raise httpx.HTTPError(f"Failed to download {url}")

    def head(self, url: str) -> httpx.Response:
        """Issue a HEAD request."""
        return self.client.head(url)

    def get_json(self, url: str, params: dict[str, str] | None = None) -> object:
        """GET a URL and decode its JSON body.

        Raises:
            httpx.HTTPError: On transport or status failure
            ValueError: If the body is not JSON
        """
        response = self.client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> Downloader:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
