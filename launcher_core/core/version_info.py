"""Version-info endpoint client and archive URL construction."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from launcher_core.core.config import AppConfig
from launcher_core.core.download import Downloader, NetworkError
from launcher_core.core.types import Branch, BranchInfo, VersionDetails
from launcher_core.core.utils import get_arch, get_os_name, platform_key

logger = structlog.get_logger()

FULL_ARCHIVE_SOURCE = 0


@dataclass
class VersionInfoCache:
    """Last /infos response and when it was fetched (monotonic seconds)."""

    data: dict[str, Any] | None = None
    fetched_at: float = 0.0

    def is_fresh(self, ttl: float, now: float) -> bool:
        return self.data is not None and (now - self.fetched_at) < ttl

    def store(self, data: dict[str, Any], now: float) -> None:
        self.data = data
        self.fetched_at = now


class PatchManifestEntry(BaseModel):
    """One build in the differential patch manifest."""

    url: str | None = Field(None, description="Differential archive URL")
    source_version: int | None = Field(None, alias="from", description="Build the patch applies to")
    checksum: str | None = Field(None, description="SHA-256 of the differential archive")
    differential: bool = Field(default=True, description="Entry is a true differential")
    full_checksum: str | None = Field(None, alias="fullChecksum", description="SHA-256 of the full archive")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


def build_archive_url(
    base_url: str,
    version: int,
    branch: Branch | str = Branch.RELEASE,
    source_version: int = FULL_ARCHIVE_SOURCE,
) -> str:
    """Build an archive download URL.

    Args:
        base_url: Archive download base URL
        version: Target build
        branch: Release channel
        source_version: 0 for a full archive, the source build for a differential

    Returns:
        URL of the form {base}/{os}/{arch}/{branch}/{source}/{version}.pwr
    """
    return (
        f"{base_url.rstrip('/')}/{get_os_name()}/{get_arch()}/"
        f"{Branch(branch).value}/{source_version}/{version}.pwr"
    )


class VersionInfoClient:
    """Client for the version-info API and archive metadata.

    The /infos response covers every platform and branch, so a single
    cached response serves all lookups until the TTL expires.
    """

    def __init__(
        self,
        config: AppConfig,
        downloader: Downloader | None = None,
        cache: VersionInfoCache | None = None,
        clock=time.monotonic,
    ):
        self.config = config
        self.downloader = downloader or Downloader(config.network)
        self.cache = cache if cache is not None else VersionInfoCache()
        self._clock = clock

    def fetch_infos(self) -> dict[str, Any]:
        """Fetch the /infos document, honouring the cache TTL.

        On fetch failure an expired cached response is reused if one exists.

        Raises:
            NetworkError: If the fetch fails and nothing is cached
        """
        now = self._clock()
        if self.cache.is_fresh(self.config.version_cache_ttl, now):
            logger.debug("version_info_cache_hit")
            assert self.cache.data is not None
            return self.cache.data

        url = f"{self.config.api_base_url.rstrip('/')}/infos"
        try:
            data = self.downloader.get_json(url)
            if not isinstance(data, dict):
                raise ValueError("Invalid /infos response structure")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("version_info_fetch_failed", url=url, error=str(e))
            if self.cache.data is not None:
                logger.warning("version_info_using_expired_cache", age=now - self.cache.fetched_at)
                return self.cache.data
            raise NetworkError(f"Failed to fetch version info: {e}", url=url) from e

        self.cache.store(data, now)
        logger.debug("version_info_fetched", url=url, platforms=len(data))
        return data

    def fetch_branch_info(self, branch: Branch | str = Branch.RELEASE) -> BranchInfo:
        """Get the version-info entry for this platform and branch.

        Raises:
            NetworkError: If the entry is missing or malformed
        """
        infos = self.fetch_infos()
        key = platform_key()
        branch_value = Branch(branch).value
        entry = infos.get(key, {}).get(branch_value) if isinstance(infos.get(key), dict) else None
        if entry is None:
            raise NetworkError(f"No version info for platform {key} branch {branch_value}")
        try:
            return BranchInfo.model_validate(entry)
        except ValidationError as e:
            raise NetworkError(f"Malformed version info for {key}/{branch_value}: {e}") from e

    def get_latest_version(self, branch: Branch | str = Branch.RELEASE) -> int:
        """Get the newest build ordinal for a branch."""
        info = self.fetch_branch_info(branch)
        logger.info("latest_version", branch=Branch(branch).value, version=info.newest)
        return info.newest

    def archive_url(self, version: int, branch: Branch | str, source_version: int = FULL_ARCHIVE_SOURCE) -> str:
        return build_archive_url(self.config.patch_base_url, version, branch, source_version)

    def check_archive_exists(self, version: int, branch: Branch | str = Branch.RELEASE) -> bool:
        """Check whether a full archive is published for a build."""
        url = self.archive_url(version, branch)
        try:
            response = self.downloader.head(url)
        except httpx.HTTPError as e:
            logger.debug("archive_probe_failed", url=url, error=str(e))
            return False
        return response.status_code == 200

    def discover_available_versions(
        self,
        latest: int,
        branch: Branch | str = Branch.RELEASE,
        max_probe: int = 50,
    ) -> list[int]:
        """Probe downward from ``latest`` for published full archives.

        Returns:
            Available builds, newest first
        """
        available = []
        for version in range(latest, max(1, latest - max_probe) - 1, -1):
            if self.check_archive_exists(version, branch):
                available.append(version)
        return available

    def fetch_patch_manifest(self, branch: Branch | str = Branch.RELEASE) -> dict[int, PatchManifestEntry]:
        """Fetch the differential patch manifest.

        A failed or malformed manifest yields no entries, so every step
        is deployed from a full archive.
        """
        params = {"branch": Branch(branch).value, "os": get_os_name(), "arch": get_arch()}
        try:
            data = self.downloader.get_json(self.config.manifest_url, params=params)
            patches = data.get("patches", {}) if isinstance(data, dict) else {}
            return {int(build): PatchManifestEntry.model_validate(entry) for build, entry in patches.items()}
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.warning("patch_manifest_unavailable", error=str(e))
            return {}

    def get_version_details(self, version: int, branch: Branch | str = Branch.RELEASE) -> VersionDetails:
        """Resolve download metadata for one build.

        Args:
            version: Build ordinal
            branch: Release channel

        Returns:
            Full archive URL plus any differential archive information
        """
        branch = Branch(branch)
        previous = version - 1
        details = VersionDetails(
            version=version,
            branch=branch,
            full_url=self.archive_url(version, branch),
            source_version=previous if previous > 0 else None,
        )

        if not self.config.use_patch_manifest:
            return details

        entry = self.fetch_patch_manifest(branch).get(version)
        if entry is None:
            return details

        source = entry.source_version if entry.source_version is not None else details.source_version
        return details.model_copy(
            update={
                "differential_url": entry.url or (
                    self.archive_url(version, branch, source) if source else None
                ),
                "source_version": source,
                "checksum": entry.checksum,
                "full_checksum": entry.full_checksum,
                "is_differential": entry.differential,
            }
        )

    def close(self) -> None:
        self.downloader.close()

    def __enter__(self) -> VersionInfoClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
