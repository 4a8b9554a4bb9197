"""Binary Domain Patcher.

Rewrites the vendor domain embedded in the client executable so the
client talks to a substitute backend. All rewrites are size-preserving
byte overwrites, done on an in-memory copy and written back in one
replace, so the binary on disk is always either the original or the
fully patched form.

A sibling ``<binary>.patched_custom`` JSON record notes which domain the
binary was patched for. The record alone is never trusted: the binary
must still contain the encoded main domain for it to count as patched.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field

from launcher_core.core.agent import AgentResult, ensure_agent_available
from launcher_core.core.backup import backup_is_stale, backup_path_for, ensure_backup, restore_backup
from launcher_core.core.config import PatcherConfig
from launcher_core.core.download import Downloader, NetworkError
from launcher_core.core.paths import find_client_path, server_dir
from launcher_core.core.state import VersionStore
from launcher_core.core.types import PatchMode, ProgressCallback
from launcher_core.core.utils import format_size
from launcher_core.formats.strings import (
    DEFAULT_ENCODERS,
    LENGTH_PREFIXED,
    UTF16LE,
    find_all_occurrences,
    replace_bytes,
    replace_string,
)

logger = structlog.get_logger()

ORIGINAL_DOMAIN = "hytale.com"
MIN_DOMAIN_LENGTH = 4
MAX_DOMAIN_LENGTH = 16
DIRECT_MAX_LENGTH = 10
SPLIT_PREFIX_LENGTH = 6

PATCHER_VERSION = "2.1.0"
PATCH_FLAG_SUFFIX = ".patched_custom"
AUTH_DOMAIN_ENV = "LAUNCHER_AUTH_DOMAIN"

TELEMETRY_URL = "https://ca900df42fcf57d4dd8401a86ddd7da2@sentry.hytale.com/2"
SUBDOMAIN_LABELS = (
    "https://tools.",
    "https://sessions.",
    "https://account-data.",
    "https://telemetry.",
)


class PatchError(Exception):
    """Raised when the client binary cannot be patched or restored."""

    def __init__(self, message: str, *, path: Path | None = None):
        super().__init__(message)
        self.path = path


@dataclass(frozen=True)
class DirectStrategy:
    """Domain fits the original slot: replace it outright."""

    domain: str
    mode: PatchMode = PatchMode.DIRECT

    @property
    def main_domain(self) -> str:
        return self.domain

    @property
    def subdomain_prefix(self) -> str:
        return ""


@dataclass(frozen=True)
class SplitStrategy:
    """Domain is spread over the subdomain-prefix slot and the base-domain slot."""

    prefix: str
    suffix: str
    mode: PatchMode = PatchMode.SPLIT

    @property
    def main_domain(self) -> str:
        return self.suffix

    @property
    def subdomain_prefix(self) -> str:
        return self.prefix


DomainStrategy = DirectStrategy | SplitStrategy


def is_valid_domain(domain: str | None) -> bool:
    """Domains must be 4-16 ASCII characters, one byte each in the encoded slots."""
    return bool(domain) and domain.isascii() and MIN_DOMAIN_LENGTH <= len(domain) <= MAX_DOMAIN_LENGTH


def domain_strategy(domain: str) -> DomainStrategy:
    """Choose how ``domain`` is laid over the original strings.

    Raises:
        PatchError: If the domain is not ASCII or its length is outside the supported range
    """
    if not is_valid_domain(domain):
        raise PatchError(
            f"Unsupported domain {domain!r} "
            f"(must be {MIN_DOMAIN_LENGTH}-{MAX_DOMAIN_LENGTH} ASCII characters)"
        )
    if len(domain) <= DIRECT_MAX_LENGTH:
        return DirectStrategy(domain)
    return SplitStrategy(domain[:SPLIT_PREFIX_LENGTH], domain[SPLIT_PREFIX_LENGTH:])


def resolve_target_domain(config: PatcherConfig, store: VersionStore | None = None) -> str:
    """Pick the domain to patch for.

    Precedence is the ``LAUNCHER_AUTH_DOMAIN`` environment variable, the
    configured override, the domain saved in the launcher state, then the
    default. A non-ASCII or out-of-range domain is replaced by the default.
    """
    domain = os.environ.get(AUTH_DOMAIN_ENV) or config.auth_domain
    if not domain and store is not None:
        domain = store.load_auth_domain()
    domain = domain or config.default_domain

    if not is_valid_domain(domain):
        logger.warning(
            "invalid_auth_domain",
            domain=domain,
            length=len(domain),
            min_length=MIN_DOMAIN_LENGTH,
            max_length=MAX_DOMAIN_LENGTH,
            fallback=config.default_domain,
        )
        return config.default_domain
    return domain


def patch_flag_path(binary: Path) -> Path:
    return binary.with_name(binary.name + PATCH_FLAG_SUFFIX)


class PatchRecord(BaseModel):
    """Contents of the patch flag file."""

    patched_at: str = Field(..., alias="patchedAt", description="ISO timestamp of the patch")
    original_domain: str = Field(default=ORIGINAL_DOMAIN, alias="originalDomain")
    target_domain: str = Field(..., alias="targetDomain")
    patch_mode: PatchMode = Field(..., alias="patchMode")
    main_domain: str = Field(..., alias="mainDomain")
    subdomain_prefix: str = Field(default="", alias="subdomainPrefix")
    patcher_version: str = Field(default=PATCHER_VERSION, alias="patcherVersion")
    verified: str = Field(default="binary_contents", description="What the record is corroborated by")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def for_domain(cls, domain: str, now: datetime | None = None) -> PatchRecord:
        strategy = domain_strategy(domain)
        return cls(
            patched_at=(now or datetime.now(timezone.utc)).isoformat(),
            target_domain=domain,
            patch_mode=strategy.mode,
            main_domain=strategy.main_domain,
            subdomain_prefix=strategy.subdomain_prefix,
        )


def read_patch_record(binary: Path) -> PatchRecord | None:
    """Read the flag file, None if missing or unreadable."""
    flag = patch_flag_path(binary)
    if not flag.exists():
        return None
    try:
        return PatchRecord.model_validate_json(flag.read_bytes())
    except (OSError, ValueError) as e:
        logger.warning("patch_record_unreadable", path=str(flag), error=str(e))
        return None


def write_patch_record(binary: Path, record: PatchRecord) -> None:
    flag = patch_flag_path(binary)
    flag.write_text(record.model_dump_json(by_alias=True, indent=2), encoding="utf-8")


@dataclass
class PatchStatus:
    """Whether a binary is patched for the configured domain."""

    patched: bool
    current_domain: str | None = None
    needs_restore: bool = False


@dataclass
class PatchResult:
    """Outcome of one patch attempt."""

    success: bool = True
    already_patched: bool = False
    patch_count: int = 0
    domain: str | None = None
    mode: PatchMode | None = None
    encoding: str | None = None
    warning: str | None = None


@dataclass
class LaunchPatchReport:
    """Outcome of preparing an installation for launch."""

    client: PatchResult | None = None
    agent: AgentResult | None = None
    client_error: str | None = None
    agent_error: str | None = None

    @property
    def client_ok(self) -> bool:
        return self.client is not None and self.client.success

    @property
    def agent_ok(self) -> bool:
        return self.agent is not None

    @property
    def success(self) -> bool:
        return self.client_ok or self.agent_ok

    @property
    def already_patched(self) -> bool:
        return (
            self.client is not None
            and self.client.already_patched
            and self.agent is not None
            and self.agent.already_exists
        )

    @property
    def patch_count(self) -> int:
        return self.client.patch_count if self.client else 0


def _scaled(progress: ProgressCallback | None, prefix: str, offset: float, scale: float) -> ProgressCallback | None:
    if progress is None:
        return None

    def forward(message: str, percent: float | None = None, *extra: object) -> None:
        progress(f"{prefix}{message}", offset + percent * scale if percent is not None else None)

    return forward


def _write_atomic(binary: Path, data: bytes | bytearray) -> None:
    tmp_path = binary.with_name(binary.name + ".tmp")
    try:
        tmp_path.write_bytes(data)
        shutil.copymode(binary, tmp_path)
        os.replace(tmp_path, binary)
    finally:
        tmp_path.unlink(missing_ok=True)


class ClientPatcher:
    """Patches the client binary for the configured auth domain."""

    def __init__(
        self,
        config: PatcherConfig | None = None,
        store: VersionStore | None = None,
        downloader: Downloader | None = None,
    ):
        self.config = config or PatcherConfig()
        self.store = store
        self.downloader = downloader

    @property
    def target_domain(self) -> str:
        return resolve_target_domain(self.config, self.store)

    def get_patch_status(self, binary: Path) -> PatchStatus:
        """Compare the patch record and the binary against the target domain."""
        record = read_patch_record(binary)
        if record is None:
            return PatchStatus(patched=False)

        domain = self.target_domain
        if record.target_domain != domain:
            logger.info(
                "patch_domain_changed",
                patched_for=record.target_domain,
                target=domain,
            )
            return PatchStatus(patched=False, current_domain=record.target_domain, needs_restore=True)

        main_domain = domain_strategy(domain).main_domain
        data = binary.read_bytes()
        if any(encoder.encode(main_domain) in data for encoder in DEFAULT_ENCODERS):
            return PatchStatus(patched=True, current_domain=record.target_domain)

        logger.info("patch_record_not_corroborated", path=str(binary), domain=domain)
        return PatchStatus(patched=False)

    def apply_domain_patches(self, data: bytearray, domain: str) -> int:
        """Rewrite the telemetry URL, the main domain and the subdomain labels.

        Args:
            data: Binary contents, modified in place
            domain: Target domain

        Returns:
            Number of replaced occurrences
        """
        strategy = domain_strategy(domain)
        protocol = self.config.protocol
        logger.info(
            "patch_strategy",
            mode=strategy.mode.value,
            main_domain=strategy.main_domain,
            subdomain_prefix=strategy.subdomain_prefix,
        )

        total = 0

        count = replace_string(data, TELEMETRY_URL, f"{protocol}t@{domain}/2")
        logger.debug("telemetry_url_patched", count=count)
        total += count

        count = replace_string(data, ORIGINAL_DOMAIN, strategy.main_domain)
        logger.debug("main_domain_patched", count=count, new=strategy.main_domain)
        total += count

        new_label = protocol + strategy.subdomain_prefix
        for label in SUBDOMAIN_LABELS:
            count = replace_string(data, label, new_label)
            logger.debug("subdomain_label_patched", label=label, new=new_label, count=count)
            total += count

        return total

    def patch_community_url(self, data: bytearray) -> tuple[int, str | None]:
        """Replace the community invite, trying each encoding in order.

        Returns:
            Replacement count and the name of the encoding that matched
        """
        for encoder in DEFAULT_ENCODERS:
            count = replace_string(
                data,
                self.config.community_invite,
                self.config.community_replacement,
                encoder,
            )
            if count:
                return count, encoder.name
        return 0, None

    def find_and_replace_domain_smart(self, data: bytearray, old: str, new: str) -> int:
        """Replace UTF-16LE occurrences of ``old`` matched on all but the last code unit.

        The final character is compared on its low byte only, which also
        catches strings whose last character carries a metadata byte
        instead of a zero high byte.
        """
        if len(new) > len(old):
            logger.warning("replacement_too_long", new_length=len(new), old_length=len(old))
            return 0

        old_head = UTF16LE.encode(old[:-1])
        new_head = UTF16LE.encode(new[:-1])
        old_last = ord(old[-1])
        new_last = ord(new[-1])

        count = 0
        for pos in find_all_occurrences(data, old_head):
            last_pos = pos + len(old_head)
            if last_pos >= len(data) or data[last_pos] != old_last:
                continue
            data[pos:pos + len(new_head)] = new_head
            data[pos + len(new_head)] = new_last
            logger.debug("legacy_occurrence_patched", offset=hex(pos))
            count += 1
        return count

    def _prepare_for_domain_change(self, binary: Path, status: PatchStatus, progress: ProgressCallback | None) -> None:
        backup = backup_path_for(binary)
        if not backup.exists():
            raise PatchError(
                f"Binary is patched for {status.current_domain} and no backup exists to restore",
                path=binary,
            )
        if backup_is_stale(binary):
            # The binary was replaced since the backup was taken; it is the new original.
            logger.info("restore_skipped_stale_backup", path=str(binary))
            return
        if progress:
            progress("Restoring original for domain change...", 5)
        restore_backup(binary)
        patch_flag_path(binary).unlink(missing_ok=True)

    def patch_client(self, binary: Path, progress: ProgressCallback | None = None) -> PatchResult:
        """Patch ``binary`` for the target domain.

        Args:
            binary: Client executable
            progress: Optional progress callback

        Returns:
            Result of the attempt; ``already_patched`` when nothing was rewritten

        Raises:
            PatchError: If the binary is missing or cannot be restored
            OSError: If the backup or the rewritten binary cannot be written
        """
        if not binary.is_file():
            raise PatchError(f"Client binary not found: {binary}", path=binary)

        domain = self.target_domain
        strategy = domain_strategy(domain)
        logger.info(
            "patch_client_start",
            path=str(binary),
            domain=domain,
            mode=strategy.mode.value,
        )

        status = self.get_patch_status(binary)
        if status.patched:
            logger.info("client_already_patched", domain=domain)
            if progress:
                progress("Client already patched", 100)
            return PatchResult(already_patched=True, domain=domain, mode=strategy.mode)

        if status.needs_restore:
            self._prepare_for_domain_change(binary, status, progress)

        if progress:
            progress("Preparing to patch client...", 10)
        ensure_backup(binary)

        if progress:
            progress("Reading client binary...", 20)
        data = bytearray(binary.read_bytes())
        logger.debug("client_binary_read", size=format_size(len(data)))

        if progress:
            progress("Patching domain references...", 50)
        domain_count = self.apply_domain_patches(data, domain)
        community_count, community_encoding = self.patch_community_url(data)
        result = PatchResult(domain=domain, mode=strategy.mode)

        if domain_count == 0 and community_count == 0:
            legacy_count = self.find_and_replace_domain_smart(data, ORIGINAL_DOMAIN, strategy.main_domain)
            if legacy_count == 0:
                logger.warning("patch_no_occurrences", path=str(binary))
                result.warning = "No occurrences found"
                return result
            result.patch_count = legacy_count
            result.encoding = UTF16LE.name
        else:
            result.patch_count = domain_count + community_count
            result.encoding = LENGTH_PREFIXED.name if domain_count else community_encoding

        if progress:
            progress("Writing patched binary...", 80)
        _write_atomic(binary, data)
        write_patch_record(binary, PatchRecord.for_domain(domain))

        logger.info(
            "patch_client_complete",
            domain_occurrences=domain_count,
            community_occurrences=community_count,
            encoding=result.encoding,
        )
        if progress:
            progress("Patching complete", 100)
        return result

    def restore_client(self, binary: Path) -> None:
        """Put the original binary back and drop the patch record.

        Raises:
            PatchError: If there is no backup
        """
        if not restore_backup(binary):
            raise PatchError(f"No backup found to restore for {binary}", path=binary)
        patch_flag_path(binary).unlink(missing_ok=True)

    def ensure_client_patched(self, game_dir: Path, progress: ProgressCallback | None = None) -> LaunchPatchReport:
        """Patch the client and fetch the server agent ahead of a launch.

        Failures of either component are recorded in the report rather
        than raised, so a launch can still decide to go ahead.
        """
        report = LaunchPatchReport()

        binary = find_client_path(game_dir)
        if binary is None:
            logger.warning("client_binary_not_found", game_dir=str(game_dir))
            report.client_error = "Client binary not found"
        else:
            if progress:
                progress("Patching client binary...", 10)
            try:
                report.client = self.patch_client(binary, _scaled(progress, "Client: ", 0, 0.5))
            except (PatchError, OSError) as e:
                logger.error("client_patch_failed", path=str(binary), error=str(e))
                report.client_error = str(e)

        agent_dir = server_dir(game_dir)
        if not agent_dir.is_dir():
            logger.warning("server_dir_not_found", path=str(agent_dir))
            report.agent = AgentResult(agent_dir / self.config.agent_filename, skipped=True)
        else:
            if progress:
                progress("Checking agent...", 50)
            try:
                report.agent = ensure_agent_available(
                    agent_dir,
                    self.config,
                    self.downloader,
                    _scaled(progress, "Agent: ", 50, 0.5),
                )
            except (NetworkError, OSError) as e:
                logger.error("agent_download_failed", path=str(agent_dir), error=str(e))
                report.agent_error = str(e)

        if progress:
            progress("Patching complete", 100)
        return report
