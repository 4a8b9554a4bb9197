"""Persistent launcher state: installed build, branch and auth domain.

State is a small JSON document. Writes go to a temporary file that is
fsynced and then atomically renamed over the primary, after copying the
previous primary to a ``.bak`` sibling. Reads fall back to the backup
when the primary is missing or unreadable.
"""

from __future__ import annotations

import json
import os
import shutil
import time
from pathlib import Path
from typing import Any, Protocol

import structlog

from launcher_core.core.types import Branch
from launcher_core.core.utils import extract_version_number

logger = structlog.get_logger()


class ConfigPersistenceError(Exception):
    """Raised when launcher state cannot be written."""

    def __init__(self, message: str, *, path: Path | None = None):
        self.path = path
        super().__init__(message)


class VersionStore(Protocol):
    """What the updater and patcher need from the launcher state."""

    def load_installed_version(self) -> int | None: ...

    def save_installed_version(self, version: int) -> None: ...

    def load_auth_domain(self) -> str | None: ...


class LauncherState:
    """JSON-backed launcher state."""

    STATE_FILENAME = "launcher_state.json"
    SAVE_ATTEMPTS = 3

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    @property
    def state_file_path(self) -> Path:
        return self.data_dir / self.STATE_FILENAME

    @property
    def backup_file_path(self) -> Path:
        return self.state_file_path.with_suffix(".json.bak")

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning("state_read_failed", path=str(path), error=str(e))
            return None
        if not isinstance(raw, dict):
            logger.warning("state_invalid_format", path=str(path), type=type(raw).__name__)
            return None
        return raw

    def load(self) -> dict[str, Any]:
        """Load the state document, recovering from the backup if needed."""
        data = self._read(self.state_file_path)
        if data is not None:
            return data

        backup = self._read(self.backup_file_path)
        if backup is None:
            return {}

        logger.warning("state_recovered_from_backup", path=str(self.backup_file_path))
        try:
            shutil.copyfile(self.backup_file_path, self.state_file_path)
        except OSError as e:
            logger.error("state_restore_failed", error=str(e))
        return backup

    def _write_once(self, data: dict[str, Any]) -> None:
        state_path = self.state_file_path
        state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = state_path.with_suffix(".json.tmp")

        payload = json.dumps(data, indent=2)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())

        # Reject a temp file that does not read back as the same document.
        if json.loads(tmp_path.read_text(encoding="utf-8")) != data:
            raise OSError(f"State verification failed for {tmp_path}")

        if state_path.exists():
            try:
                shutil.copyfile(state_path, self.backup_file_path)
            except OSError as e:
                logger.warning("state_backup_failed", error=str(e))

        os.replace(tmp_path, state_path)

    def update(self, **changes: Any) -> dict[str, Any]:
        """Merge ``changes`` into the state and persist it durably.

        Raises:
            ConfigPersistenceError: If every save attempt fails
        """
        data = {**self.load(), **changes}
        last_error: OSError | None = None

        for attempt in range(1, self.SAVE_ATTEMPTS + 1):
            try:
                self._write_once(data)
                return data
            except OSError as e:
                last_error = e
                logger.error("state_save_failed", attempt=attempt, error=str(e))
                self.state_file_path.with_suffix(".json.tmp").unlink(missing_ok=True)
                if attempt < self.SAVE_ATTEMPTS:
                    time.sleep(0.1 * attempt)

        raise ConfigPersistenceError(
            f"Failed to save launcher state: {last_error}",
            path=self.state_file_path,
        ) from last_error

    def load_installed_version(self) -> int | None:
        """Get the installed build, None if nothing is installed."""
        value = self.load().get("version_client")
        if value is None:
            return None
        version = extract_version_number(value)
        return version if version > 0 else None

    def save_installed_version(self, version: int) -> None:
        """Persist the installed build; durable once this returns."""
        self.update(version_client=int(version))
        logger.debug("installed_version_saved", version=version)

    def load_branch(self) -> Branch:
        value = self.load().get("version_branch") or Branch.RELEASE.value
        try:
            return Branch(value)
        except ValueError:
            logger.warning("state_invalid_branch", branch=value)
            return Branch.RELEASE

    def save_branch(self, branch: Branch | str) -> None:
        self.update(version_branch=Branch(branch).value)

    def load_auth_domain(self) -> str | None:
        value = self.load().get("auth_domain")
        return value or None

    def save_auth_domain(self, domain: str) -> None:
        self.update(auth_domain=domain)
