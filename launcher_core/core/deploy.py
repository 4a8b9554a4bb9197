"""Archive deployment through the external apply tool.

The apply tool (butler) patches the install directory in place from a
full or differential archive, using a scratch staging directory for
intermediate state. Failures are classified from the tool's output so
the caller gets an actionable message instead of an exit code.
"""

from __future__ import annotations

import enum
import re
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from io import BufferedReader
from pathlib import Path

import structlog

from launcher_core.core.types import ProgressCallback
from launcher_core.core.utils import format_size

logger = structlog.get_logger()

STAGING_DIR_NAME = "staging-temp"
DEFAULT_TIMEOUT = 600.0
DEFAULT_MAX_OUTPUT = 10 * 1024 * 1024
READ_CHUNK_SIZE = 64 * 1024
READER_JOIN_TIMEOUT = 5.0

# Status glyphs and emoji the tool decorates its output with.
_SYMBOLS = re.compile("[✔✖✓✗⚠\U0001f300-\U0001faff]")


class DeploymentFailure(enum.Enum):
    """Classification of a failed deployment."""

    corrupted_archive = "corrupted_archive"
    permission_denied = "permission_denied"
    disk_full = "disk_full"
    generic = "generic"


FAILURE_MESSAGES = {
    DeploymentFailure.corrupted_archive: "Corrupted archive detected. Please retry download.",
    DeploymentFailure.permission_denied: "Permission denied. Check file permissions and try again.",
    DeploymentFailure.disk_full: "Insufficient disk space. Free up space and try again.",
    DeploymentFailure.generic: "Game deployment failed",
}


class DeploymentError(Exception):
    """Raised when an archive cannot be deployed.

    Attributes:
        kind: Failure classification
        stderr: Cleaned stderr of the apply tool
        stdout: Cleaned stdout of the apply tool
        returncode: Exit status, None if the tool did not exit normally
        archive_path: Archive being deployed
    """

    def __init__(
        self,
        message: str,
        *,
        kind: DeploymentFailure = DeploymentFailure.generic,
        stderr: str = "",
        stdout: str = "",
        returncode: int | None = None,
        archive_path: Path | None = None,
    ):
        self.kind = kind
        self.stderr = stderr
        self.stdout = stdout
        self.returncode = returncode
        self.archive_path = archive_path
        super().__init__(message)


@dataclass
class CommandResult:
    """Outcome of an external command."""

    args: list[str]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    output_exceeded: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.output_exceeded


class CommandRunner:
    """Runs external commands and captures their output.

    Each stream is read as it is produced and kept up to ``max_output``
    bytes; a command that writes more is killed and reported with
    ``output_exceeded``. Raises OSError if the executable cannot be started.
    """

    def run(self, args: list[str], timeout: float, max_output: int = DEFAULT_MAX_OUTPUT) -> CommandResult:
        process = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        exceeded = threading.Event()
        stdout = bytearray()
        stderr = bytearray()

        def drain(stream: BufferedReader, buffer: bytearray) -> None:
            try:
                while chunk := stream.read1(READ_CHUNK_SIZE):
                    room = max_output - len(buffer)
                    if len(chunk) > room:
                        buffer.extend(chunk[:room])
                        exceeded.set()
                        process.kill()
                        return
                    buffer.extend(chunk)
            finally:
                stream.close()

        readers = [
            threading.Thread(target=drain, args=(process.stdout, stdout), daemon=True),
            threading.Thread(target=drain, args=(process.stderr, stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            process.kill()
            process.wait()
        for reader in readers:
            reader.join(READER_JOIN_TIMEOUT)

        return CommandResult(
            args=args,
            returncode=None if timed_out else process.returncode,
            stdout=stdout.decode("utf-8", "replace"),
            stderr=stderr.decode("utf-8", "replace"),
            timed_out=timed_out,
            output_exceeded=exceeded.is_set(),
        )


def strip_symbols(text: str) -> str:
    """Remove status glyphs and emoji from tool output."""
    return _SYMBOLS.sub("", text).strip()


def classify_deployment_failure(result: CommandResult) -> DeploymentFailure:
    """Classify a failed apply run from its captured output.

    Args:
        result: Result of the apply tool

    Returns:
        Failure classification
    """
    text = f"{result.stderr} {result.stdout}".lower()

    if "unexpected eof" in text:
        return DeploymentFailure.corrupted_archive
    if "permission denied" in text:
        return DeploymentFailure.permission_denied
    if "no space left" in text or "device full" in text:
        return DeploymentFailure.disk_full
    return DeploymentFailure.generic


def apply_tool_name() -> str:
    return "butler.exe" if sys.platform.startswith("win") else "butler"


def find_apply_tool(tools_dir: Path) -> Path:
    """Locate the apply tool inside the tools directory.

    Raises:
        DeploymentError: If the tool is not installed
    """
    tool = tools_dir / apply_tool_name()
    if not tool.is_file():
        raise DeploymentError(f"Archive apply tool not found: {tool}")
    return tool


class ArchiveDeployer:
    """Applies archives to the install directory."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_output: int = DEFAULT_MAX_OUTPUT,
    ):
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        self.max_output = max_output

    def _prepare_staging(self, dest_dir: Path) -> Path:
        staging_dir = dest_dir / STAGING_DIR_NAME
        dest_dir.mkdir(parents=True, exist_ok=True)
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)
        return staging_dir

    def _cleanup_staging(self, staging_dir: Path) -> None:
        if not staging_dir.exists():
            return
        try:
            shutil.rmtree(staging_dir)
        except OSError as e:
            logger.warning("staging_cleanup_failed", path=str(staging_dir), error=str(e))

    def _raise_for_result(self, result: CommandResult, archive_path: Path) -> None:
        stderr = strip_symbols(result.stderr)
        stdout = strip_symbols(result.stdout)
        if stderr:
            logger.error("deploy_stderr", output=stderr)
        if stdout:
            logger.error("deploy_stdout", output=stdout)

        if result.timed_out:
            raise DeploymentError(
                f"Game deployment timed out after {self.timeout:.0f} seconds",
                kind=DeploymentFailure.generic,
                stderr=stderr,
                stdout=stdout,
                archive_path=archive_path,
            )

        if result.output_exceeded:
            raise DeploymentError(
                f"Game deployment aborted: tool output exceeded {format_size(self.max_output)}",
                kind=DeploymentFailure.generic,
                stderr=stderr,
                stdout=stdout,
                returncode=result.returncode,
                archive_path=archive_path,
            )

        kind = classify_deployment_failure(result)
        if kind is DeploymentFailure.corrupted_archive:
            archive_path.unlink(missing_ok=True)
            logger.warning("corrupted_archive_removed", path=str(archive_path))

        raise DeploymentError(
            FAILURE_MESSAGES[kind],
            kind=kind,
            stderr=stderr,
            stdout=stdout,
            returncode=result.returncode,
            archive_path=archive_path,
        )

    def deploy(
        self,
        archive_path: Path,
        dest_dir: Path,
        tools_dir: Path,
        progress: ProgressCallback | None = None,
        is_differential: bool = False,
    ) -> None:
        """Apply an archive to the install directory.

        Args:
            archive_path: Full or differential archive
            dest_dir: Install directory
            tools_dir: Directory containing the apply tool
            progress: Optional progress callback
            is_differential: Whether the archive is a differential patch

        Raises:
            DeploymentError: If the archive is missing, the tool cannot run,
                times out or exits with a failure status
        """
        if not archive_path.exists():
            raise DeploymentError(f"Archive not found: {archive_path}", archive_path=archive_path)

        logger.info(
            "deploy_start",
            archive=str(archive_path),
            size=format_size(archive_path.stat().st_size),
            mode="differential" if is_differential else "full",
        )

        tool = find_apply_tool(tools_dir)
        staging_dir = self._prepare_staging(dest_dir)

        if progress:
            progress(
                "Applying differential update..." if is_differential else "Installing game files...",
                None,
            )

        args = [
            str(tool),
            "apply",
            "--staging-dir",
            str(staging_dir),
            str(archive_path),
            str(dest_dir),
        ]
        logger.debug("deploy_exec", args=args)

        try:
            result = self.runner.run(args, timeout=self.timeout, max_output=self.max_output)
        except OSError as e:
            raise DeploymentError(
                f"Failed to execute deployment tool: {e}",
                archive_path=archive_path,
            ) from e

        if not result.ok:
            self._raise_for_result(result, archive_path)

        output = strip_symbols(result.stdout)
        if output:
            logger.debug("deploy_output", output=output)
        logger.info("deploy_complete", archive=str(archive_path))

        self._cleanup_staging(staging_dir)
        if progress:
            progress("Deployment complete", 100)
