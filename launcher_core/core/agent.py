"""Runtime agent placed next to the server jar.

The agent is a small jar loaded through ``-javaagent:`` that performs
the server-side auth rewiring at runtime, so the server jar itself is
never modified.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import httpx
import structlog

from launcher_core.core.config import PatcherConfig
from launcher_core.core.download import Downloader, NetworkError
from launcher_core.core.types import ProgressCallback
from launcher_core.core.utils import format_size

logger = structlog.get_logger()


@dataclass
class AgentResult:
    """Outcome of ensuring the agent is present."""

    agent_path: Path
    already_exists: bool = False
    skipped: bool = False


def agent_path_for(server_dir: Path, config: PatcherConfig) -> Path:
    return server_dir / config.agent_filename


def ensure_agent_available(
    server_dir: Path,
    config: PatcherConfig | None = None,
    downloader: Downloader | None = None,
    progress: ProgressCallback | None = None,
) -> AgentResult:
    """Download the agent unless a plausible copy is already present.

    The download goes to a temporary sibling which is renamed into place
    only after its size has been checked.

    Raises:
        NetworkError: If the download fails or yields an undersized file
    """
    config = config or PatcherConfig()
    agent_path = agent_path_for(server_dir, config)

    if agent_path.exists():
        size = agent_path.stat().st_size
        if size > config.agent_min_size:
            logger.info("agent_present", path=str(agent_path), size=format_size(size))
            if progress:
                progress("Agent ready", 100)
            return AgentResult(agent_path, already_exists=True)
        logger.warning("agent_undersized", path=str(agent_path), size=size)
        agent_path.unlink()

    if progress:
        progress("Downloading agent...", 20)
    logger.info("agent_download_start", url=config.agent_url)

    server_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = agent_path.with_name(agent_path.name + ".tmp")
    owns_downloader = downloader is None
    downloader = downloader or Downloader()

    try:
        downloader.download_with_retry(config.agent_url, tmp_path)
        size = tmp_path.stat().st_size
        if size < config.agent_min_size:
            raise NetworkError(
                f"Downloaded agent too small ({size} bytes)",
                url=config.agent_url,
                path=tmp_path,
            )
        os.replace(tmp_path, agent_path)
    except httpx.HTTPError as e:
        raise NetworkError(
            f"Failed to download agent: {e}",
            url=config.agent_url,
            path=agent_path,
        ) from e
    finally:
        tmp_path.unlink(missing_ok=True)
        if owns_downloader:
            downloader.close()

    logger.info("agent_downloaded", path=str(agent_path), size=format_size(size))
    if progress:
        progress("Agent ready", 100)
    return AgentResult(agent_path)
