"""Pytest configuration and shared fixtures for launcher_core tests."""

import json
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog

from launcher_core.core.config import AppConfig, NetworkConfig
from launcher_core.core.paths import client_candidates
from launcher_core.formats.strings import LENGTH_PREFIXED, UTF16LE

TELEMETRY_URL = "https://ca900df42fcf57d4dd8401a86ddd7da2@sentry.hytale.com/2"


@pytest.fixture(autouse=True)
def clean_auth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's auth domain override out of the tests."""
    monkeypatch.delenv("LAUNCHER_AUTH_DOMAIN", raising=False)


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """Undo logging reconfiguration done by -v/-d CLI invocations."""
    saved = structlog.get_config()
    yield
    structlog.configure(**saved)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """AppConfig with every directory under tmp_path and no retry delays."""
    return AppConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        game_dir=tmp_path / "game",
        cache_dir=tmp_path / "cache",
        tools_dir=tmp_path / "tools",
        network=NetworkConfig(base_backoff=0, max_retries=1),
    )


@pytest.fixture
def config_file(app_config: AppConfig, tmp_path: Path) -> Path:
    """Config file for CLI tests, pointing at the app_config directories."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(app_config.model_dump(mode="json")))
    return path


@pytest.fixture
def client_bytes() -> bytes:
    """Synthetic client binary holding every string the patcher rewrites."""
    chunks = [
        b"\x7fELF" + b"\x00" * 60,
        LENGTH_PREFIXED.encode(TELEMETRY_URL),
        b"\xaa" * 16,
        LENGTH_PREFIXED.encode("hytale.com"),
        b"\xbb" * 16,
        LENGTH_PREFIXED.encode("https://tools."),
        b"\xcc" * 8,
        LENGTH_PREFIXED.encode("https://sessions."),
        b"\xcc" * 8,
        LENGTH_PREFIXED.encode("https://account-data."),
        b"\xcc" * 8,
        LENGTH_PREFIXED.encode("https://telemetry."),
        b"\xdd" * 16,
        LENGTH_PREFIXED.encode("hytale.com"),
        b"\xee" * 16,
        UTF16LE.encode("https://discord.gg/hytale"),
        b"\x00" * 64,
    ]
    return b"".join(chunks)


@pytest.fixture
def make_game_dir(tmp_path: Path) -> Callable[..., Path]:
    """Build a game directory with a client binary (and optionally a server dir)."""

    def build(data: bytes, with_server: bool = False) -> Path:
        game_dir = tmp_path / "game"
        binary = client_candidates(game_dir)[-1]
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_bytes(data)
        if with_server:
            (game_dir / "Server").mkdir(parents=True, exist_ok=True)
        return game_dir

    return build


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add unit marker to all tests by default
        if not any(marker.name in ['integration', 'slow'] for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
