"""Locations of the game client binary and server files inside an install."""

from __future__ import annotations

import sys
from pathlib import Path

CLIENT_DIR = "Client"
SERVER_DIR = "Server"
CLIENT_BINARY = "HytaleClient"


def client_candidates(game_dir: Path) -> list[Path]:
    """Candidate client executable paths for the running platform."""
    client_dir = game_dir / CLIENT_DIR
    if sys.platform == "darwin":
        return [
            client_dir / "Hytale.app" / "Contents" / "MacOS" / CLIENT_BINARY,
            client_dir / CLIENT_BINARY,
        ]
    if sys.platform.startswith("win"):
        return [client_dir / f"{CLIENT_BINARY}.exe"]
    return [client_dir / CLIENT_BINARY]


def find_client_path(game_dir: Path) -> Path | None:
    """Find the installed client executable, None if absent."""
    for candidate in client_candidates(game_dir):
        if candidate.is_file():
            return candidate
    return None


def server_dir(game_dir: Path) -> Path:
    return game_dir / SERVER_DIR


def find_server_path(game_dir: Path) -> Path | None:
    """Find the server jar, None if absent."""
    for name in ("HytaleServer.jar", "server.jar"):
        candidate = server_dir(game_dir) / name
        if candidate.is_file():
            return candidate
    return None
