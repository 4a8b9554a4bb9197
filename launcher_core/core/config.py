"""Configuration management for launcher-core."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger()


class NetworkConfig(BaseModel):
    """HTTP download configuration."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum retry attempts for transient failures")
    base_backoff: float = Field(
        default=1.0,
        description="Initial backoff in seconds, doubled on every retry"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    user_agent: str = Field(default="launcher-core/0.1.0", description="User-Agent header")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max retries value."""
        if v < 0:
            raise ValueError("Max retries must be non-negative")
        return v

    @field_validator("base_backoff")
    @classmethod
    def validate_base_backoff(cls, v: float) -> float:
        """Validate backoff value."""
        if v < 0:
            raise ValueError("Backoff must be non-negative")
        return v


class PatcherConfig(BaseModel):
    """Client binary patcher configuration."""

    default_domain: str = Field(
        default="auth.sanasol.ws",
        description="Domain used when no valid auth domain is configured"
    )
    auth_domain: str | None = Field(
        default=None,
        description="Auth domain override (takes precedence over the launcher state)"
    )
    protocol: str = Field(default="https://", description="Protocol for rewritten URLs")
    community_invite: str = Field(default=".gg/hytale", description="Community invite path to replace")
    community_replacement: str = Field(default=".gg/hf2pdc", description="Replacement invite path")
    agent_url: str = Field(
        default="https://github.com/sanasol/hytale-auth-server/releases/latest/download/dualauth-agent.jar",
        description="Download URL of the runtime agent"
    )
    agent_filename: str = Field(default="dualauth-agent.jar", description="Agent file name")
    agent_min_size: int = Field(default=1024, description="Smallest agent size considered valid")

    @field_validator("default_domain")
    @classmethod
    def validate_default_domain(cls, v: str) -> str:
        """Validate default domain length."""
        if not v.isascii() or not 4 <= len(v) <= 16:
            raise ValueError(f"Default domain must be 4-16 ASCII characters: {v}")
        return v

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        """Validate protocol prefix."""
        if v not in {"https://", "http://"}:
            raise ValueError(f"Invalid protocol: {v}")
        return v

    @field_validator("agent_min_size")
    @classmethod
    def validate_agent_min_size(cls, v: int) -> int:
        """Validate agent minimum size."""
        if v < 0:
            raise ValueError("Agent minimum size must be non-negative")
        return v


def _default_app_dir() -> Path:
    return Path.home() / ".local" / "share" / "launcher-core"


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    config_dir: Path = Field(
        default=Path.home() / ".config" / "launcher-core",
        description="Configuration directory"
    )
    data_dir: Path = Field(default_factory=_default_app_dir, description="Data directory")
    game_dir: Path = Field(
        default_factory=lambda: _default_app_dir() / "install" / "release" / "package" / "game" / "latest",
        description="Game installation directory"
    )
    cache_dir: Path = Field(
        default=Path.home() / ".cache" / "launcher-core",
        description="Archive cache directory"
    )
    tools_dir: Path = Field(
        default_factory=lambda: _default_app_dir() / "butler",
        description="Directory holding the archive-apply tool"
    )

    # Endpoint settings
    api_base_url: str = Field(
        default="https://game.authbp.xyz",
        description="Version-info API base URL"
    )
    patch_base_url: str = Field(
        default="https://game.authbp.xyz/dl",
        description="Archive download base URL"
    )
    manifest_url: str = Field(
        default="https://files.hytalef2p.com/api/patch_manifest",
        description="Differential patch manifest URL"
    )
    use_patch_manifest: bool = Field(
        default=False,
        description="Resolve differential archives from the patch manifest"
    )
    version_cache_ttl: float = Field(default=60.0, description="Version-info cache lifetime in seconds")

    # Deployment settings
    deploy_timeout: float = Field(default=600.0, description="Archive-apply wall-clock timeout")
    deploy_max_output: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum captured output of the apply tool in bytes"
    )
    min_cached_archive_size: int = Field(
        default=1024 * 1024,
        description="Cached archives below this size are always re-downloaded"
    )

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    patcher: PatcherConfig = Field(default_factory=PatcherConfig)

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    def model_post_init(self, __context) -> None:
        """Ensure directories exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "launcher-core" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v

    @field_validator("version_cache_ttl")
    @classmethod
    def validate_version_cache_ttl(cls, v: float) -> float:
        """Validate version cache TTL value."""
        if v < 0:
            raise ValueError("Version cache TTL must be non-negative")
        return v

    @field_validator("deploy_timeout")
    @classmethod
    def validate_deploy_timeout(cls, v: float) -> float:
        """Validate deploy timeout value."""
        if v <= 0:
            raise ValueError("Deploy timeout must be positive")
        return v

    @field_validator("deploy_max_output", "min_cached_archive_size")
    @classmethod
    def validate_sizes(cls, v: int) -> int:
        """Validate size values."""
        if v < 0:
            raise ValueError("Size must be non-negative")
        return v
