"""Tests for config.py module."""

import json
from pathlib import Path

import pytest

from launcher_core.core.config import AppConfig, NetworkConfig, PatcherConfig


class TestNetworkConfig:
    """Test NetworkConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        config = NetworkConfig()

        assert config.timeout == 30.0
        assert config.max_retries == 3
        assert config.base_backoff == 1.0
        assert config.verify_ssl is True

    def test_timeout_validation(self):
        """Test timeout validation."""
        NetworkConfig(timeout=0.5)

        with pytest.raises(ValueError):
            NetworkConfig(timeout=0)
        with pytest.raises(ValueError):
            NetworkConfig(timeout=-1.0)

    def test_max_retries_validation(self):
        """Test max retries validation."""
        NetworkConfig(max_retries=0)  # No retries

        with pytest.raises(ValueError):
            NetworkConfig(max_retries=-1)

    def test_backoff_validation(self):
        NetworkConfig(base_backoff=0)

        with pytest.raises(ValueError):
            NetworkConfig(base_backoff=-0.1)


class TestPatcherConfig:
    """Test PatcherConfig class."""

    def test_default_values(self):
        config = PatcherConfig()

        assert config.default_domain == "auth.sanasol.ws"
        assert config.auth_domain is None
        assert config.protocol == "https://"
        assert config.community_invite == ".gg/hytale"
        assert config.community_replacement == ".gg/hf2pdc"
        assert config.agent_filename == "dualauth-agent.jar"
        assert config.agent_min_size == 1024

    def test_protocol_validation(self):
        PatcherConfig(protocol="http://")

        with pytest.raises(ValueError):
            PatcherConfig(protocol="ftp://")

    def test_default_domain_validation(self):
        with pytest.raises(ValueError):
            PatcherConfig(default_domain="ab")
        with pytest.raises(ValueError):
            PatcherConfig(default_domain="a" * 17)
        with pytest.raises(ValueError):
            PatcherConfig(default_domain="auth.€xample")


class TestAppConfig:
    """Test AppConfig class."""

    def test_custom_directories_created(self, tmp_path):
        config = AppConfig(
            config_dir=tmp_path / "config",
            data_dir=tmp_path / "data",
            cache_dir=tmp_path / "cache",
        )

        assert config.config_dir.is_dir()
        assert config.data_dir.is_dir()
        assert config.cache_dir.is_dir()

    def test_default_values(self, app_config):
        assert app_config.api_base_url == "https://game.authbp.xyz"
        assert app_config.patch_base_url == "https://game.authbp.xyz/dl"
        assert app_config.use_patch_manifest is False
        assert app_config.version_cache_ttl == 60.0
        assert app_config.deploy_timeout == 600.0
        assert app_config.deploy_max_output == 10 * 1024 * 1024
        assert app_config.min_cached_archive_size == 1024 * 1024
        assert app_config.output_format == "rich"
        assert app_config.log_level == "INFO"

    def test_output_format_validation(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(config_dir=tmp_path, data_dir=tmp_path, cache_dir=tmp_path, output_format="xml")

    def test_log_level_validation(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(config_dir=tmp_path, data_dir=tmp_path, cache_dir=tmp_path, log_level="VERBOSE")

    def test_deploy_timeout_validation(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(config_dir=tmp_path, data_dir=tmp_path, cache_dir=tmp_path, deploy_timeout=0)

    def test_size_validation(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(config_dir=tmp_path, data_dir=tmp_path, cache_dir=tmp_path, min_cached_archive_size=-1)

    def test_save_and_load(self, app_config, tmp_path):
        app_config.patcher.auth_domain = "sanasol.ws"
        app_config.network.max_retries = 5
        config_file = tmp_path / "saved" / "config.json"

        app_config.save(config_file)
        loaded = AppConfig.load(config_file)

        assert loaded.patcher.auth_domain == "sanasol.ws"
        assert loaded.network.max_retries == 5
        assert loaded.game_dir == app_config.game_dir
        assert json.loads(config_file.read_text())["patcher"]["auth_domain"] == "sanasol.ws"

    def test_load_missing_file_uses_defaults(self, tmp_path):
        config = AppConfig.load(tmp_path / "missing.json")
        assert config.api_base_url == "https://game.authbp.xyz"

    def test_load_invalid_values(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"output_format": "xml"}))
        with pytest.raises(ValueError):
            AppConfig.load(config_file)

    def test_paths_from_json(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "config_dir": str(tmp_path / "c"),
            "data_dir": str(tmp_path / "d"),
            "cache_dir": str(tmp_path / "x"),
            "game_dir": str(tmp_path / "g"),
        }))

        config = AppConfig.load(config_file)

        assert config.game_dir == Path(tmp_path / "g")
        assert config.data_dir.is_dir()
