"""Tests for launcher_core.core.patcher module."""

import json
import stat
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from launcher_core.core.agent import AgentResult
from launcher_core.core.backup import backup_path_for
from launcher_core.core.config import PatcherConfig
from launcher_core.core.download import NetworkError
from launcher_core.core.patcher import (
    ClientPatcher,
    DirectStrategy,
    PatchError,
    PatchRecord,
    SplitStrategy,
    domain_strategy,
    patch_flag_path,
    read_patch_record,
    resolve_target_domain,
)
from launcher_core.core.paths import find_client_path
from launcher_core.core.types import PatchMode
from launcher_core.formats.strings import LENGTH_PREFIXED, UTF16LE


def _patcher(domain: str | None = None, store=None) -> ClientPatcher:
    return ClientPatcher(PatcherConfig(auth_domain=domain), store)


def _write_binary(tmp_path: Path, data: bytes, name: str = "HytaleClient") -> Path:
    binary = tmp_path / name
    binary.write_bytes(data)
    return binary


class TestDomainStrategy:
    """Test domain strategy selection."""

    def test_ten_characters_is_direct(self):
        strategy = domain_strategy("sanasol.ws")
        assert isinstance(strategy, DirectStrategy)
        assert strategy.mode is PatchMode.DIRECT
        assert strategy.main_domain == "sanasol.ws"
        assert strategy.subdomain_prefix == ""

    def test_eleven_characters_is_split(self):
        strategy = domain_strategy("abcdefghijk")
        assert isinstance(strategy, SplitStrategy)
        assert strategy.mode is PatchMode.SPLIT
        assert strategy.subdomain_prefix == "abcdef"
        assert strategy.main_domain == "ghijk"

    def test_default_domain_is_split(self):
        strategy = domain_strategy("auth.sanasol.ws")
        assert strategy.subdomain_prefix == "auth.s"
        assert strategy.main_domain == "anasol.ws"

    @pytest.mark.parametrize("domain", ["abcd", "abcdefghijklmnop"])
    def test_boundaries_accepted(self, domain):
        domain_strategy(domain)

    @pytest.mark.parametrize("domain", ["", "ab", "abc", "abcdefghijklmnopq", "dömäin.net"])
    def test_out_of_range_rejected(self, domain):
        with pytest.raises(PatchError):
            domain_strategy(domain)


class TestResolveTargetDomain:
    """Test auth domain precedence and validation."""

    def test_default(self):
        assert resolve_target_domain(PatcherConfig()) == "auth.sanasol.ws"

    def test_config_override(self):
        assert resolve_target_domain(PatcherConfig(auth_domain="sanasol.ws")) == "sanasol.ws"

    def test_store_domain(self):
        store = Mock()
        store.load_auth_domain.return_value = "my.host.net"
        assert resolve_target_domain(PatcherConfig(), store) == "my.host.net"

    def test_config_beats_store(self):
        store = Mock()
        store.load_auth_domain.return_value = "my.host.net"
        assert resolve_target_domain(PatcherConfig(auth_domain="sanasol.ws"), store) == "sanasol.ws"

    def test_environment_beats_everything(self, monkeypatch):
        monkeypatch.setenv("LAUNCHER_AUTH_DOMAIN", "env.domain")
        store = Mock()
        store.load_auth_domain.return_value = "my.host.net"
        assert resolve_target_domain(PatcherConfig(auth_domain="sanasol.ws"), store) == "env.domain"

    @pytest.mark.parametrize("domain", ["ab", "abc", "abcdefghijklmnopq"])
    def test_invalid_length_falls_back_to_default(self, domain):
        with patch("launcher_core.core.patcher.logger") as mock_logger:
            assert resolve_target_domain(PatcherConfig(auth_domain=domain)) == "auth.sanasol.ws"
        mock_logger.warning.assert_called_once()

    @pytest.mark.parametrize("domain", ["auth.€xample", "dömäin.net", "сайт.рф"])
    def test_non_ascii_falls_back_to_default(self, domain):
        with patch("launcher_core.core.patcher.logger") as mock_logger:
            assert resolve_target_domain(PatcherConfig(auth_domain=domain)) == "auth.sanasol.ws"
        mock_logger.warning.assert_called_once()

    def test_non_ascii_store_domain_falls_back(self):
        store = Mock()
        store.load_auth_domain.return_value = "auth.€xample"
        assert resolve_target_domain(PatcherConfig(), store) == "auth.sanasol.ws"


class TestPatchRecord:
    """Test the patch flag file."""

    def test_serializes_with_original_keys(self, tmp_path):
        binary = _write_binary(tmp_path, b"data")
        record = PatchRecord.for_domain("auth.sanasol.ws")
        patch_flag_path(binary).write_text(record.model_dump_json(by_alias=True))

        data = json.loads(patch_flag_path(binary).read_text())
        assert set(data) == {
            "patchedAt",
            "originalDomain",
            "targetDomain",
            "patchMode",
            "mainDomain",
            "subdomainPrefix",
            "patcherVersion",
            "verified",
        }
        assert data["originalDomain"] == "hytale.com"
        assert data["patchMode"] == "split"
        assert data["mainDomain"] == "anasol.ws"
        assert data["subdomainPrefix"] == "auth.s"
        assert data["patcherVersion"] == "2.1.0"
        assert data["verified"] == "binary_contents"

    def test_flag_path(self, tmp_path):
        assert patch_flag_path(tmp_path / "HytaleClient") == tmp_path / "HytaleClient.patched_custom"

    def test_corrupt_record_is_ignored(self, tmp_path):
        binary = _write_binary(tmp_path, b"data")
        patch_flag_path(binary).write_text("{not json")
        assert read_patch_record(binary) is None

    def test_undecodable_record_is_ignored(self, tmp_path):
        binary = _write_binary(tmp_path, b"data")
        patch_flag_path(binary).write_bytes(b"\xff\xfe\x00garbage")
        assert read_patch_record(binary) is None

    def test_missing_record(self, tmp_path):
        assert read_patch_record(tmp_path / "HytaleClient") is None


class TestPatchStatus:
    """Test patch status detection."""

    def test_no_record(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        status = _patcher().get_patch_status(binary)
        assert not status.patched
        assert not status.needs_restore

    def test_patched(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        patcher = _patcher("sanasol.ws")
        patcher.patch_client(binary)

        status = patcher.get_patch_status(binary)
        assert status.patched
        assert status.current_domain == "sanasol.ws"

    def test_record_not_corroborated(self, tmp_path, client_bytes):
        """A record for the right domain over an unpatched binary is not trusted."""
        binary = _write_binary(tmp_path, client_bytes)
        patch_flag_path(binary).write_text(PatchRecord.for_domain("sanasol.ws").model_dump_json(by_alias=True))

        status = _patcher("sanasol.ws").get_patch_status(binary)
        assert not status.patched
        assert not status.needs_restore

    def test_domain_changed(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        _patcher("sanasol.ws").patch_client(binary)

        status = _patcher("other.host").get_patch_status(binary)
        assert not status.patched
        assert status.needs_restore
        assert status.current_domain == "sanasol.ws"

    def test_utf16_main_domain_corroborates(self, tmp_path):
        binary = _write_binary(tmp_path, b"\x00" + UTF16LE.encode("sanasol.ws") + b"\x00")
        patch_flag_path(binary).write_text(PatchRecord.for_domain("sanasol.ws").model_dump_json(by_alias=True))
        assert _patcher("sanasol.ws").get_patch_status(binary).patched


class TestApplyDomainPatches:
    """Test the individual rewrites."""

    def test_direct_mode(self, client_bytes):
        data = bytearray(client_bytes)
        count = _patcher().apply_domain_patches(data, "sanasol.ws")

        assert count == 7
        assert len(data) == len(client_bytes)
        assert LENGTH_PREFIXED.encode("https://t@sanasol.ws/2") in data
        assert data.count(LENGTH_PREFIXED.encode("sanasol.ws")) == 2
        assert data.count(LENGTH_PREFIXED.encode("https://")) == 4
        assert LENGTH_PREFIXED.encode("hytale.com") not in data

    def test_split_mode(self, client_bytes):
        data = bytearray(client_bytes)
        count = _patcher().apply_domain_patches(data, "auth.sanasol.ws")

        assert count == 7
        assert LENGTH_PREFIXED.encode("https://t@auth.sanasol.ws/2") in data
        assert data.count(LENGTH_PREFIXED.encode("anasol.ws")) == 2
        assert data.count(LENGTH_PREFIXED.encode("https://auth.s")) == 4

    def test_protocol_is_configurable(self, client_bytes):
        data = bytearray(client_bytes)
        ClientPatcher(PatcherConfig(protocol="http://")).apply_domain_patches(data, "sanasol.ws")
        assert LENGTH_PREFIXED.encode("http://t@sanasol.ws/2") in data

    def test_community_url_utf16_fallback(self, client_bytes):
        data = bytearray(client_bytes)
        count, encoding = _patcher().patch_community_url(data)
        assert count == 1
        assert encoding == "utf16le"
        assert UTF16LE.encode("https://discord.gg/hf2pdc") in data

    def test_community_url_length_prefixed_first(self):
        data = bytearray(LENGTH_PREFIXED.encode(".gg/hytale") + UTF16LE.encode(".gg/hytale"))
        count, encoding = _patcher().patch_community_url(data)
        assert count == 1
        assert encoding == "length_prefixed"
        assert UTF16LE.encode(".gg/hytale") in data

    def test_smart_replace(self):
        data = bytearray(b"\x01" + UTF16LE.encode("hytale.com") + b"\x02")
        count = _patcher().find_and_replace_domain_smart(data, "hytale.com", "sanasol.ws")
        assert count == 1
        assert data == bytearray(b"\x01" + UTF16LE.encode("sanasol.ws") + b"\x02")

    def test_smart_replace_keeps_metadata_byte(self):
        """The byte after the last character is left as it was."""
        raw = UTF16LE.encode("hytale.co") + b"m\x7f"
        data = bytearray(raw)
        assert _patcher().find_and_replace_domain_smart(data, "hytale.com", "sanasol.ws") == 1
        assert data == bytearray(UTF16LE.encode("sanasol.w") + b"s\x7f")

    def test_smart_replace_requires_last_character(self):
        data = bytearray(UTF16LE.encode("hytale.cox"))
        assert _patcher().find_and_replace_domain_smart(data, "hytale.com", "sanasol.ws") == 0


class TestPatchClient:
    """Test the full patch flow."""

    def test_missing_binary(self, tmp_path):
        with pytest.raises(PatchError, match="not found"):
            _patcher().patch_client(tmp_path / "HytaleClient")

    def test_patch(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        progress = Mock()

        result = _patcher("sanasol.ws").patch_client(binary, progress)

        assert result.success
        assert not result.already_patched
        assert result.patch_count == 8
        assert result.encoding == "length_prefixed"
        assert result.mode is PatchMode.DIRECT
        assert binary.stat().st_size == len(client_bytes)
        assert backup_path_for(binary).read_bytes() == client_bytes
        record = read_patch_record(binary)
        assert record is not None
        assert record.target_domain == "sanasol.ws"
        progress.assert_called_with("Patching complete", 100)

    def test_idempotent(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        patcher = _patcher("auth.sanasol.ws")

        patcher.patch_client(binary)
        once = binary.read_bytes()
        result = patcher.patch_client(binary)

        assert result.already_patched
        assert result.patch_count == 0
        assert binary.read_bytes() == once

    def test_preserves_file_mode(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        binary.chmod(0o755)
        _patcher("sanasol.ws").patch_client(binary)
        assert stat.S_IMODE(binary.stat().st_mode) == 0o755

    def test_domain_change_matches_direct_patch(self, tmp_path, client_bytes):
        """Re-patching for a new domain equals patching the pristine binary."""
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        binary = _write_binary(first, client_bytes)
        reference = _write_binary(second, client_bytes)

        _patcher("sanasol.ws").patch_client(binary)
        _patcher("other.host").patch_client(binary)
        _patcher("my.longer.host").patch_client(binary)
        _patcher("my.longer.host").patch_client(reference)

        assert binary.read_bytes() == reference.read_bytes()
        assert read_patch_record(binary).target_domain == "my.longer.host"
        assert backup_path_for(binary).read_bytes() == client_bytes

    def test_domain_change_without_backup(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        _patcher("sanasol.ws").patch_client(binary)
        backup_path_for(binary).unlink()

        with pytest.raises(PatchError, match="no backup"):
            _patcher("other.host").patch_client(binary)

    def test_domain_change_with_stale_backup(self, tmp_path, client_bytes):
        """A replaced binary is patched as-is and the old backup archived."""
        binary = _write_binary(tmp_path, client_bytes)
        _patcher("sanasol.ws").patch_client(binary)

        updated = client_bytes + b"\x00" * 32
        binary.write_bytes(updated)
        result = _patcher("other.host").patch_client(binary)

        assert result.patch_count > 0
        assert backup_path_for(binary).read_bytes() == updated
        archived = list(tmp_path.glob("HytaleClient.original.*"))
        assert len(archived) == 1
        assert archived[0].read_bytes() == client_bytes

    def test_non_ascii_domain_patches_default(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)

        result = _patcher("auth.€xample").patch_client(binary)

        assert result.domain == "auth.sanasol.ws"
        assert result.patch_count == 8

    def test_no_occurrences(self, tmp_path):
        binary = _write_binary(tmp_path, b"\x00" * 128)
        result = _patcher().patch_client(binary)

        assert result.success
        assert result.patch_count == 0
        assert result.warning == "No occurrences found"
        assert not patch_flag_path(binary).exists()
        assert binary.read_bytes() == b"\x00" * 128

    def test_legacy_utf16_fallback(self, tmp_path):
        data = b"\x00" * 16 + UTF16LE.encode("hytale.com") + b"\x00" * 16
        binary = _write_binary(tmp_path, data)

        result = _patcher("sanasol.ws").patch_client(binary)

        assert result.patch_count == 1
        assert result.encoding == "utf16le"
        assert UTF16LE.encode("sanasol.ws") in binary.read_bytes()
        assert _patcher("sanasol.ws").get_patch_status(binary).patched


class TestRestoreClient:
    """Test explicit restore."""

    def test_restore(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        patcher = _patcher("sanasol.ws")
        patcher.patch_client(binary)

        patcher.restore_client(binary)

        assert binary.read_bytes() == client_bytes
        assert not patch_flag_path(binary).exists()

    def test_restore_without_backup(self, tmp_path, client_bytes):
        binary = _write_binary(tmp_path, client_bytes)
        with pytest.raises(PatchError, match="No backup"):
            _patcher().restore_client(binary)


class TestEnsureClientPatched:
    """Test launch preparation."""

    def test_patches_client_and_agent(self, make_game_dir, client_bytes):
        game_dir = make_game_dir(client_bytes, with_server=True)
        agent = AgentResult(game_dir / "Server" / "dualauth-agent.jar")

        with patch("launcher_core.core.patcher.ensure_agent_available", return_value=agent) as mock_agent:
            report = _patcher("sanasol.ws").ensure_client_patched(game_dir)

        mock_agent.assert_called_once()
        assert report.success
        assert report.patch_count == 8
        assert report.agent is agent
        assert not report.already_patched

    def test_already_patched(self, make_game_dir, client_bytes):
        game_dir = make_game_dir(client_bytes, with_server=True)
        patcher = _patcher("sanasol.ws")
        patcher.patch_client(find_client_path(game_dir))
        agent = AgentResult(game_dir / "Server" / "dualauth-agent.jar", already_exists=True)

        with patch("launcher_core.core.patcher.ensure_agent_available", return_value=agent):
            report = patcher.ensure_client_patched(game_dir)

        assert report.already_patched
        assert report.patch_count == 0

    def test_undecodable_record_is_repatched(self, make_game_dir, client_bytes):
        game_dir = make_game_dir(client_bytes)
        binary = find_client_path(game_dir)
        patch_flag_path(binary).write_bytes(b"\xff\xfe\x00garbage")

        report = _patcher("sanasol.ws").ensure_client_patched(game_dir)

        assert report.client_error is None
        assert report.patch_count == 8
        assert read_patch_record(binary).target_domain == "sanasol.ws"

    def test_missing_server_dir_skips_agent(self, make_game_dir, client_bytes):
        game_dir = make_game_dir(client_bytes)

        with patch("launcher_core.core.patcher.ensure_agent_available") as mock_agent:
            report = _patcher("sanasol.ws").ensure_client_patched(game_dir)

        mock_agent.assert_not_called()
        assert report.agent.skipped
        assert report.success

    def test_missing_client_is_recorded(self, tmp_path):
        game_dir = tmp_path / "game"
        (game_dir / "Server").mkdir(parents=True)
        agent = AgentResult(game_dir / "Server" / "dualauth-agent.jar")

        with patch("launcher_core.core.patcher.ensure_agent_available", return_value=agent):
            report = _patcher().ensure_client_patched(game_dir)

        assert report.client is None
        assert report.client_error == "Client binary not found"
        assert report.success

    def test_agent_failure_is_recorded(self, make_game_dir, client_bytes):
        game_dir = make_game_dir(client_bytes, with_server=True)
        error = NetworkError("Failed to download agent", url="https://example.com/agent.jar")

        with patch("launcher_core.core.patcher.ensure_agent_available", side_effect=error):
            report = _patcher("sanasol.ws").ensure_client_patched(game_dir)

        assert report.agent is None
        assert report.agent_error == "Failed to download agent"
        assert report.client_ok
        assert report.success

    def test_progress_is_prefixed(self, make_game_dir, client_bytes):
        game_dir = make_game_dir(client_bytes)
        progress = Mock()

        _patcher("sanasol.ws").ensure_client_patched(game_dir, progress)

        messages = [call.args[0] for call in progress.call_args_list]
        assert "Client: Patching complete" in messages
        assert ("Client: Patching complete", 50.0) in [call.args for call in progress.call_args_list]
        assert messages[-1] == "Patching complete"
