"""Tests for the multi-source configuration loader."""

import os

import pytest
from pydantic import ValidationError

from pack_ingest.common.config import ConfigLoader
from pack_ingest.common.errors import ConfigurationError
from pack_ingest.config import PackIngestConfig, StorageConfig, TranscoderConfig


@pytest.fixture
def isolated_loader(monkeypatch, tmp_path):
    """Loader that sees no system or user config and no stray env vars."""
    for key in list(os.environ):
        if key.startswith("PACK_INGEST_"):
            monkeypatch.delenv(key)
    loader = ConfigLoader(app_name="pack-ingest", config_class=PackIngestConfig)
    monkeypatch.setattr(loader, "_load_system_config", lambda: None)
    monkeypatch.setattr(loader, "_load_user_config", lambda: None)
    return loader


class TestConfigLoader:
    """Test layered configuration loading."""

    def test_loads_defaults_file(self, isolated_loader, tmp_path):
        defaults = tmp_path / "defaults.toml"
        defaults.write_text('[ingest]\nmax_pending = 7\n\n[logging]\nlevel = "debug"\n')

        config = isolated_loader.load(defaults_path=defaults)

        assert config.ingest.max_pending == 7
        assert config.logging.level == "DEBUG"

    def test_env_overrides_nested_keys(self, isolated_loader, tmp_path, monkeypatch):
        defaults = tmp_path / "defaults.toml"
        defaults.write_text('[ingest]\nmax_pending = 7\n')
        monkeypatch.setenv("PACK_INGEST_INGEST__MAX_PENDING", "3")
        monkeypatch.setenv("PACK_INGEST_TRANSCODER__ENABLED", "false")
        monkeypatch.setenv("PACK_INGEST_API__ADMIN_TOKENS", "one,two")

        config = isolated_loader.load(defaults_path=defaults)

        assert config.ingest.max_pending == 3
        assert config.transcoder.enabled is False
        assert config.api.admin_tokens == ["one", "two"]

    def test_deep_merge_keeps_unrelated_keys(self, isolated_loader):
        merged = isolated_loader._deep_merge(
            {"ingest": {"max_pending": 4, "io_chunk_size": 8192}},
            {"ingest": {"max_pending": 9}},
        )
        assert merged == {"ingest": {"max_pending": 9, "io_chunk_size": 8192}}

    def test_rejects_unknown_section(self, isolated_loader, tmp_path):
        defaults = tmp_path / "defaults.toml"
        defaults.write_text('[mystery]\nvalue = 1\n')
        with pytest.raises(ValidationError):
            isolated_loader.load(defaults_path=defaults)

    def test_invalid_toml(self, isolated_loader, tmp_path):
        defaults = tmp_path / "defaults.toml"
        defaults.write_text("[ingest\nmax_pending = \n")
        with pytest.raises(ConfigurationError) as exc_info:
            isolated_loader.load(defaults_path=defaults)
        assert exc_info.value.context["path"] == str(defaults)

    def test_convert_env_value(self, isolated_loader):
        assert isolated_loader._convert_env_value("yes") is True
        assert isolated_loader._convert_env_value("1") == 1
        assert isolated_loader._convert_env_value("2.5") == 2.5
        assert isolated_loader._convert_env_value("a, b") == ["a", "b"]
        assert isolated_loader._convert_env_value("plain") == "plain"


class TestConfigModels:
    """Test pydantic validation of the config schema."""

    def test_defaults(self):
        config = PackIngestConfig()
        assert config.storage.backend == "local"
        assert config.transcoder.preview_height == 720
        assert config.ingest.max_pending >= 1

    def test_s3_requires_bucket(self):
        with pytest.raises(ValidationError):
            StorageConfig(backend="s3")
        assert StorageConfig(backend="s3", s3_bucket="packs").s3_bucket == "packs"

    def test_convert_extensions_normalized(self):
        config = TranscoderConfig(convert_extensions=["MOV", ".Avi"])
        assert config.convert_extensions == [".mov", ".avi"]

    def test_max_pending_must_be_positive(self):
        with pytest.raises(ValidationError):
            PackIngestConfig(ingest={"max_pending": 0})
