"""Tests for configuration models and loading."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError
from pipemeter.config import ConfigLoader, PipemeterConfig, ProgressOptions


@pytest.fixture
def loader(tmp_path, monkeypatch):
    """ConfigLoader isolated from system and user config files."""
    for key in list(os.environ):
        if key.startswith("PIPEMETER_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr(ConfigLoader, "_load_system_config", lambda self: None)
    with patch("pipemeter.config.loader.platformdirs.user_config_dir", return_value=str(tmp_path / "user")):
        yield ConfigLoader()


class TestProgressOptions:
    """Test ProgressOptions validation."""

    def test_defaults(self):
        """Test default option values."""
        options = ProgressOptions()
        assert options.length == 0
        assert options.time == 0
        assert options.drain is False
        assert options.transferred == 0
        assert options.speed == 5000
        assert options.object_mode is False

    def test_rejects_negative_values(self):
        """Test negative values are rejected."""
        with pytest.raises(ValidationError):
            ProgressOptions(length=-1)
        with pytest.raises(ValidationError):
            ProgressOptions(time=-5)
        with pytest.raises(ValidationError):
            ProgressOptions(speed=0)

    def test_rejects_unknown_options(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ValidationError):
            ProgressOptions(lenght=10)


class TestConfigLoader:
    """Test ConfigLoader source precedence."""

    def test_defaults_only(self, loader):
        """Test loading with no files gives model defaults."""
        config = loader.load()
        assert config == PipemeterConfig()

    def test_user_config(self, loader, tmp_path):
        """Test the user config file overrides defaults."""
        user_dir = tmp_path / "user"
        user_dir.mkdir()
        (user_dir / "config.toml").write_text("[progress]\ntime = 250\n", encoding="utf-8")

        config = loader.load()
        assert config.progress.time == 250

    def test_explicit_file_overrides_user(self, loader, tmp_path):
        """Test an explicit config file wins over the user config."""
        user_dir = tmp_path / "user"
        user_dir.mkdir()
        (user_dir / "config.toml").write_text("[progress]\ntime = 250\nspeed = 1000\n", encoding="utf-8")
        explicit = tmp_path / "explicit.toml"
        explicit.write_text("[progress]\ntime = 500\n", encoding="utf-8")

        config = loader.load(config_path=explicit)
        assert config.progress.time == 500
        assert config.progress.speed == 1000

    def test_missing_explicit_file(self, loader, tmp_path):
        """Test a missing explicit file is an error."""
        with pytest.raises(FileNotFoundError):
            loader.load(config_path=tmp_path / "missing.toml")

    def test_env_overrides(self, loader, tmp_path, monkeypatch):
        """Test environment variables win over files."""
        explicit = tmp_path / "explicit.toml"
        explicit.write_text("[logging]\nlevel = \"INFO\"\n", encoding="utf-8")
        monkeypatch.setenv("PIPEMETER_LOGGING_LEVEL", "debug")
        monkeypatch.setenv("PIPEMETER_PROGRESS_OBJECT_MODE", "true")
        monkeypatch.setenv("PIPEMETER_TRANSFER_HTTP_TIMEOUT", "2.5")
        monkeypatch.setenv("PIPEMETER_PROGRESS_LENGTH", "42")

        config = loader.load(config_path=explicit)
        assert config.logging.level == "DEBUG"
        assert config.progress.object_mode is True
        assert config.transfer.http_timeout == 2.5
        assert config.progress.length == 42

    def test_invalid_values_rejected(self, loader, tmp_path):
        """Test invalid file values fail validation."""
        explicit = tmp_path / "bad.toml"
        explicit.write_text("[progress]\nlength = -3\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            loader.load(config_path=explicit)

    def test_config_property_loads_once(self, loader):
        """Test the config property caches the loaded configuration."""
        assert loader.config is loader.config
