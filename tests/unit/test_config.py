"""
Tests for Configuration System.

This test suite covers:
1. Schema validation (type mismatch, constraint violation)
2. Settings resolution from config.toml and environment
3. Development override and derived paths
4. Persisting options with comment preservation
"""

import tempfile
from pathlib import Path

import pytest

from binplug.config import DEV_VERSION, Settings, config_root_for, load_settings, set_option
from binplug.config.schema import (
    SETTINGS_SCHEMA,
    ConfigField,
    SchemaError,
    ValidationError,
    validate_config,
)
from binplug.errors import ConfigError


class TestSchemaValidation:
    """Test schema field validation."""

    def test_field_default_type_mismatch(self):
        """ConfigField should reject default value that doesn't match type."""
        with pytest.raises(SchemaError, match="does not match type"):
            ConfigField(int, "not an int", "Bad default")

    def test_field_min_max_constraints(self):
        """ConfigField should enforce numeric ranges."""
        field = ConfigField(float, 10.0, "Timeout", min=0.1, max=300.0)
        field.validate(0.1)
        field.validate(300.0)

        with pytest.raises(ValidationError, match="less than minimum"):
            field.validate(0.0)
        with pytest.raises(ValidationError, match="greater than maximum"):
            field.validate(301.0)

    def test_integer_widened_for_float_fields(self):
        """TOML integers should be accepted for float fields."""
        config = validate_config({"handshake_timeout": 5}, SETTINGS_SCHEMA)
        assert config["handshake_timeout"] == 5.0
        assert isinstance(config["handshake_timeout"], float)

    def test_unknown_field_rejected(self):
        """Unknown keys should be rejected."""
        with pytest.raises(ValidationError, match="Unknown configuration field"):
            validate_config({"no_such_key": 1}, SETTINGS_SCHEMA)

    def test_missing_fields_take_defaults(self):
        """Missing keys should fall back to schema defaults."""
        config = validate_config({}, SETTINGS_SCHEMA)
        assert config["handshake_timeout"] == 10.0
        assert config["api_key"] == ""

    def test_coerce_from_string(self):
        """Command-line strings should coerce into the field type."""
        assert ConfigField(float, 1.0).coerce("2.5") == 2.5
        assert ConfigField(bool, False).coerce("yes") is True
        with pytest.raises(ValidationError):
            ConfigField(float, 1.0).coerce("soon")


class TestSettings:
    """Test settings loading."""

    def test_config_root_follows_xdg(self):
        """XDG_CONFIG_HOME should relocate the configuration root."""
        root = config_root_for({"XDG_CONFIG_HOME": "/tmp/xdg"})
        assert root == Path("/tmp/xdg/binplug")

    def test_defaults_without_config_file(self):
        """Should load defaults when config.toml is absent."""
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = load_settings({"XDG_CONFIG_HOME": tmpdir})

            assert settings.config_root == Path(tmpdir) / "binplug"
            assert settings.install_root == Path(tmpdir) / "binplug" / "plugins"
            assert settings.manifest_path == Path(tmpdir) / "binplug" / "plugins.toml"
            assert settings.dev_mode is False
            assert settings.handshake_timeout == 10.0

    def test_plugins_path_enables_dev_mode(self):
        """PLUGINS_PATH should override the install root and enable dev mode."""
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = load_settings({"XDG_CONFIG_HOME": tmpdir, "PLUGINS_PATH": "/opt/dev"})

            assert settings.dev_mode is True
            assert settings.install_root == Path("/opt/dev")
            assert DEV_VERSION == "master"

    def test_config_file_and_env_precedence(self):
        """Environment variables should win over config.toml."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "binplug"
            root.mkdir()
            (root / "config.toml").write_text(
                '[plugins]\napi_base = "https://from-file"\napi_key = "file-key"\n'
                "handshake_timeout = 3\n"
            )

            settings = load_settings(
                {"XDG_CONFIG_HOME": tmpdir, "BINPLUG_API_KEY": "env-key"}
            )

            assert settings.api_base_url == "https://from-file"
            assert settings.api_key == "env-key"
            assert settings.handshake_timeout == 3.0

    def test_invalid_config_file(self):
        """Out-of-range values should raise ConfigError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "binplug"
            root.mkdir()
            (root / "config.toml").write_text("[plugins]\nkill_grace = 1000\n")

            with pytest.raises(ConfigError, match="kill_grace"):
                load_settings({"XDG_CONFIG_HOME": tmpdir})

    def test_unparseable_config_file(self):
        """Broken TOML should raise ConfigError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "binplug"
            root.mkdir()
            (root / "config.toml").write_text("[plugins\n")

            with pytest.raises(ConfigError, match="Failed to parse"):
                load_settings({"XDG_CONFIG_HOME": tmpdir})

    def test_settings_are_immutable(self):
        """Settings should be a frozen value."""
        settings = Settings(config_root=Path("/tmp/x"))
        with pytest.raises(AttributeError):
            settings.api_key = "changed"


class TestSetOption:
    """Test persisting options."""

    def test_set_option_creates_file(self):
        """Should create config.toml with the validated value."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "binplug"
            set_option(root, "handshake_timeout", "4.5")

            text = (root / "config.toml").read_text()
            assert "handshake_timeout = 4.5" in text
            assert "# Seconds to wait for a plugin handshake" in text
            settings = load_settings({"XDG_CONFIG_HOME": tmpdir})
            assert settings.handshake_timeout == 4.5

    def test_set_option_updates_in_place(self):
        """Updating a key should not repeat its description comment."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            set_option(root, "kill_grace", "1")
            set_option(root, "kill_grace", "3")

            text = (root / "config.toml").read_text()
            assert text.count("# Seconds between SIGTERM and SIGKILL") == 1
            assert "kill_grace = 3.0" in text
            assert "kill_grace = 1.0" not in text

    def test_set_option_preserves_comments(self):
        """Existing comments and keys should survive an update."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "config.toml").write_text(
                '# my settings\n[plugins]\n# key for CI\napi_key = "old"\n'
            )

            set_option(root, "api_base", "https://api.example")

            text = (root / "config.toml").read_text()
            assert "# my settings" in text
            assert "# key for CI" in text
            assert 'api_key = "old"' in text
            assert 'api_base = "https://api.example"' in text

    def test_set_option_rejects_unknown_key(self):
        """Unknown keys should be rejected before writing."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ConfigError, match="Unknown configuration field"):
                set_option(Path(tmpdir), "colour", "blue")
            assert not (Path(tmpdir) / "config.toml").exists()

    def test_set_option_rejects_out_of_range(self):
        """Values violating constraints should be rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ConfigError, match="greater than maximum"):
                set_option(Path(tmpdir), "handshake_timeout", "9999")
