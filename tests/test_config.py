"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for ingestion configs.
"""

import logging
import os
import tempfile

import pytest
import yaml

from usage_ledger.config.loader import IngestionConfig, load_ingestion_config


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "db_path": "/var/lib/ledger.db",
            "default_service_name": "my-agent",
            "synthetic_role": "system",
            "log_level": "debug",
        })
        config = load_ingestion_config(config_path)

        assert config.db_path == "/var/lib/ledger.db"
        assert config.default_service_name == "my-agent"
        assert config.synthetic_role == "system"
        assert config.log_level == "DEBUG"
        assert config.log_level_value == logging.DEBUG

    def test_partial_config_uses_defaults(self):
        """Test that omitted keys take their defaults."""
        config = load_ingestion_config(self._write_config({"db_path": "other.db"}))

        assert config.db_path == "other.db"
        assert config.default_service_name == "claude-code"
        assert config.synthetic_role == "assistant"
        assert config.log_level == "INFO"

    def test_missing_file_raises_error(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Ingestion config file not found"):
            load_ingestion_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("db_path: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_ingestion_config(config_path)

    def test_empty_config_raises_error(self):
        """Test that empty config raises ValueError."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_ingestion_config(config_path)

    def test_non_dict_config_raises_error(self):
        """Test that non-dictionary config raises ValueError."""
        with pytest.raises(ValueError, match="Configuration must be a dictionary"):
            load_ingestion_config(self._write_config(["db_path"]))

    def test_unknown_keys_rejected(self):
        """Test that a typo'd key is rejected instead of silently ignored."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_ingestion_config(self._write_config({"db_pth": "x.db"}))

    def test_non_string_value_rejected(self):
        with pytest.raises(ValueError, match="'db_path' must be a string"):
            load_ingestion_config(self._write_config({"db_path": 42}))

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValueError, match="log_level must be one of"):
            load_ingestion_config(self._write_config({"log_level": "verbose"}))


class TestIngestionConfig:
    """Test direct construction validation."""

    def test_defaults(self):
        config = IngestionConfig()
        assert config.db_path == "usage_ledger.db"
        assert config.log_level_value == logging.INFO

    @pytest.mark.parametrize("field", ["db_path", "default_service_name", "synthetic_role"])
    def test_blank_values_rejected(self, field):
        with pytest.raises(ValueError, match=f"{field} must be a non-empty string"):
            IngestionConfig(**{field: "  "})
