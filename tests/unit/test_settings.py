"""
Unit tests for pipeline settings.
"""

from datetime import timedelta

import pytest

from livetables.core.config import PipelineSettings, load_settings, parse_trigger_interval
from livetables.core.errors import ConfigError


@pytest.mark.unit
class TestParseTriggerInterval:
    """Tests for parse_trigger_interval"""

    @pytest.mark.parametrize("text,expected", [
        ("1 hour", timedelta(hours=1)),
        ("30 minutes", timedelta(minutes=30)),
        ("10 seconds", timedelta(seconds=10)),
        ("2 days", timedelta(days=2)),
        ("1.5 hours", timedelta(minutes=90)),
        (None, None),
        ("", None),
    ])
    def test_valid(self, text, expected):
        assert parse_trigger_interval(text) == expected

    @pytest.mark.parametrize("text", ["hourly", "1 fortnight", "-1 hour"])
    def test_invalid(self, text):
        with pytest.raises(ConfigError):
            parse_trigger_interval(text)


@pytest.mark.unit
class TestLoadSettings:
    """Tests for load_settings"""

    def test_yaml_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LIVETABLES_DATA_SOURCE_PATH", raising=False)
        monkeypatch.delenv("LIVETABLES_STORAGE_PATH", raising=False)
        config_file = tmp_path / "pipeline.yaml"
        config_file.write_text(
            "data_source_path: /data/retail\n"
            "trigger_interval: 1 hour\n"
            "trigger_intervals:\n"
            "  raw_retail: null\n"
        )

        settings = load_settings(config_file)

        assert settings.data_source_path == "/data/retail"
        assert settings.interval_for("quality_retail") == timedelta(hours=1)
        assert settings.interval_for("raw_retail") is None
        assert settings.read_options == {"header": True}

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "pipeline.yaml"
        config_file.write_text("data_source_path: /data/retail\nstorage_path: from-file\n")
        monkeypatch.setenv("LIVETABLES_STORAGE_PATH", "from-env")

        settings = load_settings(config_file)

        assert settings.storage_path == "from-env"

    def test_explicit_overrides_win(self, monkeypatch):
        monkeypatch.setenv("LIVETABLES_DATA_SOURCE_PATH", "/from/env")

        settings = load_settings(data_source_path="/from/cli", storage_path=None)

        assert settings.data_source_path == "/from/cli"

    def test_missing_data_source_path(self, monkeypatch):
        monkeypatch.delenv("LIVETABLES_DATA_SOURCE_PATH", raising=False)

        with pytest.raises(ConfigError, match="Invalid pipeline settings"):
            load_settings()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "pipeline.yaml"
        config_file.write_text("data_source_path: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config_file)

    def test_invalid_interval(self):
        with pytest.raises(ConfigError):
            PipelineSettings(data_source_path="/data", trigger_interval="soon")
