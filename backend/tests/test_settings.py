"""
Tests for the YAML-backed ingestion settings.
"""

import pytest

from ingestion.errors import ConfigurationError
from ingestion.settings import DEFAULT_SETTINGS, IngestionSettings, PacingProfile, get_settings


def write_config(tmp_path, text):
    path = tmp_path / "ingestion.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestLoading:
    def test_missing_file_uses_defaults(self, tmp_path):
        settings = IngestionSettings(config_path=str(tmp_path / "nope.yaml"))
        assert settings.config == DEFAULT_SETTINGS
        assert settings.pacing_profile().name == "standard"

    def test_file_merged_over_defaults(self, tmp_path):
        path = write_config(tmp_path, """
pacing:
  profiles:
    standard:
      min_seconds: 5
      max_seconds: 10
rate_limits:
  domains:
    www.centris.ca:
      requests_per_minute: 3
""")
        settings = IngestionSettings(config_path=path)

        standard = settings.pacing_profile("standard")
        assert (standard.min_seconds, standard.max_seconds) == (5.0, 10.0)
        # Untouched profiles and sections keep their defaults
        assert settings.pacing_profile("zone").min_seconds == 90.0
        assert settings.rate_limits["domains"]["www.centris.ca"]["requests_per_minute"] == 3
        assert settings.bulk_load["chunk_size"] == 1000

    def test_overrides_win(self, tmp_path):
        path = write_config(tmp_path, "bulk_load:\n  chunk_size: 500\n")
        settings = IngestionSettings(config_path=path, overrides={"bulk_load": {"chunk_size": 10}})
        assert settings.bulk_load["chunk_size"] == 10
        assert settings.bulk_load["max_attempts"] == 3

    def test_empty_file(self, tmp_path):
        settings = IngestionSettings(config_path=write_config(tmp_path, ""))
        assert settings.item_retries == 1

    def test_malformed_yaml(self, tmp_path):
        settings = IngestionSettings(config_path=write_config(tmp_path, "pacing: [unclosed\n"))
        with pytest.raises(ConfigurationError):
            settings.config

    def test_non_mapping(self, tmp_path):
        settings = IngestionSettings(config_path=write_config(tmp_path, "- a\n- b\n"))
        with pytest.raises(ConfigurationError):
            settings.config

    def test_env_path(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "pacing:\n  item_retries: 4\n")
        monkeypatch.setenv("INGESTION_CONFIG_PATH", path)
        assert get_settings().item_retries == 4


class TestAccessors:
    def test_step_timeouts(self, settings):
        assert settings.step_timeout_ms("submit_search") == 15000
        assert settings.step_timeout_ms("unknown_step") == 30000

    def test_unknown_profile(self, settings):
        with pytest.raises(ConfigurationError):
            settings.pacing_profile("reckless")

    def test_cancel_interval(self, settings):
        assert settings.cancel_check_interval == 1.0


class TestPacingProfile:
    def test_inverted_window_rejected(self):
        with pytest.raises(ConfigurationError):
            PacingProfile("bad", 10, 5)

    def test_negative_rejected(self):
        with pytest.raises(ConfigurationError):
            PacingProfile("bad", -1, 5)

    def test_zero_window_allowed(self):
        assert PacingProfile("instant", 0, 0).max_seconds == 0
