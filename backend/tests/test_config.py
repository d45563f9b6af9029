# backend/tests/test_config.py
"""
Configuration validation and the status block used by /health.
"""

import pytest

from app.config import ConfigValidationError, get_config_status, settings, validate_config


class TestValidateConfig:
    def test_defaults_have_no_errors(self, monkeypatch):
        monkeypatch.setattr(settings, "SCRIPT_SCORING_URL", None)
        result = validate_config(raise_on_error=True)
        assert result["errors"] == []
        assert any("SCRIPT_SCORING_URL" in w for w in result["warnings"])

    def test_inverted_thresholds_are_an_error(self, monkeypatch):
        monkeypatch.setattr(settings, "LOW_SIMILARITY_THRESHOLD", 0.9)
        monkeypatch.setattr(settings, "ON_SCRIPT_THRESHOLD", 0.5)

        result = validate_config(raise_on_error=False)
        assert len(result["errors"]) == 1

        with pytest.raises(ConfigValidationError):
            validate_config(raise_on_error=True)

    def test_non_positive_interval_is_an_error(self, monkeypatch):
        monkeypatch.setattr(settings, "SCRIPT_CHECK_INTERVAL", 0)
        assert validate_config(raise_on_error=False)["errors"]

    def test_unknown_log_level_is_an_error(self, monkeypatch):
        monkeypatch.setattr(settings, "LOG_LEVEL", "VERBOSE")
        errors = validate_config(raise_on_error=False)["errors"]
        assert any("LOG_LEVEL" in e for e in errors)


class TestConfigStatus:
    def test_reports_scoring_backend(self, monkeypatch):
        monkeypatch.setattr(settings, "SCRIPT_SCORING_URL", "https://scoring.test/score")
        monkeypatch.setattr(settings, "SCRIPT_SCORING_API_KEY", None)

        status = get_config_status()
        assert status["scoring_configured"] is True
        assert status["scoring_authenticated"] is False
        assert status["check_interval_seconds"] == settings.SCRIPT_CHECK_INTERVAL
