"""Tests for EngineConfig environment overrides."""

import pytest

from csvsense.config import DEFAULT_TIMEOUT_MS, EngineConfig


class TestFromEnv:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CSVSENSE_SAMPLE_ROWS", raising=False)
        config = EngineConfig.from_env()
        assert config.sample_rows == 1000
        assert config.default_timeout_ms == DEFAULT_TIMEOUT_MS

    def test_integer_override(self, monkeypatch):
        monkeypatch.setenv("CSVSENSE_SAMPLE_ROWS", "500")
        assert EngineConfig.from_env().sample_rows == 500

    def test_float_override(self, monkeypatch):
        monkeypatch.setenv("CSVSENSE_FALLBACK_CONFIDENCE_THRESHOLD", "0.75")
        assert EngineConfig.from_env().fallback_confidence_threshold == pytest.approx(0.75)

    @pytest.mark.parametrize("raw", ["", "   ", "lots", "0", "-5", "1.5"])
    def test_bad_values_keep_default(self, monkeypatch, raw):
        monkeypatch.setenv("CSVSENSE_SAMPLE_ROWS", raw)
        assert EngineConfig.from_env().sample_rows == 1000

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("TEST_UPLOAD_RETRY_ATTEMPTS", "5")
        assert EngineConfig.from_env(prefix="TEST_").upload_retry_attempts == 5

    def test_frozen(self):
        with pytest.raises(AttributeError):
            EngineConfig().sample_rows = 1
