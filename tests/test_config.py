"""Tests for settings helpers."""

from __future__ import annotations

from quantscope.config import Settings, base_url_for


class TestSettings:
    def test_base_url_strips_version(self):
        s = Settings(cryptoquant_api_url="https://api.example.test/v1/")
        assert s.api_base_url() == "https://api.example.test"
        assert s.api_url() == "https://api.example.test/v1/"

    def test_base_url_without_version(self):
        s = Settings(cryptoquant_api_url="https://proxy.example.test")
        assert s.api_base_url() == "https://proxy.example.test"

    def test_base_url_for_any_url(self):
        assert base_url_for("https://staging.example.test/v1") == "https://staging.example.test"
        assert base_url_for("https://proxy.example.test/api/") == "https://proxy.example.test/api"

    def test_env_key_placeholder(self):
        assert Settings(cryptoquant_api_key="${CRYPTOQUANT_API_KEY}").env_api_key() is None
        assert Settings(cryptoquant_api_key="  ").env_api_key() is None
        assert Settings(cryptoquant_api_key="abc").env_api_key() == "abc"

    def test_debug_forces_log_level(self):
        assert Settings(log_level="warning").effective_log_level == "WARNING"
        assert Settings(log_level="warning", debug=True).effective_log_level == "DEBUG"
