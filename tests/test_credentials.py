"""Tests for the stored credentials file and API key resolution."""

from __future__ import annotations

import json
import stat
from unittest.mock import patch

import pytest

from quantscope.auth.credentials import CredentialStore, resolve_api_key
from quantscope.config import settings


@pytest.fixture
def store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "data")


@pytest.fixture
def no_env_key():
    with patch.object(settings, "cryptoquant_api_key", ""):
        yield


class TestCredentialStore:
    def test_load_missing(self, store):
        assert store.load() is None

    def test_save_and_load(self, store):
        store.save("k-123")
        assert store.load() == "k-123"
        data = json.loads(store.path.read_text())
        assert data["created_at"] == data["validated_at"]

    def test_file_is_owner_only(self, store):
        store.save("k-123")
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    def test_corrupt_file(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("not json")
        assert store.load() is None

    def test_touch_validated(self, store):
        store.save("k-123")
        data = json.loads(store.path.read_text())
        data["validated_at"] = "2000-01-01T00:00:00+00:00"
        store.path.write_text(json.dumps(data))

        store.touch_validated()
        refreshed = json.loads(store.path.read_text())
        assert refreshed["validated_at"] != "2000-01-01T00:00:00+00:00"
        assert refreshed["api_key"] == "k-123"

    def test_touch_without_file_is_noop(self, store):
        store.touch_validated()
        assert not store.path.exists()

    def test_clear(self, store):
        store.save("k-123")
        store.clear()
        assert store.load() is None
        store.clear()


class TestResolveApiKey:
    def test_explicit_wins(self, store, no_env_key):
        store.save("stored-key")
        assert resolve_api_key("param-key", store) == ("param-key", "param")

    def test_env_before_stored(self, store):
        store.save("stored-key")
        with patch.object(settings, "cryptoquant_api_key", "env-key"):
            assert resolve_api_key(None, store) == ("env-key", "env")

    def test_unexpanded_placeholder_ignored(self, store):
        with patch.object(settings, "cryptoquant_api_key", "${CRYPTOQUANT_API_KEY}"):
            assert resolve_api_key(None, store) == (None, "none")

    def test_stored(self, store, no_env_key):
        store.save("stored-key")
        assert resolve_api_key(None, store) == ("stored-key", "stored")

    def test_none(self, store, no_env_key):
        assert resolve_api_key(None, store) == (None, "none")
