"""Tests for the session coordinator."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from quantscope.cache.store import CACHE_FILENAME
from quantscope.discovery.client import DISCOVERY_PATH, PLAN_DISCOVERY_PATH
from quantscope.plans.limits import Tier
from quantscope.session.coordinator import Coordinator, Phase

API_URL = "https://api.example.test/v1"
API_KEY = "abcdefgh-secret-key"


def _init(coordinator: Coordinator, api_key: str = API_KEY):
    return asyncio.run(coordinator.initialize(api_key, API_URL))


class TestFreshInitialize:
    def test_success_populates_state(self, coordinator):
        result = _init(coordinator)
        assert result.success
        assert not result.from_cache
        assert result.cache_status == "fresh"
        assert result.summary is not None
        assert result.summary.total_endpoints == 5

        state = coordinator.state
        assert state.phase is Phase.AUTHENTICATED
        assert state.api_key == API_KEY
        assert state.plan is Tier.ADVANCED
        assert state.plan_state.loaded
        assert state.plan_state.rate_limit.label() == "1000/day"
        assert len(state.catalog) == 5

    def test_writes_cache(self, coordinator, cache_store):
        _init(coordinator)
        assert (cache_store.directory / CACHE_FILENAME).exists()
        record = cache_store.read(API_URL)
        assert record.metadata.plan is Tier.ADVANCED
        assert record.metadata.api_url == API_URL

    def test_catalog_failure_is_fatal(self, coordinator, fake_api, cache_store):
        fake_api.set(DISCOVERY_PATH, 500, {"detail": "boom"})
        result = _init(coordinator)
        assert not result.success
        assert "500" in result.error
        assert coordinator.state.phase is Phase.UNAUTHENTICATED
        assert coordinator.state.api_key is None
        assert fake_api.calls_to(PLAN_DISCOVERY_PATH) == 0
        assert cache_store.read(API_URL) is None

    @pytest.mark.parametrize("status", [403, 500])
    def test_restricted_plan_is_basic(self, coordinator, fake_api, cache_store, status):
        fake_api.set(PLAN_DISCOVERY_PATH, status, {"detail": "nope"})
        result = _init(coordinator)
        assert result.success
        assert result.cache_status == "none"
        state = coordinator.state.plan_state
        assert state.loaded
        assert state.plan is Tier.BASIC
        assert state.limits is None
        assert cache_store.read(API_URL) is None

    def test_plan_failure_leaves_gating_off(self, coordinator, fake_api):
        fake_api.set(PLAN_DISCOVERY_PATH, 502, {"detail": "bad gateway"})
        result = _init(coordinator)
        assert result.success
        assert coordinator.state.authenticated
        assert not coordinator.state.plan_state.loaded
        assert coordinator.state.plan is Tier.UNKNOWN

    def test_payload_without_table_is_not_cached(self, coordinator, fake_api, cache_store):
        fake_api.set(PLAN_DISCOVERY_PATH, 200, {"plan": {"name": "PREMIUM"}})
        result = _init(coordinator)
        assert result.success
        assert result.cache_status == "none"
        assert coordinator.state.plan is Tier.PREMIUM
        assert cache_store.read(API_URL) is None

    def test_cache_write_failure_is_not_fatal(self, coordinator):
        with patch.object(coordinator.cache, "write", side_effect=OSError("read-only")):
            result = _init(coordinator)
        assert result.success
        assert result.cache_status == "none"
        assert coordinator.state.plan is Tier.ADVANCED

    def test_unexpected_error_resets_state(self, coordinator):
        with patch.object(coordinator.client, "fetch_plan_payload", side_effect=RuntimeError("kaboom")):
            result = _init(coordinator)
        assert not result.success
        assert result.error == "Network error: kaboom"
        assert not coordinator.state.authenticated


class TestCachedInitialize:
    def test_second_init_uses_cache(self, coordinator, fake_api):
        _init(coordinator)
        result = _init(coordinator)
        assert result.success
        assert result.from_cache
        assert result.cache_status == "cached (0d old)"
        assert coordinator.state.from_cache
        assert coordinator.state.plan is Tier.ADVANCED
        assert fake_api.calls_to(PLAN_DISCOVERY_PATH) == 1
        # parameter options are never cached
        assert fake_api.calls_to(DISCOVERY_PATH) == 2

    def test_cached_limits_gate_the_same_way(self, coordinator):
        _init(coordinator)
        fresh_limits = coordinator.state.plan_state.limits
        _init(coordinator)
        assert coordinator.state.plan_state.limits == fresh_limits
        assert coordinator.state.plan_state.statics == ["/v1/btc/status/entity-list"]

    def test_catalog_failure_on_cache_hit_is_warning(self, coordinator, fake_api):
        _init(coordinator)
        fake_api.set(DISCOVERY_PATH, 503, {"detail": "down"})
        result = _init(coordinator)
        assert result.success
        assert result.from_cache
        assert result.discovery_error
        assert coordinator.state.authenticated
        assert coordinator.state.catalog is None
        assert coordinator.state.plan is Tier.ADVANCED

    def test_other_key_misses_cache(self, coordinator, fake_api):
        _init(coordinator)
        result = _init(coordinator, api_key="zyxwvuts-another-key")
        assert not result.from_cache
        assert fake_api.calls_to(PLAN_DISCOVERY_PATH) == 2

    def test_other_url_misses_cache(self, coordinator, fake_api):
        _init(coordinator)
        result = asyncio.run(coordinator.initialize(API_KEY, "https://staging.example.test/v1"))
        assert not result.from_cache


class TestApiUrl:
    STAGING = "https://staging.example.test/v1"

    def test_fetches_go_to_session_url(self, coordinator, fake_api, cache_store):
        result = asyncio.run(coordinator.initialize(API_KEY, self.STAGING))
        assert result.success
        assert {r.url.host for r in fake_api.calls} == {"staging.example.test"}
        assert coordinator.state.api_url == self.STAGING
        assert cache_store.read(self.STAGING).metadata.api_url == self.STAGING

    def test_cache_hit_refetches_catalog_from_session_url(self, coordinator, fake_api):
        asyncio.run(coordinator.initialize(API_KEY, self.STAGING))
        fake_api.calls.clear()
        result = asyncio.run(coordinator.initialize(API_KEY, self.STAGING))
        assert result.from_cache
        assert [r.url.host for r in fake_api.calls] == ["staging.example.test"]


class TestReset:
    def test_reset_returns_to_zero_state(self, coordinator):
        _init(coordinator)
        coordinator.reset()
        state = coordinator.state
        assert state.phase is Phase.UNAUTHENTICATED
        assert state.api_key is None
        assert state.catalog is None
        assert not state.plan_state.loaded
        assert state.plan is Tier.UNKNOWN

    def test_reset_keeps_cache(self, coordinator, cache_store):
        _init(coordinator)
        coordinator.reset()
        assert cache_store.read(API_URL) is not None

    def test_clear_cache(self, coordinator, cache_store):
        _init(coordinator)
        coordinator.clear_cache(API_URL)
        assert cache_store.read(API_URL) is None
        assert coordinator.state.cache_record is None
        assert coordinator.state.authenticated

    def test_guest_mode(self, coordinator):
        _init(coordinator)
        coordinator.set_guest_mode()
        state = coordinator.state
        assert not state.authenticated
        assert state.cached_at is not None
        assert state.catalog is None
        assert state.plan is Tier.UNKNOWN

    def test_state_dict(self, coordinator):
        assert coordinator.state.to_dict()["authenticated"] is False
        _init(coordinator)
        snapshot = coordinator.state.to_dict()
        assert snapshot["plan"] == "advanced"
        assert snapshot["discovery_loaded"] is True
