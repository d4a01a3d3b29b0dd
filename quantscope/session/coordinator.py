"""Session coordinator: resolves plan permissions and the endpoint catalog.

Flow for ``initialize()``:

1. Try the discovery cache (version / URL / key prefix / TTL checked).
2. Cache hit: load plan limits from it, still fetch the endpoint catalog
   (parameter options aren't cached).  A catalog failure here is only a
   warning.
3. Cache miss: fetch the catalog (fatal on failure), then the plan payload
   (non-fatal).  The cache is written only when the plan payload parsed.

The coordinator owns the one live ``SessionState``; everything else reads it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from quantscope.cache.store import CacheRecord, CacheStore, key_prefix
from quantscope.cache.summary import DiscoverySummary, build_summary, extract_raw_response
from quantscope.config import base_url_for, settings
from quantscope.discovery.catalog import EndpointCatalog
from quantscope.discovery.client import DiscoveryClient, DiscoveryError, DiscoveryOfflineError
from quantscope.plans.limits import (
    ParsedPlan,
    PlanLimitsState,
    Tier,
    parse_plan_payload,
    resolve_tier,
    state_from_parsed,
)

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass
class SessionState:
    """Everything the tool layer needs about the current session."""

    phase: Phase = Phase.UNAUTHENTICATED
    api_key: str | None = None
    api_url: str | None = None
    cached_at: float | None = None
    from_cache: bool = False
    plan_state: PlanLimitsState = field(default_factory=PlanLimitsState)
    catalog: EndpointCatalog | None = None
    cache_record: CacheRecord | None = None

    @property
    def authenticated(self) -> bool:
        return self.phase is Phase.AUTHENTICATED

    @property
    def plan(self) -> Tier:
        return self.plan_state.plan

    def to_dict(self) -> dict[str, Any]:
        return {
            "authenticated": self.authenticated,
            "phase": self.phase.value,
            "plan": self.plan.value,
            "plan_limits_loaded": self.plan_state.loaded,
            "from_cache": self.from_cache,
            "discovery_loaded": self.catalog is not None,
        }


@dataclass
class InitializeResult:
    success: bool
    from_cache: bool = False
    cache_status: str = "none"  # none | fresh | cached (Nd old)
    error: str | None = None
    discovery_error: str | None = None
    summary: DiscoverySummary | None = None


class Coordinator:
    """Builds and holds the session; the only writer of ``SessionState``."""

    def __init__(
        self,
        client: DiscoveryClient | None = None,
        cache: CacheStore | None = None,
    ) -> None:
        self.client = client or DiscoveryClient()
        self.cache = cache or CacheStore()
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    # ── Initialization ───────────────────────────────────────────────────

    async def initialize(self, api_key: str, api_url: str | None = None) -> InitializeResult:
        api_url = api_url or settings.api_url()
        logger.debug("Initializing session against %s", api_url)
        self._state = SessionState(phase=Phase.AUTHENTICATING)

        record = self.cache.read(api_url)
        if record and self.cache.is_valid(record, api_url, key_prefix(api_key)):
            return await self._from_cache(api_key, api_url, record)

        logger.debug("Discovery cache %s", "stale or foreign" if record else "missing")
        try:
            return await self._fresh(api_key, api_url)
        except Exception as e:
            logger.exception("Session initialization failed")
            self._state = SessionState()
            return InitializeResult(success=False, error=f"Network error: {e}")

    async def _from_cache(
        self, api_key: str, api_url: str, record: CacheRecord
    ) -> InitializeResult:
        logger.debug("Using cached plan limits (plan=%s)", record.metadata.plan.value)
        plan_state = state_from_parsed(record.parsed.to_parsed(), plan=record.metadata.plan)

        catalog, discovery_error = await self._fetch_catalog(api_key, api_url)
        if discovery_error:
            logger.warning("Discovery fetch failed, using cache: %s", discovery_error)

        self._state = SessionState(
            phase=Phase.AUTHENTICATED,
            api_key=api_key,
            api_url=api_url,
            cached_at=time.time(),
            from_cache=True,
            plan_state=plan_state,
            catalog=catalog,
            cache_record=record,
        )
        return InitializeResult(
            success=True,
            from_cache=True,
            cache_status=CacheStore.status_label(record, from_cache=True),
            discovery_error=discovery_error,
            summary=record.summary,
        )

    async def _fresh(self, api_key: str, api_url: str) -> InitializeResult:
        catalog, discovery_error = await self._fetch_catalog(api_key, api_url)
        if catalog is None:
            self._state = SessionState()
            return InitializeResult(success=False, error=discovery_error)

        plan_state = PlanLimitsState()
        record: CacheRecord | None = None
        summary: DiscoverySummary | None = None
        try:
            payload = await self.client.fetch_plan_payload(
                api_key, base_url=base_url_for(api_url)
            )
        except (DiscoveryError, DiscoveryOfflineError) as e:
            logger.warning("Plan limits fetch failed: %s", e)
        else:
            if payload is None:
                plan_state = PlanLimitsState.restricted_default()
            else:
                parsed = parse_plan_payload(payload)
                plan = resolve_tier(parsed)
                plan_state = state_from_parsed(parsed, plan=plan)
                raw = extract_raw_response(payload)
                if raw is not None:
                    summary = build_summary(parsed.limits, parsed.statics)
                    record = self._write_cache(api_url, api_key, raw, parsed, summary, plan)

        self._state = SessionState(
            phase=Phase.AUTHENTICATED,
            api_key=api_key,
            api_url=api_url,
            cached_at=time.time(),
            from_cache=False,
            plan_state=plan_state,
            catalog=catalog,
            cache_record=record,
        )
        return InitializeResult(
            success=True,
            from_cache=False,
            cache_status="fresh" if record else "none",
            summary=summary if record else None,
        )

    async def _fetch_catalog(
        self, api_key: str, api_url: str
    ) -> tuple[EndpointCatalog | None, str | None]:
        try:
            descriptors = await self.client.fetch_endpoints(
                api_key, base_url=base_url_for(api_url)
            )
        except DiscoveryOfflineError as e:
            return None, f"Discovery fetch error: {e}"
        except DiscoveryError as e:
            return None, e.detail if e.status_code == 200 else str(e)
        catalog = EndpointCatalog.parse(descriptors)
        logger.debug(
            "Parsed %d endpoints (assets: %s)", len(catalog), ", ".join(catalog.assets)
        )
        return catalog, None

    def _write_cache(
        self,
        api_url: str,
        api_key: str,
        raw: dict[str, Any],
        parsed: ParsedPlan,
        summary: DiscoverySummary,
        plan: Tier,
    ) -> CacheRecord | None:
        try:
            return self.cache.write(api_url, api_key, raw, parsed, summary, plan)
        except OSError as e:
            logger.warning("Could not write discovery cache: %s", e)
            return None

    # ── Reset / cache management ─────────────────────────────────────────

    def reset(self) -> None:
        """Drop the session back to the unauthenticated zero state."""
        self._state = SessionState()

    def set_guest_mode(self) -> None:
        """Unauthenticated session with a fresh timestamp and no plan data."""
        self._state = SessionState(cached_at=time.time())

    def clear_cache(self, api_url: str | None = None) -> None:
        if api_url:
            self.cache.invalidate(api_url)
        else:
            self.cache.clear_all()
        self._state.cache_record = None

    def cache_path(self, api_url: str | None = None) -> Path:
        return self.cache.path_for(api_url or settings.api_url())
