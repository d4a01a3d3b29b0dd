"""Plan limits: permission table parsing, tier resolution and access gating.

The account-scoped discovery payload looks like::

    {
      "plan": {"name": "PROFESSIONAL"},
      "apiEndpoint": {
        "btc": {"market-data": {"price-ohlcv": {"day": "P3Y", "hour": "P3M"}}},
        "statics": ["/v1/status/entity-list", ...]
      },
      "apiRateLimit": {"token": 1000, "window": "day"}
    }

It is normalized into a permission table ``asset -> category -> metric ->
{window: token}`` held on a ``PlanLimitsState``.  All lookups take the state
explicitly; the session coordinator owns the single live instance.

Access follows an allow-list for basic/advanced tiers and allow-by-default for
professional/premium/custom.  When nothing is loaded, or the tier is unknown,
every check passes (fail-open).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterator

from quantscope.discovery.catalog import split_endpoint_path
from quantscope.discovery.models import RateLimit
from quantscope.plans.duration import (
    UNLIMITED,
    is_duration_token,
    parse_duration,
    subtract_duration,
)

logger = logging.getLogger(__name__)

WindowLimits = dict[str, str]
PermissionTable = dict[str, dict[str, dict[str, WindowLimits]]]

STATICS_KEY = "statics"


class Tier(str, Enum):
    """Subscription tiers, lowest to highest. ``UNKNOWN`` is outside the order."""

    BASIC = "basic"
    ADVANCED = "advanced"
    PROFESSIONAL = "professional"
    PREMIUM = "premium"
    CUSTOM = "custom"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _TIER_RANK.get(self, -1)


_TIER_ORDER = [Tier.BASIC, Tier.ADVANCED, Tier.PROFESSIONAL, Tier.PREMIUM, Tier.CUSTOM]
_TIER_RANK = {tier: i for i, tier in enumerate(_TIER_ORDER)}

# Tiers assumed to reach endpoints the permission table omits (status/metadata).
FULL_ACCESS_TIERS = frozenset({Tier.PROFESSIONAL, Tier.PREMIUM, Tier.CUSTOM})
RESTRICTED_TIERS = frozenset({Tier.BASIC, Tier.ADVANCED})

_PLAN_NOTES = {
    Tier.CUSTOM: "Custom enterprise plan with tailored access",
    Tier.PREMIUM: "Full access to all data",
    Tier.PROFESSIONAL: "3-year data history limit on most endpoints",
    Tier.ADVANCED: "Extended endpoint access with some data limits",
    Tier.BASIC: "Limited endpoint access. Upgrade for more data.",
}


# ── State ────────────────────────────────────────────────────────────────────


@dataclass
class PlanLimitsState:
    """Resolved plan data for the current session."""

    loaded: bool = False
    limits: PermissionTable | None = None
    plan: Tier = Tier.UNKNOWN
    statics: list[str] = field(default_factory=list)
    rate_limit: RateLimit | None = None
    fetched_at: float | None = None

    @classmethod
    def restricted_default(cls) -> "PlanLimitsState":
        """Basic tier with no table, used when the plan endpoint refuses us."""
        return cls(loaded=True, plan=Tier.BASIC, fetched_at=time.time())

    @property
    def gating_active(self) -> bool:
        return self.loaded and self.plan is not Tier.UNKNOWN


@dataclass
class ParsedPlan:
    limits: PermissionTable | None = None
    statics: list[str] = field(default_factory=list)
    rate_limit: RateLimit | None = None
    plan_name: str | None = None

    def fragment(self) -> dict[str, Any]:
        """The cacheable subset, keyed the way the cache file stores it."""
        return {
            "limits": self.limits,
            "statics": self.statics,
            "apiRateLimit": self.rate_limit.model_dump() if self.rate_limit else None,
        }


@dataclass
class DateRangeValidation:
    valid: bool
    error: str | None = None
    earliest_allowed: str | None = None  # YYYY-MM-DD
    limit: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


# ── Parsing ──────────────────────────────────────────────────────────────────


def parse_plan_payload(data: Any) -> ParsedPlan:
    """Normalize the account-scoped discovery payload.

    Unexpected shapes are skipped rather than raised; the worst case is an
    empty ParsedPlan.
    """
    result = ParsedPlan()
    if not isinstance(data, dict):
        return result

    plan = data.get("plan")
    if isinstance(plan, dict) and isinstance(plan.get("name"), str):
        result.plan_name = plan["name"]

    api_endpoint = data.get("apiEndpoint")
    if isinstance(api_endpoint, dict):
        limits: PermissionTable = {}
        for asset, categories in api_endpoint.items():
            if asset == STATICS_KEY or not isinstance(categories, dict):
                continue
            limits[asset] = {}
            for category, metrics in categories.items():
                if not isinstance(metrics, dict):
                    continue
                limits[asset][category] = {}
                for metric, metric_data in metrics.items():
                    if not isinstance(metric_data, dict):
                        continue
                    windows = {
                        k: v for k, v in metric_data.items() if is_duration_token(v)
                    }
                    if windows:
                        limits[asset][category][metric] = windows

        statics = api_endpoint.get(STATICS_KEY)
        if isinstance(statics, list):
            result.statics = [s for s in statics if isinstance(s, str)]

        result.limits = limits or None

    rate = data.get("apiRateLimit")
    if (
        isinstance(rate, dict)
        and isinstance(rate.get("token"), (int, float))
        and not isinstance(rate.get("token"), bool)
        and isinstance(rate.get("window"), str)
    ):
        result.rate_limit = RateLimit(token=int(rate["token"]), window=rate["window"])

    return result


def normalize_tier(name: str | None) -> Tier:
    """Map an upstream plan name (e.g. ``"PROFESSIONAL"``) onto a Tier."""
    if not name:
        return Tier.UNKNOWN
    try:
        tier = Tier(name.strip().lower())
    except ValueError:
        return Tier.UNKNOWN
    return tier


def iter_window_entries(limits: PermissionTable | None) -> Iterator[tuple[str, str, str, str, str]]:
    """Flatten the table into (asset, category, metric, window, token) tuples."""
    if not limits:
        return
    for asset, categories in limits.items():
        for category, metrics in (categories or {}).items():
            for metric, windows in (metrics or {}).items():
                for window, token in (windows or {}).items():
                    yield asset, category, metric, window, token


def detect_tier_from_limits(limits: PermissionTable | None) -> Tier:
    """Best-effort tier estimate from the shape of the limits.

    This is a heuristic, not an entitlement lookup: it looks at what fraction
    of window limits are one day, unlimited or three years.  Prefer the
    explicit plan name whenever upstream sends one.
    """
    tokens = [entry[4] for entry in iter_window_entries(limits)]
    total = len(tokens)
    if total == 0:
        return Tier.BASIC

    one_day = tokens.count("P1D") / total
    unlimited = tokens.count(UNLIMITED) / total
    three_years = tokens.count("P3Y") / total

    if one_day > 0.5:
        return Tier.BASIC
    if unlimited > 0.5:
        return Tier.PREMIUM
    if three_years > 0.3:
        return Tier.PROFESSIONAL
    return Tier.ADVANCED


def resolve_tier(parsed: ParsedPlan) -> Tier:
    if parsed.plan_name:
        return normalize_tier(parsed.plan_name)
    tier = detect_tier_from_limits(parsed.limits)
    logger.debug("No plan name in payload, estimated tier from limits: %s", tier.value)
    return tier


def state_from_parsed(parsed: ParsedPlan, plan: Tier | None = None) -> PlanLimitsState:
    return PlanLimitsState(
        loaded=True,
        limits=parsed.limits,
        plan=plan if plan is not None else resolve_tier(parsed),
        statics=list(parsed.statics),
        rate_limit=parsed.rate_limit,
        fetched_at=time.time(),
    )


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_window_limits(state: PlanLimitsState, path: str) -> WindowLimits:
    if not state.limits:
        return {}
    parts = split_endpoint_path(path)
    if parts is None:
        return {}
    asset, category, metric = parts
    categories = state.limits.get(asset)
    if not categories:
        return {}
    metrics = categories.get(category)
    if not metrics:
        return {}
    return metrics.get(metric) or {}


def get_plan_limit(state: PlanLimitsState, path: str, window_type: str | None = None) -> str | None:
    """Limit token for a window, falling back to the first window listed."""
    windows = get_window_limits(state, path)
    if not windows:
        return None
    if window_type and windows.get(window_type):
        return windows[window_type]
    return next(iter(windows.values()))


def has_endpoint_access(state: PlanLimitsState, path: str) -> bool:
    if not state.gating_active:
        return True

    if path in state.statics:
        return True

    if state.plan is Tier.BASIC and not state.limits:
        return False

    if get_plan_limit(state, path) is not None:
        return True

    return state.plan in FULL_ACCESS_TIERS


def validate_date_range(
    state: PlanLimitsState,
    path: str,
    from_date: str | None,
    window_type: str | None = None,
    now: datetime | None = None,
) -> DateRangeValidation:
    """Check a query's start date against the plan's history depth."""
    if not state.gating_active:
        return DateRangeValidation(valid=True)

    if not has_endpoint_access(state, path):
        return DateRangeValidation(valid=False, error="Endpoint not accessible on your plan")

    if not from_date:
        return DateRangeValidation(valid=True)

    limit = get_plan_limit(state, path, window_type)
    if not limit:
        return DateRangeValidation(
            valid=False, error="No access to this endpoint/window combination"
        )

    duration = parse_duration(limit)
    if duration.is_unlimited or duration.is_malformed:
        return DateRangeValidation(valid=True)

    requested = _parse_date(from_date)
    if requested is None:
        return DateRangeValidation(valid=False, error="Invalid date format")

    earliest = subtract_duration(now or datetime.now(), duration)
    if requested < earliest.date():
        return DateRangeValidation(
            valid=False,
            error="Date range exceeds plan limit",
            earliest_allowed=earliest.date().isoformat(),
            limit=limit,
        )
    return DateRangeValidation(valid=True)


def _parse_date(value: str) -> date | None:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
    except ValueError:
        return None


def get_required_plan(state: PlanLimitsState, path: str) -> Tier:
    """Rough minimum tier for an endpoint.

    Approximated from the stored limit only; there is no upstream mapping of
    endpoints to plans, so anything unknown is reported as professional.
    """
    if not state.limits:
        return Tier.PROFESSIONAL
    limit = get_plan_limit(state, path)
    if limit in (UNLIMITED, "P1D"):
        return Tier.BASIC
    return Tier.PROFESSIONAL


def accessible_endpoints_summary(
    state: PlanLimitsState, total_discovered: int | None = None
) -> dict[str, Any]:
    """Count of reachable endpoints; restricted tiers also get the list."""
    if not state.loaded:
        return {"count": 0}

    if state.plan is Tier.BASIC and not state.limits:
        return {"count": 0, "endpoints": []}

    if state.plan in FULL_ACCESS_TIERS and total_discovered:
        return {"count": total_discovered}

    count = 0
    endpoints: list[dict[str, str]] = []
    for asset, categories in (state.limits or {}).items():
        for category, metrics in categories.items():
            for metric, windows in metrics.items():
                count += 1
                if state.plan in RESTRICTED_TIERS:
                    endpoints.append({
                        "path": f"/v1/{asset}/{category}/{metric}",
                        "date_limit": windows.get("day") or next(iter(windows.values())),
                    })

    count += len(state.statics)
    summary: dict[str, Any] = {"count": count}
    if endpoints:
        summary["endpoints"] = endpoints
    return summary


def plan_note(plan: Tier | str) -> str:
    try:
        tier = Tier(plan)
    except ValueError:
        tier = Tier.UNKNOWN
    return _PLAN_NOTES.get(tier, "Plan not detected")
