"""Summary generation for cached discovery data."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from quantscope.plans.limits import PermissionTable


class AssetSummary(BaseModel):
    name: str
    endpoint_count: int
    categories: list[str]


class DiscoverySummary(BaseModel):
    total_endpoints: int = 0
    assets: list[AssetSummary] = Field(default_factory=list)
    category_by_asset: dict[str, list[str]] = Field(default_factory=dict)


def build_summary(limits: PermissionTable | None, statics: list[str]) -> DiscoverySummary:
    """Count endpoints and categories per asset from the permission table.

    Static paths contribute to the asset at segment 2 and category at segment 3.
    """
    counts: dict[str, int] = {}
    categories: dict[str, set[str]] = {}

    for asset, by_category in (limits or {}).items():
        counts.setdefault(asset, 0)
        categories.setdefault(asset, set())
        for category, metrics in by_category.items():
            categories[asset].add(category)
            counts[asset] += len(metrics or {})

    for path in statics:
        parts = path.split("/")
        if len(parts) < 4:
            continue
        asset, category = parts[2], parts[3]
        counts[asset] = counts.get(asset, 0) + 1
        categories.setdefault(asset, set()).add(category)

    assets = [
        AssetSummary(name=a, endpoint_count=counts[a], categories=sorted(categories[a]))
        for a in sorted(counts)
    ]
    return DiscoverySummary(
        total_endpoints=sum(counts.values()),
        assets=assets,
        category_by_asset={a.name: a.categories for a in assets},
    )


def extract_raw_response(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Keep only the parts of the plan payload worth caching."""
    if not isinstance(payload, dict):
        return None
    api_endpoint = payload.get("apiEndpoint")
    if not isinstance(api_endpoint, dict):
        return None

    plan = payload.get("plan") if isinstance(payload.get("plan"), dict) else {}
    rate = payload.get("apiRateLimit") if isinstance(payload.get("apiRateLimit"), dict) else {}
    return {
        "apiEndpoint": api_endpoint,
        "plan": {"name": plan.get("name") or "unknown"},
        "apiRateLimit": {
            "token": rate.get("token") or 0,
            "window": rate.get("window") or "day",
        },
    }
