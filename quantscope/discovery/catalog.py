"""Endpoint catalog: indexes the public discovery listing.

Paths look like ``/v1/<asset>/<category>/<metric...>``.  The catalog is built
once per fetch and never mutated afterwards; a fresh fetch replaces it whole.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import ValidationError

from quantscope.discovery.models import EndpointDescriptor

logger = logging.getLogger(__name__)

MIN_PATH_SEGMENTS = 5  # "", version, asset, category, metric


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass
class IndexedEndpoint:
    """A discovery endpoint with its path split into asset / category / metric."""

    path: str
    asset: str
    category: str
    metric: str  # may itself contain slashes
    parameters: dict[str, list[str]] = field(default_factory=dict)
    required_parameters: list[str] = field(default_factory=list)


@dataclass
class ParamValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


def split_endpoint_path(path: str) -> tuple[str, str, str] | None:
    """Return (asset, category, metric) or None for a malformed path."""
    parts = path.split("/")
    if len(parts) < MIN_PATH_SEGMENTS:
        return None
    return parts[2], parts[3], "/".join(parts[4:])


# ── Catalog ──────────────────────────────────────────────────────────────────


class EndpointCatalog:
    """Ordered endpoint list plus asset / category / asset+category indexes."""

    def __init__(
        self,
        endpoints: list[IndexedEndpoint],
        fetched_at: float | None = None,
    ) -> None:
        self.endpoints = endpoints
        self.fetched_at = fetched_at if fetched_at is not None else time.time()
        self.by_asset: dict[str, list[IndexedEndpoint]] = {}
        self.by_category: dict[str, list[IndexedEndpoint]] = {}
        self.by_asset_category: dict[str, list[IndexedEndpoint]] = {}
        self._by_path: dict[str, IndexedEndpoint] = {}
        for ep in endpoints:
            self.by_asset.setdefault(ep.asset, []).append(ep)
            self.by_category.setdefault(ep.category, []).append(ep)
            self.by_asset_category.setdefault(f"{ep.asset}/{ep.category}", []).append(ep)
            self._by_path.setdefault(ep.path, ep)

    @classmethod
    def parse(
        cls, raw: Iterable[EndpointDescriptor | dict[str, Any]]
    ) -> "EndpointCatalog":
        """Build a catalog from raw descriptors, dropping malformed entries and paths."""
        endpoints: list[IndexedEndpoint] = []
        skipped = 0
        for item in raw:
            try:
                desc = EndpointDescriptor.model_validate(item)
            except ValidationError as e:
                logger.warning("Skipping malformed endpoint descriptor: %s", e)
                skipped += 1
                continue
            parts = split_endpoint_path(desc.path)
            if parts is None:
                skipped += 1
                continue
            asset, category, metric = parts
            endpoints.append(
                IndexedEndpoint(
                    path=desc.path,
                    asset=asset,
                    category=category,
                    metric=metric,
                    parameters=desc.parameters,
                    required_parameters=desc.required_parameters,
                )
            )
        if skipped:
            logger.debug("Skipped %d malformed endpoint paths", skipped)
        return cls(endpoints)

    @property
    def assets(self) -> list[str]:
        return sorted(self.by_asset)

    @property
    def categories(self) -> list[str]:
        return sorted(self.by_category)

    def __len__(self) -> int:
        return len(self.endpoints)

    # ── Lookups ──────────────────────────────────────────────────────────

    def search(
        self,
        asset: str | None = None,
        category: str | None = None,
        query: str | None = None,
    ) -> list[IndexedEndpoint]:
        """Most specific index first, then a case-insensitive substring filter."""
        if asset and category:
            results = self.by_asset_category.get(f"{asset}/{category}", [])
        elif asset:
            results = self.by_asset.get(asset, [])
        elif category:
            results = self.by_category.get(category, [])
        else:
            results = self.endpoints

        if not query:
            return list(results)

        needle = query.lower()
        return [
            ep for ep in results
            if needle in ep.path.lower() or needle in ep.metric.lower()
        ]

    def lookup_by_path(self, path: str) -> IndexedEndpoint | None:
        return self._by_path.get(path)

    def parameter_options(self, path: str) -> dict[str, Any] | None:
        endpoint = self.lookup_by_path(path)
        if endpoint is None:
            return None
        return {
            "parameters": endpoint.parameters,
            "required": endpoint.required_parameters,
        }

    # ── Aggregates ───────────────────────────────────────────────────────

    def summary(self) -> dict[str, Any]:
        return {
            "total_endpoints": len(self.endpoints),
            "assets": [
                {"name": a, "count": len(self.by_asset[a])} for a in self.assets
            ],
            "categories": [
                {"name": c, "count": len(self.by_category[c])} for c in self.categories
            ],
            "fetched_at": datetime.fromtimestamp(self.fetched_at, timezone.utc).isoformat(),
        }

    def asset_category_map(self) -> dict[str, list[str]]:
        return {
            asset: sorted({ep.category for ep in self.by_asset[asset]})
            for asset in self.assets
        }


def search_endpoints(
    catalog: EndpointCatalog | None,
    asset: str | None = None,
    category: str | None = None,
    query: str | None = None,
) -> list[IndexedEndpoint]:
    """Search a possibly-absent catalog; an unpopulated catalog yields []."""
    if catalog is None:
        logger.debug("Endpoint search with no catalog loaded")
        return []
    results = catalog.search(asset=asset, category=category, query=query)
    logger.debug(
        "Endpoint search asset=%s category=%s query=%s -> %d",
        asset, category, query, len(results),
    )
    return results


def validate_parameters(endpoint: IndexedEndpoint, params: dict[str, Any]) -> ParamValidation:
    """Check required parameters and allowed values.

    Parameter names the endpoint doesn't declare are passed through unchecked.
    """
    errors: list[str] = []

    for required in endpoint.required_parameters:
        if params.get(required) is None:
            errors.append(f"Missing required parameter: {required}")

    for key, value in params.items():
        if value is None:
            continue
        allowed = endpoint.parameters.get(key)
        if allowed and isinstance(value, str) and value not in allowed:
            errors.append(
                f"Invalid value for '{key}': '{value}'. Allowed: {', '.join(allowed)}"
            )

    return ParamValidation(valid=not errors, errors=errors)


def build_example_query(endpoint: IndexedEndpoint) -> str:
    """A ready-to-copy query_data call using the first allowed value of each parameter."""
    params: list[tuple[str, str]] = []
    for required in endpoint.required_parameters:
        values = endpoint.parameters.get(required)
        if values:
            params.append((required, values[0]))

    window = endpoint.parameters.get("window")
    if window and "window" not in endpoint.required_parameters:
        params.append(("window", window[0]))

    params.append(("limit", "100"))
    rendered = ", ".join(f'"{k}": "{v}"' for k, v in params)
    return f'query_data(endpoint="{endpoint.path}", params={{{rendered}}})'
