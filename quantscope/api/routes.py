"""Tool routes: initialize, reset, endpoint discovery and data queries.

Every route answers 200 with ``{"success": bool, ...}``; failures carry an
``error`` plus whatever detail helps the caller fix the request.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from quantscope.auth.credentials import CredentialStore, resolve_api_key
from quantscope.config import base_url_for, settings
from quantscope.discovery.catalog import (
    IndexedEndpoint,
    build_example_query,
    search_endpoints,
    validate_parameters,
)
from quantscope.discovery.client import DiscoveryError, DiscoveryOfflineError
from quantscope.plans.duration import duration_to_date, format_duration
from quantscope.plans.limits import (
    accessible_endpoints_summary,
    get_required_plan,
    get_window_limits,
    has_endpoint_access,
    plan_note,
    validate_date_range,
)
from quantscope.session.coordinator import Coordinator

logger = logging.getLogger(__name__)

tool_router = APIRouter(prefix="/tools", tags=["tools"])

PRICING_URL = "https://cryptoquant.com/pricing"
API_KEY_URL = "https://cryptoquant.com/settings/api"


# ── Request models ───────────────────────────────────────────────────────

class InitializeBody(BaseModel):
    api_key: str | None = None


class ResetBody(BaseModel):
    clear_stored: bool = False
    clear_cache: bool = False


class QueryBody(BaseModel):
    endpoint: str
    params: dict[str, Any] = {}


# ── Helpers ──────────────────────────────────────────────────────────────

def _coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator  # type: ignore[no-any-return]


def _credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials  # type: ignore[no-any-return]


def _error(message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": message, **extra}


def _require_auth(coordinator: Coordinator) -> dict[str, Any] | None:
    if not coordinator.state.authenticated:
        return _error(
            "Not authenticated",
            action="Call initialize() first to authenticate with your API key",
        )
    return None


def _plan_fields(coordinator: Coordinator, ep: IndexedEndpoint) -> dict[str, Any]:
    plan_state = coordinator.state.plan_state
    if not plan_state.loaded:
        return {}
    accessible = has_endpoint_access(plan_state, ep.path)
    fields: dict[str, Any] = {"accessible": accessible}
    windows = get_window_limits(plan_state, ep.path)
    if windows:
        fields["date_limits"] = windows
    if not accessible:
        required = get_required_plan(plan_state, ep.path)
        fields["required_plan"] = required.value
        fields["upgrade_hint"] = f"Upgrade to {required.value.capitalize()} for access"
    return fields


# ── Session ──────────────────────────────────────────────────────────────

@tool_router.post("/initialize")
async def initialize(body: InitializeBody, request: Request) -> dict[str, Any]:
    """Authenticate and load plan limits plus the endpoint catalog."""
    coordinator = _coordinator(request)
    credentials = _credentials(request)

    api_key, source = resolve_api_key(body.api_key, credentials)
    if not api_key:
        return {
            "status": "api_key_required",
            "message": "API key not found. Set CRYPTOQUANT_API_KEY or pass api_key.",
            "get_api_key": API_KEY_URL,
        }
    logger.debug("Initializing with API key from %s", source)

    result = await coordinator.initialize(api_key, settings.api_url())
    if not result.success:
        return _error(
            result.error or "Initialization failed",
            help={
                "check_key": f"Check your API key at {API_KEY_URL}",
                "retry": "Or call initialize(api_key='your-api-key') with a valid key",
            },
        )

    if source == "param":
        credentials.save(api_key)
    elif source == "stored":
        credentials.touch_validated()

    state = coordinator.state
    plan_state = state.plan_state
    catalog = state.catalog
    summary = result.summary or (state.cache_record.summary if state.cache_record else None)

    total = len(catalog) if catalog is not None else (summary.total_endpoints if summary else 0)
    accessible = accessible_endpoints_summary(plan_state, total)

    session: dict[str, Any] = {"plan": state.plan.value, "cache_status": result.cache_status}
    if plan_state.rate_limit:
        session["rate_limit"] = plan_state.rate_limit.label()

    scope: dict[str, Any] = {
        "total_endpoints": total,
        "accessible": accessible["count"],
        "note": "Use discover_endpoints(asset, category) for details",
    }
    if summary and summary.assets:
        scope["assets"] = {
            a.name: {"endpoints": a.endpoint_count, "categories": len(a.categories)}
            for a in summary.assets
        }
    elif catalog is not None:
        asset_categories = catalog.asset_category_map()
        scope["assets"] = {
            a: {"endpoints": len(catalog.by_asset[a]), "categories": len(asset_categories[a])}
            for a in catalog.assets
        }

    discovery = None
    if catalog is not None:
        discovery = {
            "total_endpoints": len(catalog),
            "assets": catalog.assets,
            "categories": catalog.categories,
            "asset_categories": catalog.asset_category_map(),
            "fetched_at": catalog.summary()["fetched_at"],
        }

    plan_info: dict[str, Any] = {
        "plan": state.plan.value,
        "plan_limits_loaded": plan_state.loaded,
        "accessible_endpoints": accessible["count"],
        "note": plan_note(state.plan),
    }
    if "endpoints" in accessible:
        plan_info["accessible_list"] = accessible["endpoints"]

    response: dict[str, Any] = {
        "success": True,
        "session": session,
        "scope": scope,
        "discovery": discovery,
        "plan_info": plan_info,
    }
    if result.discovery_error:
        response["warning"] = f"Discovery partial: {result.discovery_error}"
    return response


@tool_router.post("/reset_session")
def reset_session(body: ResetBody, request: Request) -> dict[str, Any]:
    """Clear the session and optionally stored credentials and the cache."""
    coordinator = _coordinator(request)
    credentials = _credentials(request)

    coordinator.reset()
    cleared = ["session"]
    response: dict[str, Any] = {"success": True}

    if body.clear_stored:
        credentials.clear()
        cleared.append("credentials")
        response["credentials_path"] = str(credentials.path)

    if body.clear_cache:
        coordinator.clear_cache(settings.api_url())
        cleared.append("discovery cache")
        response["cache_path"] = str(coordinator.cache_path())

    response["message"] = (
        "Session cleared (credentials and cache preserved)"
        if len(cleared) == 1
        else f"Cleared: {', '.join(cleared)}"
    )
    return response


# ── Discovery ────────────────────────────────────────────────────────────

@tool_router.get("/discover_endpoints")
def discover_endpoints(
    request: Request,
    asset: str | None = None,
    category: str | None = None,
    query: str | None = None,
) -> dict[str, Any]:
    """Endpoints grouped by asset and category, annotated with plan access."""
    coordinator = _coordinator(request)
    denied = _require_auth(coordinator)
    if denied:
        return denied

    catalog = coordinator.state.catalog
    if catalog is None:
        return _error(
            "Discovery data not loaded",
            action="Discovery may have failed during initialization. "
                   "Try reset_session() and initialize() again.",
        )

    endpoints = search_endpoints(catalog, asset=asset, category=category, query=query)

    grouped: dict[str, dict[str, list[dict[str, Any]]]] = {}
    for ep in endpoints:
        entry = {
            "path": ep.path,
            "metric": ep.metric,
            "parameters": ep.parameters,
            "required_parameters": ep.required_parameters,
            **_plan_fields(coordinator, ep),
        }
        grouped.setdefault(ep.asset, {}).setdefault(ep.category, []).append(entry)

    plan_state = coordinator.state.plan_state
    response: dict[str, Any] = {
        "success": True,
        "filters": {"asset": asset or "all", "category": category or "all", "query": query},
        "matched_endpoints": len(endpoints),
        "total_available": len(catalog),
        "catalog": [
            {
                "asset": a,
                "categories": [{"category": c, "endpoints": eps} for c, eps in cats.items()],
            }
            for a, cats in grouped.items()
        ],
        "tip": "Use get_endpoint_info(endpoint) to see available parameter values "
               "for a specific endpoint",
    }
    if plan_state.loaded:
        response["plan_info"] = {
            "your_plan": plan_state.plan.value,
            "note": plan_note(plan_state.plan),
        }
    return response


@tool_router.get("/endpoint_info")
def endpoint_info(endpoint: str, request: Request) -> dict[str, Any]:
    """Parameter options, plan access and per-window date floors for one endpoint."""
    coordinator = _coordinator(request)
    denied = _require_auth(coordinator)
    if denied:
        return denied

    catalog = coordinator.state.catalog
    ep = catalog.lookup_by_path(endpoint) if catalog is not None else None
    if ep is None:
        suggestions = search_endpoints(catalog, query=endpoint.rstrip("/").split("/")[-1])
        return _error(
            f"Endpoint not found: {endpoint}",
            suggestions=[s.path for s in suggestions[:5]],
            tip="Use discover_endpoints() to browse available endpoints",
        )

    plan_state = coordinator.state.plan_state
    response: dict[str, Any] = {
        "success": True,
        "endpoint": {
            "path": ep.path,
            "asset": ep.asset,
            "category": ep.category,
            "metric": ep.metric,
        },
        "parameters": ep.parameters,
        "required_parameters": ep.required_parameters,
        "example_query": build_example_query(ep),
    }

    if plan_state.loaded:
        accessible = has_endpoint_access(plan_state, ep.path)
        access: dict[str, Any] = {"accessible": accessible, "your_plan": plan_state.plan.value}
        date_limits = {}
        for window, limit in get_window_limits(plan_state, ep.path).items():
            earliest = duration_to_date(limit)
            date_limits[window] = {
                "limit": limit,
                "earliest_date": earliest.date().isoformat() if earliest else None,
                "period": format_duration(limit),
            }
        if date_limits:
            access["date_limits"] = date_limits
        if not accessible:
            access["required_plan"] = get_required_plan(plan_state, ep.path).value
            access["upgrade_url"] = PRICING_URL
        response["plan_access"] = access
    return response


@tool_router.get("/list_assets")
def list_assets(request: Request) -> dict[str, Any]:
    coordinator = _coordinator(request)
    state = coordinator.state
    catalog = state.catalog

    if catalog is None:
        note = (
            "Discovery data not loaded. Try reset_session() and initialize() again."
            if state.authenticated
            else "Call initialize() to load full endpoint catalog"
        )
        return {
            "success": True,
            "authenticated": state.authenticated,
            "assets": [],
            "note": note,
        }

    asset_categories = catalog.asset_category_map()
    return {
        "success": True,
        "authenticated": state.authenticated,
        "total_endpoints": len(catalog),
        "fetched_at": catalog.summary()["fetched_at"],
        "assets": [
            {
                "asset": a.upper(),
                "total_endpoints": len(catalog.by_asset[a]),
                "categories": asset_categories[a],
            }
            for a in catalog.assets
        ],
        "tip": "Use discover_endpoints(asset='btc') to explore endpoints for a specific asset",
    }


# ── Data ─────────────────────────────────────────────────────────────────

@tool_router.post("/query_data")
async def query_data(body: QueryBody, request: Request) -> dict[str, Any]:
    """Validate against the catalog and plan, then pass the request through."""
    coordinator = _coordinator(request)
    denied = _require_auth(coordinator)
    if denied:
        return denied

    state = coordinator.state
    catalog = state.catalog
    ep = catalog.lookup_by_path(body.endpoint) if catalog is not None else None
    if ep is None:
        return _error(
            f"Unknown endpoint: {body.endpoint}",
            action="Use discover_endpoints() to find valid endpoints",
        )

    validation = validate_parameters(ep, body.params)
    if not validation.valid:
        return _error(
            "Invalid parameters",
            details=validation.errors,
            endpoint=body.endpoint,
            available_parameters=ep.parameters,
            required_parameters=ep.required_parameters,
        )

    plan_state = state.plan_state
    if plan_state.loaded:
        if not has_endpoint_access(plan_state, body.endpoint):
            required = get_required_plan(plan_state, body.endpoint)
            return _error(
                "Endpoint not accessible on your plan",
                your_plan=plan_state.plan.value,
                required_plan=required.value,
                upgrade_url=PRICING_URL,
                suggestion=f"Upgrade to {required.value.capitalize()} plan "
                           "for access to this endpoint",
            )

        from_date = body.params.get("from")
        if from_date:
            window = body.params.get("window")
            check = validate_date_range(
                plan_state, body.endpoint, str(from_date),
                str(window) if window else None,
            )
            if not check.valid:
                detail = check.to_dict()
                detail.pop("valid", None)
                message = detail.pop("error", None) or "Date range exceeds plan limit"
                return _error(
                    message,
                    your_plan=plan_state.plan.value,
                    upgrade_url=PRICING_URL,
                    suggestion="Upgrade to Premium for unlimited historical data access",
                    **detail,
                )

    if not state.api_key:
        return _error("API key not available", action="Re-initialize with your API key")

    try:
        resp = await coordinator.client.query(
            state.api_key,
            body.endpoint,
            body.params,
            base_url=base_url_for(state.api_url) if state.api_url else None,
        )
    except (DiscoveryError, DiscoveryOfflineError) as e:
        return _error(f"Network error: {e}", endpoint=body.endpoint)

    if resp.data is None:
        return _error(
            f"API request failed: {resp.status_code}",
            details=resp.error_body,
            endpoint=body.endpoint,
        )

    response: dict[str, Any] = {
        "success": True,
        "endpoint": body.endpoint,
        "params": body.params,
    }
    if resp.rate_limit:
        response["rate_limit"] = resp.rate_limit
    response.update(resp.data)
    return response
