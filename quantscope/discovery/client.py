"""httpx-based async client for the upstream metrics API.

Covers the two discovery fetches and the pass-through data query.  Methods
return typed results or raise DiscoveryOfflineError / DiscoveryError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from quantscope.config import settings
from quantscope.discovery.models import DiscoveryResponse

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/v1/discovery/endpoints"
PLAN_DISCOVERY_PATH = "/v1/my/discovery/endpoints"
SOURCE_TAG = "mcp"

# The plan endpoint answers these for accounts without plan data.
RESTRICTED_STATUSES = (403, 500)


class DiscoveryOfflineError(Exception):
    """Raised when the API is unreachable or times out."""


class DiscoveryError(Exception):
    """Raised when the API answers with an error or an unusable body."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Discovery API error {status_code}: {detail}")


@dataclass
class QueryResponse:
    status_code: int
    data: dict[str, Any] | None
    rate_limit: str | None = None
    error_body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class DiscoveryClient:
    """Async client; one short-lived httpx.AsyncClient per request."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.api_base_url()).rstrip("/")
        self._timeout = timeout or settings.http_timeout
        self._transport = transport

    async def _get(
        self,
        path: str,
        api_key: str,
        params: dict[str, str] | None = None,
        base_url: str | None = None,
    ) -> httpx.Response:
        url = f"{(base_url or self._base_url).rstrip('/')}{path}"
        logger.debug("GET %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(
                    url,
                    headers={"Authorization": f"Bearer {api_key}"},
                    params=params,
                )
        except httpx.ConnectError:
            raise DiscoveryOfflineError("API is offline or unreachable")
        except httpx.TimeoutException:
            raise DiscoveryOfflineError("API request timed out")
        except httpx.HTTPError as e:
            raise DiscoveryError(0, f"{type(e).__name__}: {e}") from e
        logger.debug("GET %s -> %s", path, resp.status_code)
        return resp

    # ── Discovery ────────────────────────────────────────────────────────

    async def fetch_endpoints(
        self, api_key: str, base_url: str | None = None
    ) -> list[Any]:
        """GET /v1/discovery/endpoints: the public catalog with parameter options.

        Descriptors come back raw; the catalog validates them one by one.
        """
        resp = await self._get(
            DISCOVERY_PATH, api_key, params={"source": SOURCE_TAG}, base_url=base_url
        )
        if resp.status_code != 200:
            raise DiscoveryError(resp.status_code, resp.reason_phrase or resp.text)
        try:
            envelope = DiscoveryResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise DiscoveryError(resp.status_code, "Failed to parse discovery response") from e

        if envelope.status.code != 200 or not envelope.result or envelope.result.data is None:
            raise DiscoveryError(
                envelope.status.code,
                f"Invalid discovery response: {envelope.status.message}",
            )
        return envelope.result.data

    async def fetch_plan_payload(
        self, api_key: str, base_url: str | None = None
    ) -> dict[str, Any] | None:
        """GET /v1/my/discovery/endpoints: account-scoped plan limits.

        Returns None when the API signals a restricted account (403/500).
        """
        resp = await self._get(
            PLAN_DISCOVERY_PATH, api_key, params={"source": SOURCE_TAG}, base_url=base_url
        )
        if resp.status_code in RESTRICTED_STATUSES:
            logger.info("Plan limits unavailable (HTTP %s), assuming basic tier", resp.status_code)
            return None
        if not resp.is_success:
            raise DiscoveryError(
                resp.status_code, f"Plan limits API failed: {resp.reason_phrase}"
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise DiscoveryError(resp.status_code, "Failed to parse plan limits response") from e
        if not isinstance(data, dict):
            raise DiscoveryError(resp.status_code, "Plan limits response is not an object")
        return data

    # ── Data ─────────────────────────────────────────────────────────────

    async def query(
        self,
        api_key: str,
        endpoint: str,
        params: dict[str, Any],
        base_url: str | None = None,
    ) -> QueryResponse:
        """Pass-through data request; parameters are sent as strings."""
        query_params = {k: _stringify(v) for k, v in params.items() if v is not None}
        query_params.setdefault("limit", str(settings.query_default_limit))
        query_params["source"] = SOURCE_TAG

        resp = await self._get(endpoint, api_key, params=query_params, base_url=base_url)
        if not resp.is_success:
            return QueryResponse(status_code=resp.status_code, data=None, error_body=resp.text)
        try:
            data = resp.json()
        except ValueError:
            return QueryResponse(
                status_code=resp.status_code, data=None, error_body="Failed to parse API response"
            )
        return QueryResponse(
            status_code=resp.status_code,
            data=data if isinstance(data, dict) else {"result": data},
            rate_limit=rate_limit_info(resp.headers),
        )


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def rate_limit_info(headers: httpx.Headers | dict[str, str]) -> str | None:
    """Render X-RateLimit-* headers as ``"42/100 remaining (resets 12:00:00)"``."""
    limit = headers.get("X-RateLimit-Limit")
    remaining = headers.get("X-RateLimit-Remaining")
    if not limit or not remaining:
        return None
    info = f"{remaining}/{limit} remaining"
    reset = headers.get("X-RateLimit-Reset")
    if reset:
        try:
            reset_at = datetime.fromtimestamp(int(reset), timezone.utc)
            info += f" (resets {reset_at.strftime('%H:%M:%S')})"
        except (ValueError, OverflowError, OSError):
            pass
    return info
