"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from quantscope.cache.store import CacheStore
from quantscope.discovery.client import DiscoveryClient
from quantscope.session.coordinator import Coordinator


def endpoint(path: str, **parameters: list[str]) -> dict[str, Any]:
    required = ["window"] if "window" in parameters else []
    return {"path": path, "parameters": parameters, "required_parameters": required}


@pytest.fixture
def endpoint_list() -> list[dict[str, Any]]:
    return [
        endpoint("/v1/btc/market-data/price-ohlcv", window=["day", "hour"], market=["spot", "perpetual"]),
        endpoint("/v1/btc/market-data/funding-rates", window=["day"]),
        endpoint("/v1/btc/exchange-flows/netflow", window=["day", "block"]),
        endpoint("/v1/eth/market-data/price-ohlcv", window=["day"]),
        endpoint("/v1/eth/network-data/fees/transaction", window=["day"]),
        endpoint("/v1/status/entity-list"),  # only four segments
    ]


@pytest.fixture
def discovery_body(endpoint_list) -> dict[str, Any]:
    return {"status": {"code": 200, "message": "success"}, "result": {"data": endpoint_list}}


@pytest.fixture
def plan_body() -> dict[str, Any]:
    return {
        "plan": {"name": "ADVANCED"},
        "apiEndpoint": {
            "btc": {
                "market-data": {
                    "price-ohlcv": {"day": "P3Y", "hour": "P3M"},
                    "funding-rates": {"day": "P1Y"},
                },
                "exchange-flows": {"netflow": {"day": "P0D", "block": "P7D"}},
            },
            "eth": {"market-data": {"price-ohlcv": {"day": "P1D"}}},
            "statics": ["/v1/btc/status/entity-list"],
        },
        "apiRateLimit": {"token": 1000, "window": "day"},
    }


class FakeApi:
    """Route table for httpx.MockTransport keyed by URL path."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, Any, dict[str, str]]] = {}
        self.calls: list[httpx.Request] = []

    def set(
        self, path: str, status: int, body: Any = None, headers: dict[str, str] | None = None
    ) -> None:
        self.routes[path] = (status, body, headers or {})

    def calls_to(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        status, body, headers = self.routes.get(request.url.path, (404, {"detail": "not found"}, {}))
        if isinstance(body, Exception):
            raise body
        if isinstance(body, str):
            return httpx.Response(status, text=body, headers=headers)
        return httpx.Response(status, json=body, headers=headers)


@pytest.fixture
def fake_api(discovery_body, plan_body) -> FakeApi:
    api = FakeApi()
    api.set("/v1/discovery/endpoints", 200, discovery_body)
    api.set("/v1/my/discovery/endpoints", 200, plan_body)
    return api


@pytest.fixture
def client(fake_api) -> DiscoveryClient:
    return DiscoveryClient(
        base_url="https://api.example.test",
        transport=httpx.MockTransport(fake_api.handler),
    )


@pytest.fixture
def cache_store(tmp_path) -> CacheStore:
    return CacheStore(cache_dir=tmp_path / "data", ttl_days=7)


@pytest.fixture
def coordinator(client, cache_store) -> Coordinator:
    return Coordinator(client=client, cache=cache_store)
