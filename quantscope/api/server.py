"""FastAPI server exposing the session tools."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from quantscope.api.routes import tool_router
from quantscope.auth.credentials import CredentialStore
from quantscope.cache.store import CacheStore
from quantscope.config import settings
from quantscope.discovery.client import DiscoveryClient
from quantscope.session.coordinator import Coordinator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the coordinator and stores unless a test already did."""
    if getattr(app.state, "coordinator", None) is None:
        app.state.coordinator = Coordinator(
            client=DiscoveryClient(),
            cache=CacheStore(settings.data_dir, settings.cache_ttl_days),
        )
    if getattr(app.state, "credentials", None) is None:
        app.state.credentials = CredentialStore(settings.data_dir)
    logger.info("Session tools ready (api=%s, data_dir=%s)", settings.api_url(), settings.data_dir)

    yield

    app.state.coordinator.reset()


def create_app() -> FastAPI:
    app = FastAPI(
        title="quantscope: metric endpoint access gateway",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(tool_router)

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "session": app.state.coordinator.state.to_dict()}

    return app
