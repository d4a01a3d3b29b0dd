"""Pydantic models for the upstream discovery API envelopes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ── /v1/discovery/endpoints ──────────────────────────────────────────────────


class EndpointDescriptor(BaseModel):
    path: str
    parameters: dict[str, list[str]] = Field(default_factory=dict)
    required_parameters: list[str] = Field(default_factory=list)


class ResponseStatus(BaseModel):
    code: int
    message: str = ""


class DiscoveryResult(BaseModel):
    # Validated per descriptor by EndpointCatalog.parse
    data: list[Any] | None = None


class DiscoveryResponse(BaseModel):
    status: ResponseStatus
    result: DiscoveryResult | None = None


# ── /v1/my/discovery/endpoints ───────────────────────────────────────────────


class RateLimit(BaseModel):
    token: int
    window: str  # "day", "hour", ...

    def label(self) -> str:
        return f"{self.token}/{self.window}"
