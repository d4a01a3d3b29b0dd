"""Discovery cache: one versioned JSON snapshot per local user.

Holds the account-scoped plan payload, its parsed permission table and the
derived summary so a restart doesn't need to hit the plan endpoint again.
The record is rejected (treated as a miss) on version, API URL or API key
prefix mismatch, or once it has expired.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from quantscope.cache.summary import DiscoverySummary
from quantscope.config import settings
from quantscope.discovery.models import RateLimit
from quantscope.plans.limits import ParsedPlan, PermissionTable, Tier

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
CACHE_FILENAME = "discovery-cache.json"
KEY_PREFIX_LENGTH = 8


def key_prefix(api_key: str) -> str:
    return api_key[:KEY_PREFIX_LENGTH]


# ── Schema ───────────────────────────────────────────────────────────────────


class CacheMetadata(BaseModel):
    api_url: str
    api_key_prefix: str
    cached_at: str  # ISO timestamp
    expires_at: str  # cached_at + TTL
    plan: Tier


class CachedPlan(BaseModel):
    limits: PermissionTable | None = None
    statics: list[str] = []
    apiRateLimit: RateLimit | None = None

    def to_parsed(self) -> ParsedPlan:
        return ParsedPlan(
            limits=self.limits,
            statics=list(self.statics),
            rate_limit=self.apiRateLimit,
        )


class CacheRecord(BaseModel):
    version: int
    metadata: CacheMetadata
    raw_response: dict[str, Any]
    parsed: CachedPlan
    summary: DiscoverySummary


# ── Store ────────────────────────────────────────────────────────────────────


class CacheStore:
    """File-backed cache for the account-scoped discovery data."""

    def __init__(self, cache_dir: Path | str | None = None, ttl_days: int | None = None) -> None:
        self._dir = Path(cache_dir) if cache_dir else settings.data_dir
        self._ttl = timedelta(days=ttl_days if ttl_days is not None else settings.cache_ttl_days)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, api_url: str) -> Path:
        # Keyed by URL in the interface only; every URL shares one file and the
        # URL stored in the metadata decides validity.
        return self._dir / CACHE_FILENAME

    def is_valid(
        self,
        record: CacheRecord,
        api_url: str,
        api_key_prefix: str,
        now: datetime | None = None,
    ) -> bool:
        if record.version != CACHE_VERSION:
            return False
        if record.metadata.api_url != api_url:
            return False
        if record.metadata.api_key_prefix != api_key_prefix:
            return False
        expires_at = _parse_ts(record.metadata.expires_at)
        if expires_at is None:
            return False
        return expires_at >= (now or datetime.now(timezone.utc))

    def read(self, api_url: str) -> CacheRecord | None:
        """Load the record, or None if missing, unreadable or malformed."""
        path = self.path_for(api_url)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return CacheRecord.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.debug("Ignoring unreadable cache %s: %s", path, e)
            return None

    def write(
        self,
        api_url: str,
        api_key: str,
        raw_response: dict[str, Any],
        parsed: ParsedPlan,
        summary: DiscoverySummary,
        plan: Tier,
        now: datetime | None = None,
    ) -> CacheRecord:
        """Replace the cache file with a new record (owner-only permissions)."""
        cached_at = now or datetime.now(timezone.utc)
        record = CacheRecord(
            version=CACHE_VERSION,
            metadata=CacheMetadata(
                api_url=api_url,
                api_key_prefix=key_prefix(api_key),
                cached_at=cached_at.isoformat(),
                expires_at=(cached_at + self._ttl).isoformat(),
                plan=plan,
            ),
            raw_response=raw_response,
            parsed=CachedPlan(**parsed.fragment()),
            summary=summary,
        )

        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        path = self.path_for(api_url)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".cache-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(record.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        os.chmod(path, 0o600)
        logger.debug("Wrote discovery cache to %s (plan=%s)", path, plan.value)
        return record

    def invalidate(self, api_url: str) -> None:
        self._unlink(self.path_for(api_url))

    def clear_all(self) -> None:
        self._unlink(self._dir / CACHE_FILENAME)

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not delete cache file %s: %s", path, e)

    # ── Display helpers ──────────────────────────────────────────────────

    @staticmethod
    def age_days(record: CacheRecord, now: datetime | None = None) -> int:
        cached_at = _parse_ts(record.metadata.cached_at)
        if cached_at is None:
            return 0
        return max(0, ((now or datetime.now(timezone.utc)) - cached_at).days)

    @classmethod
    def status_label(cls, record: CacheRecord | None, from_cache: bool) -> str:
        if not from_cache or record is None:
            return "fresh"
        return f"cached ({cls.age_days(record)}d old)"


def _parse_ts(value: str) -> datetime | None:
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
