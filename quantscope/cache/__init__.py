"""Discovery cache: on-disk snapshot and summary."""

from .store import CACHE_VERSION, CacheRecord, CacheStore
from .summary import DiscoverySummary, build_summary, extract_raw_response
