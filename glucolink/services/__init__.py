"""
Service layer - resilient access to the LibreLinkUp glucose API.

Provides:
- Authenticator: Bearer token reuse and renewal
- Throttler: Request spacing and failure backoff
- SingleFlight: One upstream fetch at a time, shared by concurrent callers
- PersistentCache: Durable cache of the last good reading set
- GlucoseFetcher: Orchestrator combining all of the above
"""

from glucolink.services.auth import Authenticator
from glucolink.services.cache import CacheStats, PersistentCache
from glucolink.services.clock import Clock, SystemClock
from glucolink.services.deduplicator import SingleFlight
from glucolink.services.fetcher import FetcherConfig, GlucoseFetcher, create_fetcher
from glucolink.services.storage import FileStore, KeyValueStore, MemoryStore
from glucolink.services.throttler import (
    ThrottleMode,
    Throttler,
    ThrottlerConfig,
    ThrottleState,
)

__all__ = [
    # Auth
    "Authenticator",
    # Cache
    "PersistentCache",
    "CacheStats",
    # Clock and storage
    "Clock",
    "SystemClock",
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    # Throttling
    "Throttler",
    "ThrottlerConfig",
    "ThrottleState",
    "ThrottleMode",
    # Single flight
    "SingleFlight",
    # Fetcher
    "GlucoseFetcher",
    "FetcherConfig",
    "create_fetcher",
]
