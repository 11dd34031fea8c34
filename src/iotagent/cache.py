"""
Self-expiring device descriptor cache.

Entries are keyed by (tenant, device_id) and hold either a device
descriptor or the INVALID marker recording that the device is known to be
absent upstream. Descriptor entries have their TTL refreshed on every hit;
negative entries expire on their own schedule and are never refreshed.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from core.logging import get_logger, log_with_context
from iotagent.metrics import record_cache_lookup, update_cache_entries

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_INVALID_TTL_SECONDS = 300.0


class _Invalid:
    """Marker value for devices known to be absent."""

    def __repr__(self) -> str:
        return "INVALID"


INVALID = _Invalid()


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    KNOWN_ABSENT = "known_absent"


@dataclass(frozen=True)
class CacheLookup:
    """Result of DeviceCache.get(); descriptor is set only for HIT."""

    status: CacheStatus
    descriptor: Optional[Dict[str, Any]] = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


@dataclass
class _Entry:
    value: Any
    ttl: float
    expires_at: float


class DeviceCache:
    """Thread-safe TTL cache of device descriptors with negative caching.

    Args:
        ttl: Lifetime of descriptor entries in seconds, extended on every hit
        invalid_ttl: Lifetime of negative entries in seconds
        clock: Monotonic clock returning seconds
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        invalid_ttl: float = DEFAULT_INVALID_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        if invalid_ttl <= 0:
            raise ValueError(f"invalid_ttl must be > 0, got {invalid_ttl}")
        self.ttl = ttl
        self.invalid_ttl = invalid_ttl
        self._clock = clock
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()

    @property
    def prune_interval(self) -> float:
        return self.ttl / 3

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, tenant: str, device_id: str) -> CacheLookup:
        key = (tenant, device_id)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at <= now:
                del self._entries[key]
                entry = None

            if entry is None:
                lookup = CacheLookup(CacheStatus.MISS)
            elif entry.value is INVALID:
                lookup = CacheLookup(CacheStatus.KNOWN_ABSENT)
            else:
                entry.expires_at = now + entry.ttl
                lookup = CacheLookup(CacheStatus.HIT, entry.value)

        record_cache_lookup(lookup.status.value)
        log_with_context(
            logger,
            logging.DEBUG,
            "Device cache lookup",
            tenant=tenant,
            device_id=device_id,
            cache_result=lookup.status.value,
        )
        return lookup

    def put(
        self,
        tenant: str,
        device_id: str,
        descriptor: Dict[str, Any],
        ttl: Optional[float] = None,
    ) -> None:
        self._store(tenant, device_id, descriptor, ttl or self.ttl)

    def put_invalid(self, tenant: str, device_id: str, ttl: Optional[float] = None) -> None:
        """Record that the device is known to be absent upstream."""
        self._store(tenant, device_id, INVALID, ttl or self.invalid_ttl)

    def _store(self, tenant: str, device_id: str, value: Any, ttl: float) -> None:
        now = self._clock()
        with self._lock:
            self._entries[(tenant, device_id)] = _Entry(value=value, ttl=ttl, expires_at=now + ttl)
            size = len(self._entries)
        update_cache_entries(size)

    def delete(self, tenant: str, device_id: str) -> bool:
        """Drop the entry; returns whether one was present."""
        with self._lock:
            removed = self._entries.pop((tenant, device_id), None) is not None
            size = len(self._entries)
        update_cache_entries(size)
        return removed

    def prune(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        # Anything written after this read expires later than now
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            size = len(self._entries)
        update_cache_entries(size)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        update_cache_entries(0)

    async def run_pruner(self, interval: Optional[float] = None) -> None:
        """Sweep expired entries forever; cancel the task to stop it."""
        interval = interval or self.prune_interval
        log_with_context(logger, logging.DEBUG, "Device cache pruner started", delay_seconds=interval)
        while True:
            await asyncio.sleep(interval)
            removed = self.prune()
            if removed:
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Pruned device cache",
                    removed=removed,
                    entries=len(self),
                )
