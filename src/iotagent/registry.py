"""Set of running inbound sessions, used to start each one at most once."""

import threading
from typing import FrozenSet

TENANCY_KEY = "tenancy"


def device_key(tenant: str) -> str:
    """Registry key of a tenant's device lifecycle session."""
    return f"{tenant}.device"


class ConsumerRegistry:
    """Thread-safe registry of session keys.

    claim() is an atomic add-if-absent: exactly one caller wins a key until
    it is released.
    """

    def __init__(self):
        self._keys: set = set()
        self._lock = threading.Lock()

    def claim(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def keys(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._keys)
