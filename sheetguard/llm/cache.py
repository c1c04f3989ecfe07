"""LLM layer — Expiring LRU cache for slow-changing provider metadata.

The OpenRouter model catalogue is the main tenant: fetching it costs a round
trip, and it changes on the scale of days.  Callers create the cache and
inject it, so several clients can share one catalogue and tests can drive
the clock.
"""

from __future__ import annotations

import math
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, NamedTuple, TypeVar

V = TypeVar("V")


class _Slot(NamedTuple):
    value: Any
    expires_at: float


class TTLCache(Generic[V]):
    """At most ``max_entries`` values, each dropped ``ttl_seconds`` after its last ``put``.

    ``ttl_seconds=0`` keeps entries until they are evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 32,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._slots: OrderedDict[str, _Slot] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @property
    def size(self) -> int:
        return len(self._slots)

    def get(self, key: str) -> V | None:
        slot = self._slots.get(key)
        if slot is not None and self._clock() > slot.expires_at:
            del self._slots[key]
            slot = None
        if slot is None:
            self.misses += 1
            return None
        self._slots.move_to_end(key)
        self.hits += 1
        return slot.value  # type: ignore[no-any-return]

    def put(self, key: str, value: V) -> None:
        expires_at = self._clock() + self._ttl if self._ttl > 0 else math.inf
        self._slots[key] = _Slot(value, expires_at)
        self._slots.move_to_end(key)
        while len(self._slots) > self._max_entries:
            self._slots.popitem(last=False)

    def clear(self) -> None:
        """Drop every entry; the hit and miss counters survive."""
        self._slots.clear()

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": self.size,
            "max_entries": self._max_entries,
            "ttl_seconds": self._ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
