"""Memo table of bridge classes keyed by (user type, host type) identity."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class PairKey:
    """Identity key for a fusion pair.

    Keys use ``id()`` rather than names so two distinct classes sharing a
    name never collide. The cached bridge keeps both classes alive, which
    keeps the ids valid for as long as the entry exists.
    """

    user_id: int
    host_id: int
    partial: bool = False

    @classmethod
    def of(cls, user_type: type, host_type: type, partial: bool = False) -> "PairKey":
        return cls(id(user_type), id(host_type), partial)


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of a cache.

    ``creations`` counts distinct bridge classes. ``entries`` can be larger:
    a pair whose full bridge could not be composed maps to the same partial
    bridge as its partial key.
    """

    entries: int
    creations: int
    hits: int


class BridgeCache:
    """Unbounded, engine-scoped table of bridge classes; entries are never evicted."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: Dict[PairKey, type] = {}
        self._creations = 0
        self._hits = 0

    def get(self, key: PairKey) -> Optional[type]:
        with self._lock:
            return self._entries.get(key)

    def get_or_create(self, key: PairKey, factory: Callable[[], type]) -> Tuple[type, bool]:
        """Return ``(bridge, created)``; ``factory`` runs at most once per key."""

        with self._lock:
            bridge = self._entries.get(key)
            if bridge is not None:
                self._hits += 1
                return bridge, False
            bridge = factory()
            if not any(existing is bridge for existing in self._entries.values()):
                self._creations += 1
            self._entries[key] = bridge
            return bridge, True

    @property
    def creations(self) -> int:
        with self._lock:
            return self._creations

    @property
    def hits(self) -> int:
        with self._lock:
            return self._hits

    def bridges(self) -> List[type]:
        with self._lock:
            return list(self._entries.values())

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                creations=self._creations,
                hits=self._hits,
            )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["BridgeCache", "CacheStats", "PairKey"]
