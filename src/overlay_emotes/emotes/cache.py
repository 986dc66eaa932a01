"""Time-bounded emote catalog cache (memory LRU + TTL)."""

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .models import GLOBAL_SCOPE, CacheKey, EmoteData, EmoteScope

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24
DEFAULT_MAX_ENTRIES = 10000
SWEEP_INTERVAL_S = 300.0  # Opportunistic sweep at most every 5 minutes
EXPORT_VERSION = 1


@dataclass
class CacheEntry:
    """A stored emote plus its freshness bookkeeping."""

    data: EmoteData
    inserted_at: float
    ttl: float  # seconds

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


@dataclass
class CacheStats:
    """Point-in-time cache statistics."""

    size: int
    max_size: int
    hits: int
    misses: int
    ttl_seconds: float

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class EmoteCache:
    """Shared emote catalog cache.

    - Keys are ``CacheKey(provider, scope, emote_id)``; re-inserting a key
      overwrites it and refreshes its insertion time.
    - Entries past their TTL are misses even while still stored (lazy
      expiry); ``sweep()`` drops them physically.
    - Over capacity, least-recently-used entries are evicted first.

    All access goes through one internal lock, so provider fetch tasks and
    parser calls may use it from any thread.
    """

    def __init__(
        self,
        ttl_hours: float = DEFAULT_TTL_HOURS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = float(ttl_hours) * 3600
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        # (provider, scope, code) -> key, for per-token lookups from the parser
        self._codes: dict[tuple[str, EmoteScope, str], CacheKey] = {}
        self._hits = 0
        self._misses = 0
        self._last_sweep = clock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> EmoteData | None:
        """Return the cached emote, or None if absent or expired."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            return self._lookup(key, now)

    def find_code(
        self, provider: str, code: str, channel_id: str | None = None
    ) -> EmoteData | None:
        """Look up an emote by text code for a provider.

        The channel's own catalog wins over the provider's global catalog.
        """
        scopes = [GLOBAL_SCOPE]
        if channel_id:
            scopes.insert(0, EmoteScope.channel(channel_id))
        with self._lock:
            now = self._clock()
            for scope in scopes:
                key = self._codes.get((provider, scope, code))
                if key is None:
                    continue
                data = self._lookup(key, now)
                if data is not None:
                    return data
            return None

    def put(self, key: CacheKey, data: EmoteData, ttl: float | None = None) -> None:
        """Insert or overwrite one entry. ``ttl`` is in seconds."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            self._store(key, data, now, self._ttl if ttl is None else ttl)
            self._enforce_capacity(now, protected={key})

    def put_many(self, emotes: Iterable[EmoteData], ttl: float | None = None) -> int:
        """Merge a whole provider result in one critical section.

        Readers see either none or all of the batch. Returns count stored.
        """
        batch = [(CacheKey(e.provider, e.scope, e.id), e) for e in emotes]
        with self._lock:
            now = self._clock()
            entry_ttl = self._ttl if ttl is None else ttl
            for key, data in batch:
                self._store(key, data, now, entry_ttl)
            self._enforce_capacity(now, protected={key for key, _ in batch})
        return len(batch)

    def invalidate(self, predicate: Callable[[CacheKey], bool]) -> int:
        """Remove every entry whose key matches. Returns count removed."""
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                self._remove(key)
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cached emotes")
        return len(doomed)

    def invalidate_channel(self, channel_id: str) -> int:
        """Drop every provider's catalog for one channel (e.g. on leave)."""
        return self.invalidate(lambda key: key.scope.channel_id == channel_id)

    def sweep(self) -> int:
        """Physically remove expired entries. Returns count removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._codes.clear()
            self._hits = 0
            self._misses = 0
            self._last_sweep = self._clock()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self._max_entries,
                hits=self._hits,
                misses=self._misses,
                ttl_seconds=self._ttl,
            )

    def get_by_provider(self, provider: str) -> list[EmoteData]:
        """Fresh entries from one provider, all scopes, oldest first."""
        with self._lock:
            return [data for data in self._fresh(self._clock()) if data.provider == provider]

    def search_by_name(self, query: str) -> list[EmoteData]:
        """Fresh entries whose code contains query, ignoring case."""
        needle = query.lower()
        with self._lock:
            return [data for data in self._fresh(self._clock()) if needle in data.code.lower()]

    def export(self) -> str:
        """Serialize the fresh entries to JSON for a later ``import_json``."""
        with self._lock:
            emotes = [data.to_dict() for data in self._fresh(self._clock())]
        return json.dumps({"version": EXPORT_VERSION, "emotes": emotes}, indent=2)

    def import_json(self, payload: str, ttl: float | None = None) -> int:
        """Load entries written by ``export`` as freshly inserted.

        The whole payload is validated before anything is stored.

        Raises:
            ValueError: payload is not an export document.
        """
        data = json.loads(payload)
        if not isinstance(data, dict) or not isinstance(data.get("emotes"), list):
            raise ValueError("not an emote cache export")
        try:
            emotes = [EmoteData.from_dict(item) for item in data["emotes"]]
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"malformed emote cache export: {e!r}") from e
        count = self.put_many(emotes, ttl=ttl)
        logger.info(f"Imported {count} emotes into cache")
        return count

    # -- internals, lock held --

    def _fresh(self, now: float) -> list[EmoteData]:
        return [entry.data for entry in self._entries.values() if not entry.is_expired(now)]

    def _lookup(self, key: CacheKey, now: float) -> EmoteData | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(now):
            self._remove(key)
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.data

    def _store(self, key: CacheKey, data: EmoteData, now: float, ttl: float) -> None:
        old = self._entries.get(key)
        if old is not None and old.data.code != data.code:
            self._drop_code(key, old.data.code)
        self._entries[key] = CacheEntry(data=data, inserted_at=now, ttl=ttl)
        self._entries.move_to_end(key)
        self._codes[(key.provider, key.scope, data.code)] = key

    def _remove(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._drop_code(key, entry.data.code)

    def _drop_code(self, key: CacheKey, code: str) -> None:
        code_key = (key.provider, key.scope, code)
        if self._codes.get(code_key) == key:
            del self._codes[code_key]

    def _enforce_capacity(self, now: float, protected: set[CacheKey]) -> None:
        if len(self._entries) <= self._max_entries:
            return
        self._sweep_locked(now)
        evicted = 0
        while len(self._entries) > self._max_entries:
            victim = next((key for key in self._entries if key not in protected), None)
            if victim is None:
                # Batch alone exceeds capacity: drop its oldest members
                victim = next(iter(self._entries))
            self._remove(victim)
            evicted += 1
        if evicted:
            logger.debug(f"Evicted {evicted} LRU emotes (max {self._max_entries})")

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= SWEEP_INTERVAL_S:
            self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        self._last_sweep = now
        return len(expired)
