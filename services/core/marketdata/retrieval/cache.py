"""In-memory TTL cache for quotes, historical references and forex rates."""

from __future__ import annotations

from typing import Any, Callable, Generic, TypeVar


T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Map of key -> (value, fetch timestamp).

    A stored value of None is a negative result: the key was fetched and no
    data was found. No eviction beyond overwrite.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[T | None, float]] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        return entry[0] if entry is not None else None

    def timestamp(self, key: str) -> float | None:
        entry = self._entries.get(key)
        return entry[1] if entry is not None else None

    def put(self, key: str, value: T | None, timestamp: float) -> None:
        self._entries[key] = (value, timestamp)

    def is_stale(self, key: str, ttl: float, now: float) -> bool:
        """True if the key is absent or older than ``ttl`` seconds."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return now - entry[1] > ttl

    def clear(self) -> None:
        self._entries.clear()

    def to_dict(self, encode: Callable[[T], Any]) -> dict[str, dict[str, Any]]:
        return {
            key: {"value": encode(value) if value is not None else None, "ts": ts}
            for key, (value, ts) in self._entries.items()
        }

    @classmethod
    def from_dict(cls, data: Any, decode: Callable[[Any], T]) -> TTLCache[T]:
        """Rebuild a cache from ``to_dict`` output, skipping malformed entries."""
        cache: TTLCache[T] = cls()
        if not isinstance(data, dict):
            return cache
        for key, entry in data.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("ts"), (int, float)):
                continue
            raw = entry.get("value")
            try:
                value = decode(raw) if raw is not None else None
            except (TypeError, ValueError, AttributeError):
                continue
            cache.put(str(key), value, float(entry["ts"]))
        return cache
