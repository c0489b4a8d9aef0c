"""Correlation store: which destination messages a relayed source message produced."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from crossrelay.core.constants import RelayDirection
from crossrelay.gateway.expiry import ExpiryTimer

if TYPE_CHECKING:
    from crossrelay.config import Config

DEFAULT_TTL_SECONDS = 24 * 3600


class CorrelationStore(Protocol):
    """Time-bounded map (bridge, direction, source id) -> destination ids.

    Value sets are append-only until the key expires or is removed by delete
    propagation. Lookups on missing or expired keys return empty results.
    """

    async def insert(self, bridge: str, direction: RelayDirection, source_id: str, destination_id: str) -> None:
        """Add `destination_id` under the key, creating it (and its expiry) if absent."""
        ...

    async def get(self, bridge: str, direction: RelayDirection, source_id: str) -> list[str]:
        """All destination ids recorded for the key, in insertion order; [] if absent."""
        ...

    async def get_reverse(self, bridge: str, direction: RelayDirection, destination_id: str) -> str | None:
        """Source id whose value set contains `destination_id`, or None."""
        ...

    async def remove(self, bridge: str, direction: RelayDirection, source_id: str) -> list[str]:
        """Drop the key. Returns the destination ids it held."""
        ...

    async def close(self) -> None:
        """Release resources (timers, connections)."""
        ...


@dataclass
class _Entry:
    ids: dict[str, None] = field(default_factory=dict)  # ordered set
    timer: ExpiryTimer | None = None


class MemoryCorrelationStore:
    """Process-local backend; state is lost on restart."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._map: dict[str, dict[tuple[RelayDirection, str], _Entry]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    async def insert(self, bridge: str, direction: RelayDirection, source_id: str, destination_id: str) -> None:
        keyed = self._map.setdefault(bridge, {})
        key = (direction, str(source_id))
        entry = keyed.get(key)
        if entry is None:
            entry = _Entry()
            keyed[key] = entry
            # Armed once per key; later inserts only extend the value set
            entry.timer = ExpiryTimer(self._ttl, lambda: self._expire(bridge, key, entry))
        entry.ids[str(destination_id)] = None

    def _expire(self, bridge: str, key: tuple[RelayDirection, str], entry: _Entry) -> None:
        keyed = self._map.get(bridge)
        if keyed is None or keyed.get(key) is not entry:
            return
        del keyed[key]
        if not keyed:
            del self._map[bridge]
        logger.debug("Correlation expired: [{}] {} {}", bridge, key[0], key[1])

    async def get(self, bridge: str, direction: RelayDirection, source_id: str) -> list[str]:
        entry = self._map.get(bridge, {}).get((direction, str(source_id)))
        return list(entry.ids) if entry else []

    async def get_reverse(self, bridge: str, direction: RelayDirection, destination_id: str) -> str | None:
        destination_id = str(destination_id)
        for (key_direction, source_id), entry in self._map.get(bridge, {}).items():
            if key_direction == direction and destination_id in entry.ids:
                return source_id
        return None

    async def remove(self, bridge: str, direction: RelayDirection, source_id: str) -> list[str]:
        keyed = self._map.get(bridge)
        if not keyed:
            return []
        entry = keyed.pop((direction, str(source_id)), None)
        if entry is None:
            return []
        if entry.timer is not None:
            entry.timer.cancel()
        if not keyed:
            del self._map[bridge]
        return list(entry.ids)

    async def close(self) -> None:
        for keyed in self._map.values():
            for entry in keyed.values():
                if entry.timer is not None:
                    entry.timer.cancel()
        self._map.clear()

    def __len__(self) -> int:
        return sum(len(keyed) for keyed in self._map.values())


def create_correlation_store(config: Config) -> CorrelationStore:
    """Build the backend selected by configuration."""
    ttl = config.correlation_ttl_seconds
    backend = config.correlation_backend
    if backend == "sqlite":
        from crossrelay.storage.sqlite_store import SQLiteCorrelationStore

        logger.info("Correlation store: sqlite at {} (ttl {}h)", config.database_path, config.correlation_ttl_hours)
        return SQLiteCorrelationStore(config.database_path, ttl_seconds=ttl)
    logger.info("Correlation store: memory (ttl {}h)", config.correlation_ttl_hours)
    return MemoryCorrelationStore(ttl_seconds=ttl)
