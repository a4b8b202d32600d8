"""
Coordinator-side registry of logger names.

For each logger name the registry records where instances live: at most one
coordinator instance, and the ids of the workers that created one, in
registration order. The first registered peer is the one asked for shared
settings when a new same-named instance appears.

The registry is not thread-safe on its own; the coordinator mutates it under
its lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

if TYPE_CHECKING:
    from timberline.logger import BaseLogger


@dataclass
class SharedSettings:
    """What a new instance receives from the settings lookup."""
    max_name_length: int = 0
    defaults: dict[str, Any] | None = None
    options: dict[str, Any] | None = None
    levels: dict[str, dict[str, Any]] | None = None
    colors: dict[Any, str] | None = None

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any] | None, **kwargs: Any) -> "SharedSettings":
        snapshot = snapshot or {}
        return cls(
            options=snapshot.get("options"),
            levels=snapshot.get("levels"),
            colors=snapshot.get("colors"),
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_name_length": self.max_name_length,
            "defaults": self.defaults,
            "options": self.options,
            "levels": self.levels,
            "colors": self.colors,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SharedSettings":
        return cls(**data)


@dataclass
class RegistryEntry:
    coordinator: "BaseLogger | None" = None
    # Insertion-ordered set of worker ids.
    workers: dict[int, None] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return self.coordinator is None and not self.workers

    def worker_ids(self) -> list[int]:
        return list(self.workers)


class Registry:
    """Logger name → RegistryEntry, plus the longest name seen so far."""

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}
        self.max_name_length = 0

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[tuple[str, RegistryEntry]]:
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> RegistryEntry | None:
        return self._entries.get(name)

    def ensure(self, name: str) -> RegistryEntry:
        return self._entries.setdefault(name, RegistryEntry())

    def names(self) -> list[str]:
        return list(self._entries)

    # ── Mutation ──────────────────────────────────────────────────

    def register_worker(self, name: str, worker_id: int) -> None:
        self.ensure(name).workers.setdefault(worker_id, None)

    def set_coordinator(self, name: str, logger: "BaseLogger") -> None:
        """Record the coordinator instance. The first one wins."""
        entry = self.ensure(name)
        if entry.coordinator is None:
            entry.coordinator = logger

    def remove_worker(self, worker_id: int) -> list[str]:
        """Drop ``worker_id`` everywhere. Returns the names that lost it."""
        affected = []
        for name, entry in self:
            if worker_id in entry.workers:
                del entry.workers[worker_id]
                affected.append(name)
            if entry.empty:
                del self._entries[name]
        return affected

    def purge(self, name: str, is_alive: Callable[[int], bool]) -> RegistryEntry | None:
        """Drop dead worker ids from one entry; delete it if nothing is left."""
        entry = self._entries.get(name)
        if entry is None:
            return None
        for worker_id in [w for w in entry.workers if not is_alive(w)]:
            del entry.workers[worker_id]
        if entry.empty:
            del self._entries[name]
            return None
        return entry

    def update_max(self, name: str) -> bool:
        """Grow the max name length if ``name`` is longer. True when it grew."""
        if len(name) > self.max_name_length:
            self.max_name_length = len(name)
            return True
        return False
