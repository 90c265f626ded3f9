"""Data models for the vault index."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class NoteStat:
    """File stat as reported by the REST API (times in ms since epoch)."""

    mtime: float = 0.0
    ctime: float = 0.0
    size: int = 0


@dataclass(frozen=True)
class CacheEntry:
    """Last known state of a note, captured during an index refresh."""

    path: str  # VaultPath
    size: int
    mtime: float
    ctime: float
    generation: int
    content: str = ""
    tags: tuple[str, ...] = ()
    frontmatter: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexSnapshot:
    """A published, immutable view of the vault index."""

    generation: int
    entries: Mapping[str, CacheEntry]
    built_at: float | None = None  # monotonic clock

    @classmethod
    def empty(cls) -> "IndexSnapshot":
        return cls(generation=0, entries=MappingProxyType({}))

    @property
    def is_ready(self) -> bool:
        """True once a refresh has completed at least once."""
        return self.built_at is not None

    @property
    def file_count(self) -> int:
        return len(self.entries)

    def age(self, now: float) -> float | None:
        """Seconds since the snapshot was built, or None if never built."""
        if self.built_at is None:
            return None
        return max(0.0, now - self.built_at)
