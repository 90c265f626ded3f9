"""In-memory index of the vault, used as the search fallback.

The REST API is always the source of truth. The index is a derived snapshot
that can be rebuilt at any time and is only consulted when live search is
unavailable.

Concurrency:
    Snapshots are immutable and published by swapping a single reference, so
    readers never observe a half-built index and are never blocked. At most
    one refresh runs at a time; concurrent callers await the one in flight.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from types import MappingProxyType
from typing import TYPE_CHECKING

from vault_mcp.errors import VaultError
from vault_mcp.index.models import CacheEntry, IndexSnapshot, NoteStat
from vault_mcp.index.parser import normalize_tags, parse_frontmatter
from vault_mcp.index.walker import walk_vault

if TYPE_CHECKING:
    from vault_mcp.client import ObsidianClient

logger = logging.getLogger(__name__)


def _same_data(a: CacheEntry, b: CacheEntry) -> bool:
    """Compare two entries ignoring the generation they were captured in."""
    return replace(a, generation=0) == replace(b, generation=0)


class VaultIndex:
    """Generation-numbered snapshot of the vault's notes and their metadata."""

    def __init__(
        self,
        client: "ObsidianClient",
        concurrency: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the index.

        Args:
            client: Backend client (lists directories, fetches notes)
            concurrency: Maximum number of notes fetched in parallel per refresh
            clock: Monotonic clock, injectable for tests
        """
        if concurrency <= 0:
            raise ValueError(f"Refresh concurrency must be positive, got {concurrency}")

        self._client = client
        self._concurrency = concurrency
        self._clock = clock
        self._snapshot = IndexSnapshot.empty()
        self._inflight: asyncio.Task | None = None
        # Entries written by refresh_entry while a refresh is in flight
        self._overrides: dict[str, CacheEntry | None] = {}
        self.issues: dict[str, list[str]] = {}
        self.last_error: str | None = None

    def current_snapshot(self) -> IndexSnapshot:
        """Return the last published snapshot."""
        return self._snapshot

    @property
    def is_ready(self) -> bool:
        return self._snapshot.is_ready

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def refresh(self) -> int:
        """
        Rebuild the index from the backend.

        A failed refresh is logged and leaves the previous snapshot in place.

        Returns:
            The generation of the snapshot published (or kept) by this refresh.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._run_refresh())
        else:
            logger.debug("Index refresh already in progress, joining it")
        return await asyncio.shield(self._inflight)

    def snapshot_age(self) -> float | None:
        """Seconds since the current snapshot was built, None if never built."""
        return self._snapshot.age(self._clock())

    async def ensure_fresh(self, max_age: float) -> IndexSnapshot:
        """Refresh first if the snapshot is missing or older than ``max_age`` seconds."""
        age = self.snapshot_age()
        if age is None or age > max_age:
            logger.info(
                "Index snapshot is %s, refreshing before use",
                "missing" if age is None else f"{age:.0f}s old",
            )
            await self.refresh()
        return self._snapshot

    async def refresh_entry(self, path: str) -> None:
        """
        Re-capture a single note after a write, or drop it if it is gone.

        Failures are logged; the snapshot is left unchanged.
        """
        try:
            stat = await self._client.get_metadata(path)
        except VaultError as e:
            logger.warning("Could not refresh index entry for %s: %s", path, e)
            return

        entry: CacheEntry | None = None
        if stat is not None:
            issues: dict[str, list[str]] = {}
            entry = await self._fetch_note_json(path, issues)
            if entry is None:
                entry = await self._recover_from_markdown(path, stat, issues)
            if entry is None:
                logger.warning("Could not refresh index entry for %s: %s", path, issues.get(path))
                return

        if self.is_refreshing:
            self._overrides[path] = entry

        # No await between reading and publishing the snapshot
        current = self._snapshot
        if not current.is_ready:
            return
        entries = dict(current.entries)
        if entry is None:
            if entries.pop(path, None) is None:
                return
            logger.info("Removed deleted note from index: %s", path)
        else:
            entries[path] = replace(entry, generation=current.generation + 1)
            logger.info("Updated index entry: %s", path)
        self._publish(current.generation + 1, entries, current.built_at)

    def _publish(self, generation: int, entries: dict[str, CacheEntry], built_at: float | None) -> None:
        self._snapshot = IndexSnapshot(
            generation=generation,
            entries=MappingProxyType(entries),
            built_at=built_at,
        )

    async def _run_refresh(self) -> int:
        previous = self._snapshot
        started = self._clock()
        self._overrides = {}
        logger.info("Starting vault index refresh (generation %d)", previous.generation)

        issues: dict[str, list[str]] = {}
        try:
            captured = await self._build(previous, issues)
        except Exception as e:
            self.last_error = str(e)
            logger.exception(
                "Vault index refresh failed; keeping generation %d", previous.generation
            )
            return self._snapshot.generation

        self.last_error = None
        self.issues = issues

        # Writes that landed mid-refresh are newer than what the walk captured
        for path, entry in self._overrides.items():
            if entry is None:
                captured.pop(path, None)
            else:
                captured[path] = entry
        self._overrides = {}

        # No await between reading and publishing the snapshot
        current = self._snapshot
        now = self._clock()
        added = [p for p in captured if p not in current.entries]
        removed = [p for p in current.entries if p not in captured]
        updated = [
            p
            for p, entry in captured.items()
            if p in current.entries and not _same_data(entry, current.entries[p])
        ]

        if current.is_ready and not (added or removed or updated):
            # Nothing changed upstream: same generation, fresher timestamp
            self._publish(current.generation, dict(current.entries), now)
            logger.debug("Vault index refresh: no changes detected")
            return current.generation

        generation = current.generation + 1
        entries = {
            path: (
                current.entries[path]
                if path in current.entries and _same_data(entry, current.entries[path])
                else replace(entry, generation=generation)
            )
            for path, entry in captured.items()
        }
        self._publish(generation, entries, now)
        logger.info(
            "Vault index refresh completed in %.2fs. Added: %d, Updated: %d, "
            "Removed: %d. Total indexed: %d (generation %d).",
            now - started,
            len(added),
            len(updated),
            len(removed),
            len(entries),
            generation,
        )
        return generation

    async def _build(
        self, previous: IndexSnapshot, issues: dict[str, list[str]]
    ) -> dict[str, CacheEntry]:
        paths = await walk_vault(self._client)
        semaphore = asyncio.Semaphore(self._concurrency)
        captured: dict[str, CacheEntry] = {}

        async def process(path: str) -> None:
            async with semaphore:
                entry = await self._capture(path, previous.entries.get(path), issues)
            if entry is not None:
                captured[path] = entry

        await asyncio.gather(*(process(path) for path in paths))
        return captured

    async def _capture(
        self,
        path: str,
        cached: CacheEntry | None,
        issues: dict[str, list[str]],
    ) -> CacheEntry | None:
        """Capture one note, reusing the cached entry when its stat is unchanged."""
        stat: NoteStat | None = None
        try:
            stat = await self._client.get_metadata(path)
            if stat is None:
                logger.debug("Note vanished during refresh: %s", path)
                return None
        except VaultError as e:
            self._record_issue(issues, path, f"getFileMetadata: {e.message}")

        if (
            cached is not None
            and stat is not None
            and stat.mtime
            and cached.mtime >= stat.mtime
            and cached.size == stat.size
        ):
            return cached

        entry = await self._fetch_note_json(path, issues)
        if entry is None:
            entry = await self._recover_from_markdown(path, stat, issues)
        if entry is not None:
            return entry

        if cached is not None:
            self._record_issue(issues, path, "No recovery possible; kept existing entry")
            return cached
        self._record_issue(issues, path, "No recovery possible; not added")
        return None

    async def _fetch_note_json(
        self, path: str, issues: dict[str, list[str]]
    ) -> CacheEntry | None:
        try:
            note = await self._client.get_note(path, format="json")
        except VaultError as e:
            self._record_issue(issues, path, f"getFileContent(json): {e.message}")
            return None

        stat = note.get("stat") if isinstance(note, dict) else None
        content = note.get("content") if isinstance(note, dict) else None
        if not isinstance(content, str) or not isinstance(stat, dict):
            self._record_issue(issues, path, "Invalid NoteJson")
            return None

        frontmatter = note.get("frontmatter")
        return CacheEntry(
            path=path,
            size=int(stat.get("size") or len(content.encode("utf-8"))),
            mtime=float(stat.get("mtime") or 0),
            ctime=float(stat.get("ctime") or 0),
            generation=0,
            content=content,
            tags=tuple(normalize_tags(note.get("tags"))),
            frontmatter=MappingProxyType(dict(frontmatter) if isinstance(frontmatter, dict) else {}),
        )

    async def _recover_from_markdown(
        self, path: str, stat: NoteStat | None, issues: dict[str, list[str]]
    ) -> CacheEntry | None:
        try:
            content = await self._client.get_note(path, format="markdown")
        except VaultError as e:
            self._record_issue(issues, path, f"getFileContent(markdown): {e.message}")
            return None

        data, _ = parse_frontmatter(content, path)
        if data.error:
            self._record_issue(issues, path, data.error)

        logger.debug("Recovered %s from raw markdown", path)
        return CacheEntry(
            path=path,
            size=stat.size if stat and stat.size else len(content.encode("utf-8")),
            mtime=stat.mtime if stat else 0.0,
            ctime=stat.ctime if stat else 0.0,
            generation=0,
            content=content,
            tags=tuple(data.tags),
            frontmatter=MappingProxyType(data.raw),
        )

    @staticmethod
    def _record_issue(issues: dict[str, list[str]], path: str, detail: str) -> None:
        issues.setdefault(path, []).append(detail)
