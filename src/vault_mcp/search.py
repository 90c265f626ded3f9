"""Vault search with graceful degradation to the cached index.

The live REST API is authoritative. When it is unreachable the same query is
answered from the last published index snapshot, and the outcome says so
(``source="cache"`` plus the snapshot generation) so callers can judge
staleness.
"""

import asyncio
import logging
import posixpath
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from vault_mcp.errors import ErrorKind, VaultError, classify
from vault_mcp.index import IndexSnapshot, VaultIndex

if TYPE_CHECKING:
    from vault_mcp.client import ObsidianClient

logger = logging.getLogger(__name__)

# Parallel stat/content fetches during a live search
LIVE_FETCH_CONCURRENCY = 8

RELATIVE_TIME_PATTERN = re.compile(
    r"^(\d+)\s*(minute|min|hour|day|week|month|year)s?\s+ago$", re.IGNORECASE
)
RELATIVE_UNITS = {
    "minute": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


@dataclass(frozen=True)
class MatchContext:
    """A snippet of note content around one match."""

    context: str
    start: int | None = None


@dataclass(frozen=True)
class SearchHit:
    """A note matching a query."""

    path: str
    matches: tuple[MatchContext, ...]
    mtime: float = 0.0
    ctime: float = 0.0

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path)


@dataclass(frozen=True)
class SearchQuery:
    """A text or pattern query with its filters."""

    text: str
    use_regex: bool = False
    case_sensitive: bool = False
    context_length: int = 100
    max_matches_per_file: int = 5
    path_prefix: str = ""
    modified_since: datetime | None = None
    modified_until: datetime | None = None

    def compile(self) -> re.Pattern:
        """Compile the query into the pattern used to extract matches.

        Raises:
            VaultError: VALIDATION for an invalid regular expression
        """
        flags = 0 if self.case_sensitive else re.IGNORECASE
        source = self.text if self.use_regex else re.escape(self.text)
        try:
            return re.compile(source, flags)
        except re.error as e:
            raise VaultError(
                ErrorKind.VALIDATION,
                f"Invalid regex pattern: {self.text} ({e})",
                operation="search",
            ) from e

    def accepts_path(self, path: str) -> bool:
        prefix = self.path_prefix.strip("/")
        return not prefix or path.startswith(prefix + "/")

    def accepts_mtime(self, mtime: float) -> bool:
        """Check a modification time (ms since epoch) against the window."""
        if self.modified_since and mtime < self.modified_since.timestamp() * 1000:
            return False
        if self.modified_until and mtime > self.modified_until.timestamp() * 1000:
            return False
        return True


@dataclass(frozen=True)
class Pagination:
    """Offset/limit over the sorted list of matching notes."""

    offset: int = 0
    limit: int = 50

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f"Pagination offset must be >= 0, got {self.offset}")
        if self.limit <= 0:
            raise ValueError(f"Pagination limit must be positive, got {self.limit}")

    @classmethod
    def from_page(cls, page: int, page_size: int) -> "Pagination":
        """Build from a 1-based page number."""
        if page < 1:
            raise ValueError(f"Page must be >= 1, got {page}")
        return cls(offset=(page - 1) * page_size, limit=page_size)


@dataclass(frozen=True)
class SearchOutcome:
    """One page of search results and where they came from."""

    results: tuple[SearchHit, ...]
    source: str  # "live" | "cache"
    generation: int | None
    total_files: int
    total_matches: int
    offset: int
    limit: int
    remaining_paths: tuple[str, ...] = ()

    @property
    def total_pages(self) -> int:
        return -(-self.total_files // self.limit)

    @property
    def page(self) -> int:
        return self.offset // self.limit + 1


LiveSearchFn = Callable[[SearchQuery], Awaitable[list[SearchHit]]]
CacheSearchFn = Callable[[SearchQuery, IndexSnapshot], list[SearchHit]]


def parse_time_expression(text: str, now: datetime | None = None) -> datetime:
    """
    Parse a modification-window bound.

    Accepts ISO dates/datetimes, "now", "today", "yesterday" and
    "<N> <unit>s ago" (minute, hour, day, week, month, year).

    Raises:
        VaultError: VALIDATION if the expression is not understood
    """
    now = now or datetime.now().astimezone()
    value = text.strip().lower()

    if value == "now":
        return now
    if value in ("today", "yesterday"):
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight if value == "today" else midnight - timedelta(days=1)

    match = RELATIVE_TIME_PATTERN.match(value)
    if match:
        amount, unit = int(match.group(1)), match.group(2).lower()
        return now - amount * RELATIVE_UNITS[unit]

    try:
        parsed = datetime.fromisoformat(text.strip())
    except ValueError as e:
        raise VaultError(
            ErrorKind.VALIDATION,
            f"Could not parse date/time expression: '{text}'",
            operation="search",
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def find_matches(content: str, pattern: re.Pattern, context_length: int) -> list[MatchContext]:
    """Find every match of ``pattern`` and cut a context snippet around it."""
    matches = []
    for match in pattern.finditer(content):
        if match.end() == match.start() and not match.group(0):
            continue  # Skip empty matches (e.g. "a*")
        start = max(0, match.start() - context_length)
        end = min(len(content), match.end() + context_length)
        matches.append(MatchContext(context=content[start:end], start=match.start()))
    return matches


def search_snapshot(query: SearchQuery, snapshot: IndexSnapshot) -> list[SearchHit]:
    """Run a query against an index snapshot."""
    pattern = query.compile()
    hits = []
    for path in sorted(snapshot.entries):
        entry = snapshot.entries[path]
        if not query.accepts_path(path) or not query.accepts_mtime(entry.mtime):
            continue
        matches = find_matches(entry.content, pattern, query.context_length)
        if matches:
            hits.append(
                SearchHit(
                    path=path,
                    matches=tuple(matches[: query.max_matches_per_file]),
                    mtime=entry.mtime,
                    ctime=entry.ctime,
                )
            )
    return hits


def make_live_search(client: "ObsidianClient") -> LiveSearchFn:
    """Build the live search function backed by the REST API.

    Plain text queries use the plugin's simple search. Regex queries select
    candidate notes under the path prefix with a JsonLogic query and match
    their content locally.
    """

    async def _with_limit(items, fn):
        semaphore = asyncio.Semaphore(LIVE_FETCH_CONCURRENCY)

        async def run(item):
            async with semaphore:
                return await fn(item)

        return await asyncio.gather(*(run(item) for item in items))

    async def _simple(query: SearchQuery) -> list[SearchHit]:
        raw = await client.search_simple(query.text, query.context_length)
        candidates = []
        for result in raw:
            path = str(result.get("filename") or "")
            if not path or not query.accepts_path(path):
                continue
            contexts = [
                MatchContext(
                    context=str(m.get("context", "")),
                    start=(m.get("match") or {}).get("start"),
                )
                for m in result.get("matches") or []
            ]
            if query.case_sensitive:
                contexts = [c for c in contexts if query.text in c.context]
            if contexts:
                candidates.append((path, contexts))

        async def with_stat(candidate):
            path, contexts = candidate
            stat = await client.get_metadata(path)
            if stat is None:
                return None  # Deleted since the search ran
            return SearchHit(
                path=path,
                matches=tuple(contexts[: query.max_matches_per_file]),
                mtime=stat.mtime,
                ctime=stat.ctime,
            )

        hits = await _with_limit(candidates, with_stat)
        return [h for h in hits if h is not None and query.accepts_mtime(h.mtime)]

    async def _regex(query: SearchQuery) -> list[SearchHit]:
        pattern = query.compile()
        prefix = query.path_prefix.strip("/")
        glob = f"{prefix}/**" if prefix else "**"
        raw = await client.search_jsonlogic({"glob": [glob, {"var": "path"}]})
        paths = sorted(
            {str(r.get("filename")) for r in raw if r.get("filename")}
        )

        async def fetch(path):
            if not query.accepts_path(path):
                return None
            try:
                note = await client.get_note(path, format="json")
            except VaultError as e:
                if e.kind is ErrorKind.NOT_FOUND:
                    return None
                raise
            stat = note.get("stat") or {}
            mtime = float(stat.get("mtime") or 0)
            if not query.accepts_mtime(mtime):
                return None
            matches = find_matches(str(note.get("content") or ""), pattern, query.context_length)
            if not matches:
                return None
            return SearchHit(
                path=path,
                matches=tuple(matches[: query.max_matches_per_file]),
                mtime=mtime,
                ctime=float(stat.get("ctime") or 0),
            )

        hits = await _with_limit(paths, fetch)
        return [h for h in hits if h is not None]

    async def live_search(query: SearchQuery) -> list[SearchHit]:
        if query.use_regex:
            return await _regex(query)
        return await _simple(query)

    return live_search


class SearchOrchestrator:
    """Runs searches live, falling back to the vault index when configured."""

    def __init__(
        self,
        live_search: LiveSearchFn,
        index: VaultIndex | None = None,
        cache_search: CacheSearchFn = search_snapshot,
        max_snapshot_age: float = 600.0,
    ):
        """
        Args:
            live_search: Authoritative search against the backend
            index: Vault index to fall back to; None disables the fallback
            cache_search: Search over a snapshot
            max_snapshot_age: Refresh the snapshot before a fallback search
                when it is older than this many seconds
        """
        self._live_search = live_search
        self._index = index
        self._cache_search = cache_search
        self._max_snapshot_age = max_snapshot_age

    async def search(self, query: SearchQuery, pagination: Pagination | None = None) -> SearchOutcome:
        """
        Search the vault.

        Raises:
            VaultError: VALIDATION for a bad query. Otherwise the live failure,
                unchanged, when there is no usable fallback.
        """
        pagination = pagination or Pagination()
        query.compile()  # Reject bad patterns before touching the backend

        try:
            hits = await self._live_search(query)
        except Exception as live_error:
            if self._index is None:
                raise
            classified = classify(live_error, "search")
            if classified.kind is not ErrorKind.SERVICE_UNAVAILABLE:
                raise
            logger.warning("Live search failed, falling back to vault index: %s", live_error)
            snapshot = await self._fallback_snapshot(live_error)
            try:
                hits = self._cache_search(query, snapshot)
            except Exception:
                logger.exception("Cache search failed")
                raise live_error
            return self._paginate(hits, "cache", snapshot.generation, pagination)

        return self._paginate(hits, "live", None, pagination)

    async def _fallback_snapshot(self, live_error: Exception) -> IndexSnapshot:
        snapshot = await self._index.ensure_fresh(self._max_snapshot_age)
        if not snapshot.is_ready:
            logger.error("Vault index not ready; cannot serve fallback search")
            raise live_error
        return snapshot

    @staticmethod
    def _paginate(
        hits: list[SearchHit], source: str, generation: int | None, pagination: Pagination
    ) -> SearchOutcome:
        ordered = sorted(hits, key=lambda h: h.path)
        page = ordered[pagination.offset : pagination.offset + pagination.limit]
        on_page = {h.path for h in page}
        return SearchOutcome(
            results=tuple(page),
            source=source,
            generation=generation,
            total_files=len(ordered),
            total_matches=sum(len(h.matches) for h in ordered),
            offset=pagination.offset,
            limit=pagination.limit,
            remaining_paths=tuple(h.path for h in ordered if h.path not in on_page),
        )
