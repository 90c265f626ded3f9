"""MCP read tools for vaultMCP server.

This module defines the read tools exposed by the MCP server:
- read_note: Read a note, tolerating case mismatches in the path
- list_notes: List the contents of a vault directory
- search_notes: Search the vault, falling back to the cached index
- cache_status: Report the state of the vault index
"""

import logging
import re
from datetime import datetime
from typing import Annotated, Literal

from fastmcp import FastMCP
from pydantic import Field

from vault_mcp.client import ObsidianClient
from vault_mcp.errors import ErrorKind, VaultError
from vault_mcp.index import VaultIndex
from vault_mcp.paths import PathResolver, ResolutionResult, normalize_vault_path
from vault_mcp.search import (
    Pagination,
    SearchOrchestrator,
    SearchOutcome,
    SearchQuery,
    parse_time_expression,
)

logger = logging.getLogger(__name__)

# Issues listed by cache_status; the count is always complete
MAX_REPORTED_ISSUES = 20


def format_timestamp(ms: float) -> str | None:
    """Format a REST API timestamp (ms since epoch) as local ISO 8601."""
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000).astimezone().isoformat(timespec="seconds")


def describe_resolution(resolution: ResolutionResult) -> str:
    if resolution.case_corrected:
        return (
            f"'{resolution.path}' (found via case-insensitive match for "
            f"'{resolution.requested}')"
        )
    return f"'{resolution.path}'"


def outcome_to_dict(outcome: SearchOutcome) -> dict:
    """Shape a search outcome for the tool response."""
    if outcome.source == "cache":
        strategy = (
            f"Live search unavailable; served from cached index generation "
            f"{outcome.generation} (may be stale). "
        )
    else:
        strategy = "Live search successful. "

    also_found = None
    if outcome.total_pages > 1:
        also_found = sorted({p.rsplit("/", 1)[-1] for p in outcome.remaining_paths})

    return {
        "success": True,
        "message": (
            f"{strategy}Found {outcome.total_matches} matches across "
            f"{outcome.total_files} files. Returning page {outcome.page} of "
            f"{outcome.total_pages}."
        ),
        "source": outcome.source,
        "generation": outcome.generation,
        "results": [
            {
                "path": hit.path,
                "filename": hit.filename,
                "matches": [
                    {"context": m.context, "position": m.start} for m in hit.matches
                ],
                "modified_time": format_timestamp(hit.mtime),
                "created_time": format_timestamp(hit.ctime),
            }
            for hit in outcome.results
        ],
        "total_files_found": outcome.total_files,
        "total_matches_found": outcome.total_matches,
        "current_page": outcome.page,
        "page_size": outcome.limit,
        "total_pages": outcome.total_pages,
        "also_found_in_files": also_found,
    }


def register_tools(
    mcp: FastMCP,
    client: ObsidianClient,
    resolver: PathResolver,
    orchestrator: SearchOrchestrator,
    index: VaultIndex | None = None,
) -> None:
    """Register all read tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        client: Backend client for the Local REST API
        resolver: Path resolver used before reading a note
        orchestrator: Search orchestrator (live search + optional cache fallback)
        index: Vault index, if caching is enabled
    """

    @mcp.tool()
    async def read_note(
        file_path: Annotated[
            str,
            Field(
                min_length=1,
                description=(
                    "Vault-relative path of the note (e.g. 'Projects/Plan.md'). "
                    "Tries the exact path first, then a case-insensitive match."
                ),
            ),
        ],
        format: Annotated[
            Literal["markdown", "json"],
            Field(description="'markdown' for raw content, 'json' for content plus metadata"),
        ] = "markdown",
    ) -> dict:
        """Read the content of a note in the vault.

        Returns:
            Note with:
            - path: Canonical path of the note
            - requested: Path as requested (normalized)
            - case_corrected: Whether the path was corrected by case-insensitive matching
            - content: Note content
            - frontmatter, tags, stat: Only with format="json"
            - message: Human-readable summary
        """
        resolution = await resolver.resolve(file_path)
        note = await client.get_note(resolution.path, format=format)

        result = {
            "path": resolution.path,
            "requested": resolution.requested,
            "case_corrected": resolution.case_corrected,
            "message": f"Read note {describe_resolution(resolution)}.",
        }
        if format == "json" and isinstance(note, dict):
            stat = note.get("stat") or {}
            result.update(
                content=note.get("content", ""),
                frontmatter=note.get("frontmatter") or {},
                tags=note.get("tags") or [],
                stat={
                    "size": stat.get("size"),
                    "modified_time": format_timestamp(stat.get("mtime") or 0),
                    "created_time": format_timestamp(stat.get("ctime") or 0),
                },
            )
        else:
            result["content"] = note
        return result

    @mcp.tool()
    async def list_notes(
        dir_path: Annotated[
            str, Field(description="Vault-relative directory; '' or '/' for the vault root")
        ] = "",
        file_extension_filter: Annotated[
            list[str] | None,
            Field(description="Only list files with these extensions (e.g. ['.md'])"),
        ] = None,
        name_regex_filter: Annotated[
            str | None, Field(description="Only list entries whose name matches this regex")
        ] = None,
    ) -> dict:
        """List the files and subdirectories of a vault directory.

        Returns:
            Listing with:
            - directory: The directory listed ("" for the root)
            - directories: Subdirectory names (with trailing '/')
            - files: File names
            - total: Number of entries returned
        """
        directory = normalize_vault_path(dir_path, allow_root=True)

        name_pattern = None
        if name_regex_filter:
            try:
                name_pattern = re.compile(name_regex_filter)
            except re.error as e:
                raise VaultError(
                    ErrorKind.VALIDATION, f"Invalid name regex: {name_regex_filter} ({e})"
                ) from e

        extensions = tuple(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in file_extension_filter or []
        )

        directories: list[str] = []
        files: list[str] = []
        for entry in await client.list_directory(directory):
            is_dir = entry.endswith("/")
            name = entry.rstrip("/").rsplit("/", 1)[-1]
            if name_pattern and not name_pattern.search(name):
                continue
            if is_dir:
                directories.append(f"{name}/")
            elif not extensions or name.lower().endswith(extensions):
                files.append(name)

        return {
            "directory": directory,
            "directories": sorted(directories),
            "files": sorted(files),
            "total": len(directories) + len(files),
        }

    @mcp.tool()
    async def search_notes(
        query: Annotated[str, Field(min_length=1, description="Text or regex pattern to search for")],
        search_in_path: Annotated[
            str | None,
            Field(description="Only search notes under this vault-relative directory"),
        ] = None,
        context_length: Annotated[
            int, Field(gt=0, description="Characters of context around each match")
        ] = 100,
        modified_since: Annotated[
            str | None,
            Field(description="Only notes modified since (e.g. '2 weeks ago', '2024-01-15')"),
        ] = None,
        modified_until: Annotated[
            str | None,
            Field(description="Only notes modified until (e.g. 'today', '2024-03-20T17:00')"),
        ] = None,
        use_regex: Annotated[bool, Field(description="Treat query as a regular expression")] = False,
        case_sensitive: Annotated[bool, Field(description="Case-sensitive matching")] = False,
        page_size: Annotated[int, Field(gt=0, le=500, description="Files per page")] = 50,
        page: Annotated[int, Field(ge=1, description="1-based page number")] = 1,
        max_matches_per_file: Annotated[
            int, Field(gt=0, description="Maximum matches shown per file")
        ] = 5,
    ) -> dict:
        """Search note contents across the vault.

        Uses the live Obsidian search. If Obsidian is unreachable and the
        vault index is enabled, the same query runs against the cached index
        and the response reports source="cache" with the index generation.

        Results are sorted by path and paginated.
        """
        search_query = SearchQuery(
            text=query,
            use_regex=use_regex,
            case_sensitive=case_sensitive,
            context_length=context_length,
            max_matches_per_file=max_matches_per_file,
            path_prefix=normalize_vault_path(search_in_path or "", allow_root=True),
            modified_since=parse_time_expression(modified_since) if modified_since else None,
            modified_until=parse_time_expression(modified_until) if modified_until else None,
        )
        outcome = await orchestrator.search(
            search_query, Pagination.from_page(page, page_size)
        )
        return outcome_to_dict(outcome)

    @mcp.tool()
    def cache_status() -> dict:
        """Report the state of the vault index used as the search fallback.

        Returns:
            Status with:
            - enabled: Whether the index is configured
            - ready: Whether a snapshot has been built
            - generation: Current snapshot generation
            - file_count: Notes in the snapshot
            - age_seconds: Seconds since the snapshot was built
            - refreshing: Whether a refresh is in progress
            - last_error: Error of the last failed refresh, if any
            - issue_count / issues: Per-file problems seen during the last refresh
        """
        if index is None:
            return {"enabled": False, "ready": False, "generation": None}

        snapshot = index.current_snapshot()
        age = index.snapshot_age()
        issues = sorted(index.issues.items())
        return {
            "enabled": True,
            "ready": snapshot.is_ready,
            "generation": snapshot.generation,
            "file_count": snapshot.file_count,
            "age_seconds": round(age, 1) if age is not None else None,
            "refreshing": index.is_refreshing,
            "last_error": index.last_error,
            "issue_count": len(issues),
            "issues": {path: details for path, details in issues[:MAX_REPORTED_ISSUES]},
        }
