"""Vault path normalization and case-insensitive path resolution.

Clients often send a note path whose case does not match the real file name
(``notes/report.md`` for ``notes/Report.md``). The resolver tries the path as
given first and only then falls back to listing the containing directory,
accepting a case-insensitive match only when it is unique.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

from vault_mcp.errors import ErrorKind, VaultError
from vault_mcp.index.models import NoteStat

logger = logging.getLogger(__name__)


class PathBackend(Protocol):
    """What the resolver needs from the backend."""

    async def get_metadata(self, path: str) -> NoteStat | None:
        """Return the stat for ``path``, or None when it does not exist."""
        ...

    async def list_directory(self, dir_path: str) -> list[str]:
        """List a directory; directory entries end with '/'."""
        ...


@dataclass(frozen=True)
class ResolutionResult:
    """Canonical path for a client-supplied path."""

    path: str
    requested: str

    @property
    def case_corrected(self) -> bool:
        return self.path != self.requested


def normalize_vault_path(path: str, allow_root: bool = False) -> str:
    """Normalize a client path into a VaultPath.

    Args:
        path: Path as supplied by the client
        allow_root: Accept the vault root (returned as "")

    Raises:
        VaultError: VALIDATION if the path is empty or escapes the vault
    """
    cleaned = (path or "").replace("\\", "/").strip().strip("/")
    if not cleaned:
        if allow_root:
            return ""
        raise VaultError(ErrorKind.VALIDATION, "Path must not be empty.")

    normalized = posixpath.normpath(cleaned)
    if normalized == ".":
        if allow_root:
            return ""
        raise VaultError(ErrorKind.VALIDATION, f"Path '{path}' does not name a file.")
    if normalized == ".." or normalized.startswith("../"):
        raise VaultError(ErrorKind.VALIDATION, f"Path '{path}' is outside the vault.")
    return normalized


def encode_vault_path(path: str) -> str:
    """Percent-encode each segment of a vault path for use in a URL."""
    return "/".join(quote(segment, safe="") for segment in path.strip("/").split("/") if segment)


def split_vault_path(path: str) -> tuple[str, str]:
    """Split a VaultPath into (directory, basename); root directory is ""."""
    directory, basename = posixpath.split(path)
    return directory, basename


def join_vault_path(directory: str, name: str) -> str:
    return posixpath.join(directory, name) if directory else name


class PathResolver:
    """Resolves client paths to the authoritative vault path."""

    def __init__(self, backend: PathBackend):
        self._backend = backend

    async def resolve(self, path: str) -> ResolutionResult:
        """Resolve ``path`` to the real, case-exact path of an existing file.

        Raises:
            VaultError: NOT_FOUND when neither the exact nor the
                case-insensitive lookup finds the file, CONFLICT when more
                than one file matches case-insensitively. Backend failures
                propagate unchanged.
        """
        requested = normalize_vault_path(path)

        if await self._backend.get_metadata(requested) is not None:
            return ResolutionResult(path=requested, requested=requested)

        logger.info(
            "Path '%s' not found, attempting case-insensitive fallback.", requested
        )
        directory, basename = split_vault_path(requested)
        target = basename.lower()

        try:
            entries = await self._backend.list_directory(directory)
        except VaultError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
            entries = []

        matches = sorted(
            {
                join_vault_path(directory, posixpath.basename(entry))
                for entry in entries
                if not entry.endswith("/")
                and posixpath.basename(entry).lower() == target
            }
        )

        if len(matches) == 1:
            logger.info("Found case-insensitive match: '%s'", matches[0])
            return ResolutionResult(path=matches[0], requested=requested)

        if len(matches) > 1:
            logger.info(
                "Ambiguous case-insensitive matches for '%s': %s", requested, matches
            )
            raise VaultError(
                ErrorKind.CONFLICT,
                f"Ambiguous case-insensitive matches for '{requested}'. "
                f"Found: [{', '.join(matches)}]",
                operation="resolve",
                details={"matches": matches},
            )

        logger.info("No case-insensitive match for '%s'", requested)
        raise VaultError(
            ErrorKind.NOT_FOUND,
            f"Path not found: '{requested}' "
            "(exact and case-insensitive lookups both failed).",
            operation="resolve",
        )
