"""Remote walker for discovering markdown notes in the vault."""

import logging
import posixpath
from typing import Protocol

from vault_mcp.errors import ErrorKind, VaultError

logger = logging.getLogger(__name__)


class DirectoryLister(Protocol):
    async def list_directory(self, dir_path: str) -> list[str]: ...


async def walk_vault(
    lister: DirectoryLister,
    root: str = "",
    extensions: tuple[str, ...] = (".md",),
) -> list[str]:
    """
    Recursively list the vault and return the paths of all notes.

    Listing entries may be bare names or already qualified with the directory
    they were listed from; both are turned into vault-relative paths.

    A directory that disappears while walking (NOT_FOUND) is skipped. Any
    other failure propagates so a refresh never mistakes an unreachable
    backend for an empty vault.

    Returns:
        Sorted list of VaultPaths.
    """
    found: list[str] = []
    visited: set[str] = set()
    pending = [root.strip("/")]

    while pending:
        directory = pending.pop()
        if directory in visited:
            logger.warning("Directory already visited during walk: %s. Skipping.", directory)
            continue
        visited.add(directory)

        try:
            entries = await lister.list_directory(directory)
        except VaultError as e:
            if e.kind is ErrorKind.NOT_FOUND and directory:
                logger.debug("Directory vanished during walk, skipping: %s", directory)
                continue
            raise

        for entry in entries:
            is_dir = entry.endswith("/")
            name = posixpath.basename(entry.rstrip("/"))
            if not name or name.startswith("."):
                continue  # Skip hidden files and directories (.obsidian, .trash)
            full_path = posixpath.join(directory, name) if directory else name

            if is_dir:
                pending.append(full_path)
            elif name.lower().endswith(extensions):
                found.append(full_path)

    return sorted(found)
