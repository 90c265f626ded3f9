"""
Index module for vaultMCP.

Keeps an in-memory, generation-numbered snapshot of the vault's notes so that
search can fall back to it when the Obsidian REST API is unavailable.
"""

from vault_mcp.index.models import CacheEntry, IndexSnapshot, NoteStat
from vault_mcp.index.parser import parse_frontmatter
from vault_mcp.index.vault_index import VaultIndex
from vault_mcp.index.walker import walk_vault

__all__ = [
    "CacheEntry",
    "IndexSnapshot",
    "NoteStat",
    "VaultIndex",
    "parse_frontmatter",
    "walk_vault",
]
