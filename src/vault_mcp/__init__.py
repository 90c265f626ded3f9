"""
vaultMCP - MCP server for an Obsidian vault reached over the Local REST API.

Exposes the notes of a remote vault as MCP tools, accessible by any AI agent.

Stack:
- Python + FastMCP (official SDK)
- httpx (async client for the Obsidian Local REST API)
- In-memory vault index (fallback when live search is unavailable)
- Markdown in the vault stays the source of truth
"""

__version__ = "0.1.0"
__author__ = "macward"
