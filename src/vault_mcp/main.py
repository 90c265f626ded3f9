"""Main entry point for vaultMCP MCP server."""

import argparse
import logging
import sys
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from vault_mcp.auth import get_auth_provider
from vault_mcp.client import ObsidianClient
from vault_mcp.config import Config
from vault_mcp.errors import VaultError
from vault_mcp.index import VaultIndex
from vault_mcp.paths import PathResolver
from vault_mcp.search import SearchOrchestrator, make_live_search
from vault_mcp.sync import RefreshScheduler
from vault_mcp.tools import register_tools
from vault_mcp.tools_write import register_tools_write

logger = logging.getLogger(__name__)


async def check_backend(client: ObsidianClient) -> bool:
    """Check that the REST API is reachable and accepts our API key.

    Failures are logged, not raised.
    """
    try:
        status = await client.check_status()
    except VaultError as e:
        logger.warning("Obsidian API status check failed: %s", e.message)
        return False

    if not status.get("authenticated"):
        logger.warning("Obsidian API status check failed: API key was not accepted")
        return False

    logger.info(
        "Obsidian API status check successful (%s)", status.get("service", "unknown service")
    )
    return True


def create_server(config: Config, client: ObsidianClient | None = None) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
        client: Backend client; built from config when omitted.
    """
    if client is None:
        logger.info("Connecting to Obsidian REST API at %s", config.obsidian_base_url)
        client = ObsidianClient.from_config(config)

    index: VaultIndex | None = None
    scheduler: RefreshScheduler | None = None
    if config.cache_enabled:
        index = VaultIndex(client, concurrency=config.cache_refresh_concurrency)
        scheduler = RefreshScheduler(index, config.cache_refresh_interval)
        logger.info("Vault index enabled")
    else:
        logger.info("Vault index disabled, search will not fall back to cache")

    resolver = PathResolver(client)
    orchestrator = SearchOrchestrator(
        make_live_search(client),
        index=index,
        max_snapshot_age=config.cache_max_age,
    )

    @asynccontextmanager
    async def lifespan(server: FastMCP):
        await check_backend(client)
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            await client.close()
            logger.info("Server shut down")

    mcp = FastMCP(
        name="vaultMCP",
        instructions=(
            "vaultMCP provides access to an Obsidian vault. Note paths are "
            "vault-relative and matched case-insensitively when the exact path "
            "does not exist. Use search_notes to find content; when Obsidian is "
            "unreachable results come from a cached index and are marked as such. "
            "Use manage_frontmatter, manage_tags and search_replace to edit a note "
            "in place instead of rewriting it with update_note."
        ),
        auth=get_auth_provider(config),
        lifespan=lifespan,
    )

    logger.info("Registering read tools...")
    register_tools(mcp, client, resolver, orchestrator, index)

    if config.read_only:
        logger.info("Read-only mode, skipping write tools")
    else:
        logger.info("Registering write tools...")
        register_tools_write(mcp, config, client, resolver, index)

    logger.info("Server configured successfully")
    return mcp


def main() -> None:
    """Main function - starts the MCP server."""
    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="vaultMCP - MCP server for Obsidian vaults")
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Run in read-only mode (disable write tools)",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable the vault index used as search fallback",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "http"],
        help="Override VAULT_MCP_TRANSPORT",
    )
    args = parser.parse_args()

    try:
        config = Config.from_env(read_only_override=args.read_only if args.read_only else None)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    if args.no_cache:
        config.cache_enabled = False
    if args.transport:
        config.transport = args.transport

    logger.info("=" * 50)
    logger.info("vaultMCP starting...")
    logger.info("  OBSIDIAN:  %s", config.obsidian_base_url)
    logger.info("  TRANSPORT: %s", config.transport)
    logger.info("  AUTH:      %s", "enabled" if config.auth_token else "disabled")
    logger.info("  READ_ONLY: %s", config.read_only)
    logger.info(
        "  CACHE:     %s",
        f"every {config.cache_refresh_interval}s" if config.cache_enabled else "disabled",
    )
    logger.info("=" * 50)

    try:
        mcp = create_server(config)
        if config.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            logger.info("Starting MCP server on port %s...", config.port)
            mcp.run(transport=config.transport, host="0.0.0.0", port=config.port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)


if __name__ == "__main__":
    main()
