"""Configuration module for vaultMCP.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass

TRANSPORTS = ("stdio", "sse", "http")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_int(name: str, default: str, minimum: int) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
        if value < minimum:
            raise ValueError(f"must be >= {minimum}, got {value}")
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{raw}': {e}") from e
    return value


@dataclass
class Config:
    """Application configuration."""

    obsidian_api_key: str
    obsidian_base_url: str
    verify_ssl: bool
    request_timeout: float
    search_timeout: float
    cache_enabled: bool
    cache_refresh_interval: int  # seconds
    cache_max_age: int  # seconds
    cache_refresh_concurrency: int
    port: int
    transport: str
    auth_token: str | None
    read_only: bool

    @classmethod
    def from_env(cls, read_only_override: bool | None = None) -> "Config":
        """Load configuration from environment variables.

        Args:
            read_only_override: If provided, overrides the VAULT_MCP_READ_ONLY env var.
        """
        api_key = os.getenv("OBSIDIAN_API_KEY", "").strip()
        if not api_key:
            raise ValueError("OBSIDIAN_API_KEY must be set to the Local REST API key")

        base_url = os.getenv("OBSIDIAN_BASE_URL", "http://127.0.0.1:27123").rstrip("/")
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid OBSIDIAN_BASE_URL value '{base_url}': must start with http:// or https://"
            )

        timeout_str = os.getenv("OBSIDIAN_REQUEST_TIMEOUT", "30")
        try:
            request_timeout = float(timeout_str)
            if request_timeout <= 0:
                raise ValueError(f"Timeout must be positive, got {request_timeout}")
        except ValueError as e:
            raise ValueError(f"Invalid OBSIDIAN_REQUEST_TIMEOUT value '{timeout_str}': {e}") from e

        search_timeout_ms = _env_int("OBSIDIAN_API_SEARCH_TIMEOUT_MS", "30000", 1)

        refresh_minutes = _env_int("OBSIDIAN_CACHE_REFRESH_INTERVAL_MIN", "10", 1)
        refresh_interval = refresh_minutes * 60

        # Staleness threshold for on-demand refresh before a fallback search
        cache_max_age = _env_int(
            "OBSIDIAN_CACHE_MAX_AGE_SECONDS", str(refresh_interval), 0
        )
        concurrency = _env_int("OBSIDIAN_CACHE_REFRESH_CONCURRENCY", "8", 1)

        port_str = os.getenv("VAULT_MCP_PORT", "8080")
        try:
            port = int(port_str)
            if not 1 <= port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {port}")
        except ValueError as e:
            raise ValueError(f"Invalid VAULT_MCP_PORT value '{port_str}': {e}") from e

        transport = os.getenv("VAULT_MCP_TRANSPORT", "stdio").lower()
        if transport not in TRANSPORTS:
            raise ValueError(
                f"Invalid VAULT_MCP_TRANSPORT value '{transport}': "
                f"expected one of {', '.join(TRANSPORTS)}"
            )

        # Auth token - must be at least 32 bytes if set
        auth_token = os.getenv("VAULT_MCP_AUTH_TOKEN")
        if auth_token is not None and len(auth_token) < 32:
            raise ValueError(
                "VAULT_MCP_AUTH_TOKEN must be at least 32 characters for security"
            )

        # Read-only mode - CLI flag takes precedence over env var
        if read_only_override is not None:
            read_only = read_only_override
        else:
            read_only = _env_flag("VAULT_MCP_READ_ONLY", "")

        return cls(
            obsidian_api_key=api_key,
            obsidian_base_url=base_url,
            verify_ssl=_env_flag("OBSIDIAN_VERIFY_SSL", "false"),
            request_timeout=request_timeout,
            search_timeout=search_timeout_ms / 1000,
            cache_enabled=_env_flag("OBSIDIAN_ENABLE_CACHE", "true"),
            cache_refresh_interval=refresh_interval,
            cache_max_age=cache_max_age,
            cache_refresh_concurrency=concurrency,
            port=port,
            transport=transport,
            auth_token=auth_token,
            read_only=read_only,
        )

