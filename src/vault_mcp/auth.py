"""Authentication and write guard for vaultMCP.

Provides Bearer token validation for the MCP server using FastMCP's auth
system, and the read-only check used by the write tools.
"""

import hmac
import logging

from fastmcp.server.auth import AccessToken, TokenVerifier

from vault_mcp.config import Config

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when an operation is not permitted."""


def _scopes(config: Config) -> list[str]:
    return ["read"] if config.read_only else ["read", "write"]


class BearerTokenVerifier(TokenVerifier):
    """
    FastMCP TokenVerifier that validates bearer tokens against VAULT_MCP_AUTH_TOKEN.

    Granted scopes drop "write" when the server runs read-only.
    """

    def __init__(self, config: Config):
        super().__init__()
        self._config = config

    async def verify_token(self, token: str) -> AccessToken | None:
        """
        Verify a bearer token and return access info if valid.

        Args:
            token: The bearer token (without "Bearer " prefix)

        Returns:
            AccessToken if valid, None if invalid
        """
        if self._config.auth_token is None:
            return AccessToken(
                token=token or "anonymous",
                client_id="anonymous",
                scopes=_scopes(self._config),
            )

        if not token:
            logger.warning("Empty authentication token")
            return None

        # Constant-time comparison
        if not hmac.compare_digest(token.encode(), self._config.auth_token.encode()):
            logger.warning("Invalid authentication token")
            return None

        return AccessToken(
            token=token,
            client_id="authenticated",
            scopes=_scopes(self._config),
        )


def get_auth_provider(config: Config) -> BearerTokenVerifier | None:
    """Return the auth provider if VAULT_MCP_AUTH_TOKEN is set, None otherwise."""
    if config.auth_token is not None:
        return BearerTokenVerifier(config)
    return None


def check_write_permission(config: Config) -> None:
    """
    Check if write operations are allowed.

    Raises:
        AuthError: If the server is in read-only mode
    """
    if config.read_only:
        logger.warning("Write operation rejected: server is in read-only mode")
        raise AuthError("Server is in read-only mode")
