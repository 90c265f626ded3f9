"""Error taxonomy and backend failure classification.

Every failure coming back from the Obsidian Local REST API goes through
``classify()`` so callers only ever see a ``VaultError`` with one of a small,
closed set of kinds instead of raw HTTP payloads.
"""

import enum
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Substring the REST API puts in its not-found messages. Only consulted when
# the failure carries no HTTP status.
NOT_FOUND_INDICATOR = "not found"


class ErrorKind(str, enum.Enum):
    """Domain error kinds surfaced to callers."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVICE_UNAVAILABLE = "service_unavailable"
    VALIDATION = "validation"


class VaultError(Exception):
    """A classified vault failure."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.operation = operation
        self.details = details or {}

    def __repr__(self) -> str:
        return f"VaultError({self.kind.value!r}, {self.message!r})"


class BackendError(Exception):
    """Raw failure reported by the REST API, tagged with its HTTP status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @classmethod
    def from_response(cls, response) -> "BackendError":
        """Build from an ``httpx.Response`` carrying an error status."""
        message = ""
        try:
            payload = response.json()
            if isinstance(payload, dict):
                message = str(payload.get("message") or "")
        except ValueError:
            pass
        if not message:
            message = response.text[:200] or response.reason_phrase
        return cls(f"HTTP {response.status_code}: {message}", response.status_code)


def classify(raw_error: BaseException, operation: str) -> VaultError:
    """Map a raw backend failure to a ``VaultError``.

    Args:
        raw_error: Exception raised by (or on behalf of) the backend
        operation: Name of the operation that failed, for messages and logs

    Returns:
        A ``VaultError`` of kind NOT_FOUND or SERVICE_UNAVAILABLE. Errors that
        are already classified are returned unchanged.
    """
    if isinstance(raw_error, VaultError):
        return raw_error

    if isinstance(raw_error, BackendError) and raw_error.status_code is not None:
        is_not_found = raw_error.status_code == 404
    else:
        is_not_found = NOT_FOUND_INDICATOR in str(raw_error).lower()

    if is_not_found:
        # Missing notes are routine during path resolution
        logger.info("Obsidian API error during %s: %s", operation, raw_error)
        return VaultError(
            ErrorKind.NOT_FOUND,
            f"File or resource not found in Obsidian during {operation}.",
            operation=operation,
        )
    logger.error("Obsidian API error during %s: %s", operation, raw_error)
    return VaultError(
        ErrorKind.SERVICE_UNAVAILABLE,
        f"An error occurred while communicating with the Obsidian API during {operation}: {raw_error}",
        operation=operation,
    )
