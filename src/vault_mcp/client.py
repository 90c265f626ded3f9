"""Async HTTP client for the Obsidian Local REST API.

All failures leave this module as a classified ``VaultError``; callers never
see ``httpx`` exceptions or raw error payloads.
"""

import logging
from typing import Any

import httpx

from vault_mcp.config import Config
from vault_mcp.errors import BackendError, ErrorKind, VaultError, classify
from vault_mcp.index.models import NoteStat
from vault_mcp.paths import encode_vault_path

logger = logging.getLogger(__name__)

NOTE_JSON_MEDIA_TYPE = "application/vnd.olrapi.note+json"
JSONLOGIC_MEDIA_TYPE = "application/vnd.olrapi.jsonlogic+json"


def _header_float(headers: httpx.Headers, name: str) -> float:
    value = headers.get(name)
    try:
        return float(value) if value else 0.0
    except ValueError:
        return 0.0


class ObsidianClient:
    """Client for the vault, note and search endpoints of the REST API.

    Implements the ``PathBackend`` protocol used by the path resolver.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        verify_ssl: bool = False,
        timeout: float = 30.0,
        search_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the Local REST API (e.g. http://127.0.0.1:27123)
            api_key: API key configured in the plugin
            verify_ssl: Verify TLS certificates (the plugin ships a self-signed one)
            timeout: Timeout in seconds for regular requests
            search_timeout: Timeout in seconds for search requests
            transport: Optional transport override (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.search_timeout = search_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            verify=verify_ssl,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Config) -> "ObsidianClient":
        return cls(
            base_url=config.obsidian_base_url,
            api_key=config.obsidian_api_key,
            verify_ssl=config.verify_ssl,
            timeout=config.request_timeout,
            search_timeout=config.search_timeout,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, url: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        """Send a request and classify any failure."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise classify(e, operation) from e

        if response.is_error:
            raise classify(BackendError.from_response(response), operation)
        return response

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise VaultError(
                ErrorKind.SERVICE_UNAVAILABLE,
                f"Obsidian API returned invalid JSON during {operation}.",
                operation=operation,
            ) from e

    async def check_status(self) -> dict:
        """Return the server status document (``GET /``)."""
        response = await self._request("GET", "/", "checkStatus")
        return self._json(response, "checkStatus")

    async def get_note(self, path: str, format: str = "markdown") -> str | dict:
        """Fetch a note as markdown text or as NoteJson.

        Args:
            path: VaultPath of the note
            format: "markdown" or "json"
        """
        accept = NOTE_JSON_MEDIA_TYPE if format == "json" else "text/markdown"
        response = await self._request(
            "GET",
            f"/vault/{encode_vault_path(path)}",
            "getFileContent",
            headers={"Accept": accept},
        )
        if format == "json":
            return self._json(response, "getFileContent")
        return response.text

    async def get_metadata(self, path: str) -> NoteStat | None:
        """Fetch file metadata with ``HEAD``.

        Returns:
            NoteStat if the file exists, None on 404.

        Raises:
            VaultError: for any failure other than a 404
        """
        operation = "getFileMetadata"
        try:
            response = await self._client.head(f"/vault/{encode_vault_path(path)}")
        except httpx.HTTPError as e:
            raise classify(e, operation) from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise classify(BackendError.from_response(response), operation)

        headers = response.headers
        return NoteStat(
            mtime=_header_float(headers, "x-obsidian-mtime") * 1000,
            ctime=_header_float(headers, "x-obsidian-ctime") * 1000,
            size=int(_header_float(headers, "content-length")),
        )

    async def list_directory(self, dir_path: str) -> list[str]:
        """List a directory. Directory entries end with '/'."""
        encoded = encode_vault_path(dir_path)
        url = f"/vault/{encoded}/" if encoded else "/vault/"
        response = await self._request("GET", url, "listFiles")
        data = self._json(response, "listFiles")
        files = data.get("files") if isinstance(data, dict) else None
        return [str(f) for f in files] if isinstance(files, list) else []

    async def put_note(self, path: str, content: str) -> None:
        """Create or overwrite a note."""
        await self._request(
            "PUT",
            f"/vault/{encode_vault_path(path)}",
            "updateFileContent",
            content=content.encode("utf-8"),
            headers={"Content-Type": "text/markdown"},
        )

    async def append_note(self, path: str, content: str) -> None:
        """Append content to a note, creating it if needed."""
        await self._request(
            "POST",
            f"/vault/{encode_vault_path(path)}",
            "appendFileContent",
            content=content.encode("utf-8"),
            headers={"Content-Type": "text/markdown"},
        )

    async def delete_note(self, path: str) -> None:
        await self._request("DELETE", f"/vault/{encode_vault_path(path)}", "deleteFile")

    async def search_simple(self, query: str, context_length: int = 100) -> list[dict]:
        """Run the plugin's simple text search.

        Returns:
            List of ``{"filename", "score", "matches": [{"match", "context"}]}``
        """
        response = await self._request(
            "POST",
            "/search/simple/",
            "searchSimple",
            params={"query": query, "contextLength": context_length},
            timeout=self.search_timeout,
        )
        data = self._json(response, "searchSimple")
        return data if isinstance(data, list) else []

    async def search_jsonlogic(self, logic: dict) -> list[dict]:
        """Run a JsonLogic query against every note's NoteJson.

        Returns:
            List of ``{"filename", "result"}`` for notes where the query is truthy
        """
        response = await self._request(
            "POST",
            "/search/",
            "searchComplex",
            json=logic,
            headers={"Content-Type": JSONLOGIC_MEDIA_TYPE},
            timeout=self.search_timeout,
        )
        data = self._json(response, "searchComplex")
        return data if isinstance(data, list) else []
