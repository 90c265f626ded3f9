"""Shared fixtures: an in-memory Obsidian Local REST API."""

import json
import re

import httpx
import pytest

from vault_mcp.client import ObsidianClient
from vault_mcp.config import Config

DEFAULT_MTIME = 1_700_000_000_000  # ms


class FakeVault:
    """In-memory stand-in for the Obsidian Local REST API plugin.

    Set ``down`` to make every request fail with a connection error, or
    ``search_down`` to only break the search endpoints.
    """

    def __init__(self, files: dict[str, str] | None = None, qualified_listing: bool = False):
        self.files: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.down = False
        self.search_down = False
        self.broken_json: set[str] = set()
        # Listings of subdirectories return "dir/name" instead of "name"
        self.qualified_listing = qualified_listing
        for path, content in (files or {}).items():
            self.add(path, content)

    def add(self, path: str, content: str, mtime: float = DEFAULT_MTIME) -> None:
        self.files[path] = {"content": content, "mtime": mtime, "ctime": mtime}

    def count(self, method: str, path_prefix: str = "") -> int:
        return sum(
            1
            for r in self.requests
            if r.method == method and r.url.path.startswith(path_prefix)
        )

    # -- request handling ---------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if self.down or (self.search_down and path.startswith("/search")):
            raise httpx.ConnectError("Connection refused", request=request)

        if path == "/":
            return httpx.Response(200, json={"status": "OK", "service": "Obsidian Local REST API", "authenticated": True})
        if path == "/search/simple/":
            return self._search_simple(request)
        if path == "/search/":
            return self._search_jsonlogic(request)
        if path.startswith("/vault/"):
            target = path[len("/vault/"):]
            if target == "" or target.endswith("/"):
                return self._list(target.rstrip("/"))
            return self._file(request, target)
        return self._not_found()

    @staticmethod
    def _not_found() -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found", "errorCode": 40400})

    def _list(self, directory: str) -> httpx.Response:
        prefix = f"{directory}/" if directory else ""
        entries: set[str] = set()
        for path in self.files:
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            name = rest.split("/", 1)[0] + ("/" if "/" in rest else "")
            entries.add(f"{prefix}{name}" if self.qualified_listing and prefix else name)
        if directory and not entries:
            return self._not_found()
        return httpx.Response(200, json={"files": sorted(entries)})

    def _file(self, request: httpx.Request, path: str) -> httpx.Response:
        note = self.files.get(path)

        if request.method == "PUT":
            self.add(path, request.content.decode())
            return httpx.Response(204)
        if request.method == "POST":
            existing = note["content"] if note else ""
            self.add(path, existing + request.content.decode())
            return httpx.Response(204)

        if note is None:
            return self._not_found()

        if request.method == "DELETE":
            del self.files[path]
            return httpx.Response(204)
        if request.method == "HEAD":
            return httpx.Response(
                200,
                headers={
                    "x-obsidian-mtime": str(note["mtime"] / 1000),
                    "x-obsidian-ctime": str(note["ctime"] / 1000),
                    "content-length": str(len(note["content"].encode())),
                },
            )
        if "note+json" in request.headers.get("accept", ""):
            if path in self.broken_json:
                return httpx.Response(500, json={"message": "Internal error"})
            tags = sorted(set(re.findall(r"(?:^|\s)#(\w+)", note["content"])))
            return httpx.Response(
                200,
                json={
                    "path": path,
                    "content": note["content"],
                    "frontmatter": {},
                    "tags": tags,
                    "stat": {
                        "mtime": note["mtime"],
                        "ctime": note["ctime"],
                        "size": len(note["content"].encode()),
                    },
                },
            )
        return httpx.Response(200, text=note["content"])

    def _search_simple(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("query", "")
        context_length = int(request.url.params.get("contextLength", "100"))
        results = []
        for path, note in sorted(self.files.items()):
            content = note["content"]
            matches = [
                {
                    "match": {"start": m.start(), "end": m.end()},
                    "context": content[max(0, m.start() - context_length): m.end() + context_length],
                }
                for m in re.finditer(re.escape(query), content, re.IGNORECASE)
            ]
            if matches:
                results.append({"filename": path, "score": -1.0, "matches": matches})
        return httpx.Response(200, json=results)

    def _search_jsonlogic(self, request: httpx.Request) -> httpx.Response:
        logic = json.loads(request.content)
        pattern = logic["glob"][0]
        prefix = "" if pattern == "**" else pattern[: -len("**")]
        return httpx.Response(
            200,
            json=[
                {"filename": path, "result": True}
                for path in sorted(self.files)
                if path.startswith(prefix)
            ],
        )


@pytest.fixture
def vault() -> FakeVault:
    return FakeVault(
        {
            "notes/Report.md": "# Report\n\nQuarterly numbers for the #finance team.",
            "notes/Ideas.md": "Idea: write the report in markdown.",
            "Inbox.md": "Remember to review the report.",
            "archive/2023/Old.md": "Nothing to see here.",
        }
    )


@pytest.fixture
def client(vault: FakeVault) -> ObsidianClient:
    return ObsidianClient(
        "http://obsidian.test",
        "test-api-key",
        transport=httpx.MockTransport(vault.handler),
    )


@pytest.fixture
def config() -> Config:
    return Config(
        obsidian_api_key="test-api-key",
        obsidian_base_url="http://obsidian.test",
        verify_ssl=False,
        request_timeout=5.0,
        search_timeout=5.0,
        cache_enabled=True,
        cache_refresh_interval=600,
        cache_max_age=600,
        cache_refresh_concurrency=4,
        port=8080,
        transport="stdio",
        auth_token=None,
        read_only=False,
    )
