"""Tests for write tools."""

from dataclasses import replace

import pytest
from fastmcp import FastMCP

from vault_mcp.auth import AuthError
from vault_mcp.errors import ErrorKind, VaultError
from vault_mcp.index import VaultIndex
from vault_mcp.paths import PathResolver
from vault_mcp.tools_write import Replacement, register_tools_write


def get_tool(mcp: FastMCP, name: str):
    for tool in mcp._tool_manager._tools.values():
        if tool.fn.__name__ == name:
            return tool.fn
    raise AssertionError(f"Tool {name} not registered")


@pytest.fixture
def index(client):
    return VaultIndex(client)


@pytest.fixture
def mcp(config, client, index):
    server = FastMCP()
    register_tools_write(server, config, client, PathResolver(client), index)
    return server


class TestUpdateNote:
    """Tests for update_note tool."""

    @pytest.mark.asyncio
    async def test_overwrite_existing(self, mcp, vault):
        update_note = get_tool(mcp, "update_note")
        result = await update_note("Inbox.md", "Inbox zero")
        assert result["status"] == "updated"
        assert result["message"] == "Note 'Inbox.md' overwritten successfully."
        assert vault.files["Inbox.md"]["content"] == "Inbox zero"

    @pytest.mark.asyncio
    async def test_overwrite_uses_case_corrected_path(self, mcp, vault):
        update_note = get_tool(mcp, "update_note")
        result = await update_note("NOTES/report.md", "new numbers")
        # Directory listing is case-sensitive, so only the basename is corrected
        assert result["status"] == "created"
        assert vault.files["NOTES/report.md"]["content"] == "new numbers"

        result = await update_note("notes/REPORT.md", "new numbers")
        assert result["status"] == "updated"
        assert result["path"] == "notes/Report.md"
        assert result["case_corrected"] is True
        assert "notes/REPORT.md" not in vault.files
        assert vault.files["notes/Report.md"]["content"] == "new numbers"

    @pytest.mark.asyncio
    async def test_append_and_prepend(self, mcp, vault):
        update_note = get_tool(mcp, "update_note")

        await update_note("Inbox.md", "\nappended", mode="append")
        result = await update_note("Inbox.md", "prepended\n", mode="prepend")

        assert result["message"] == "Note 'Inbox.md' prepended to successfully."
        assert vault.files["Inbox.md"]["content"] == (
            "prepended\nRemember to review the report.\nappended"
        )

    @pytest.mark.asyncio
    async def test_creates_missing_note(self, mcp, vault):
        update_note = get_tool(mcp, "update_note")
        result = await update_note("notes/New.md", "fresh", mode="append")
        assert result["status"] == "created"
        assert result["message"] == "Note 'notes/New.md' created successfully."
        assert vault.files["notes/New.md"]["content"] == "fresh"

    @pytest.mark.asyncio
    async def test_missing_note_without_create(self, mcp, vault):
        update_note = get_tool(mcp, "update_note")
        with pytest.raises(VaultError) as exc_info:
            await update_note("notes/New.md", "fresh", create_if_missing=False)
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert "notes/New.md" not in vault.files

    @pytest.mark.asyncio
    async def test_ambiguous_target_is_not_written(self, mcp, vault):
        vault.add("notes/REPORT.md", "shouting")
        update_note = get_tool(mcp, "update_note")
        with pytest.raises(VaultError) as exc_info:
            await update_note("notes/report.md", "which one?")
        assert exc_info.value.kind is ErrorKind.CONFLICT
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_updates_index_entry(self, mcp, vault, index):
        await index.refresh()
        update_note = get_tool(mcp, "update_note")

        await update_note("notes/Draft.md", "draft #wip")

        snapshot = index.current_snapshot()
        assert snapshot.generation == 2
        assert snapshot.entries["notes/Draft.md"].content == "draft #wip"


class TestDeleteNote:
    """Tests for delete_note tool."""

    @pytest.mark.asyncio
    async def test_delete_case_insensitive(self, mcp, vault, index):
        await index.refresh()
        delete_note = get_tool(mcp, "delete_note")

        result = await delete_note("inbox.md")

        assert result["status"] == "deleted"
        assert result["path"] == "Inbox.md"
        assert "Inbox.md" not in vault.files
        assert "Inbox.md" not in index.current_snapshot().entries

    @pytest.mark.asyncio
    async def test_delete_missing(self, mcp):
        delete_note = get_tool(mcp, "delete_note")
        with pytest.raises(VaultError) as exc_info:
            await delete_note("missing.md")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND


TAGGED_NOTE = "---\ntitle: Plan\ntags:\n- project\n- draft\n---\n# Plan\n\nShip it #soon\n"


class TestManageFrontmatter:
    """Tests for manage_frontmatter tool."""

    @pytest.mark.asyncio
    async def test_get_key(self, mcp, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")

        result = await manage_frontmatter("notes/plan.md", "get", "title")

        assert result["value"] == "Plan"
        assert result["path"] == "notes/Plan.md"
        assert result["message"] == "Successfully retrieved key 'title' from frontmatter."
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_set_key_keeps_body(self, mcp, vault, index):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        await index.refresh()
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")

        result = await manage_frontmatter("notes/Plan.md", "set", "status", "active")

        assert result["message"] == "Successfully set key 'status' in frontmatter."
        assert vault.files["notes/Plan.md"]["content"] == (
            "---\ntitle: Plan\ntags:\n- project\n- draft\nstatus: active\n---\n"
            "# Plan\n\nShip it #soon\n"
        )
        assert index.current_snapshot().generation == 2

    @pytest.mark.asyncio
    async def test_set_adds_block_to_plain_note(self, mcp, vault):
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")
        await manage_frontmatter("inbox.md", "set", "priority", 2)
        assert vault.files["Inbox.md"]["content"] == (
            "---\npriority: 2\n---\nRemember to review the report."
        )

    @pytest.mark.asyncio
    async def test_set_requires_value(self, mcp, vault):
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")
        with pytest.raises(VaultError) as exc_info:
            await manage_frontmatter("Inbox.md", "set", "priority")
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_delete_key(self, mcp, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")

        result = await manage_frontmatter("notes/Plan.md", "delete", "title")

        assert result["message"] == "Successfully deleted key 'title' from frontmatter."
        assert vault.files["notes/Plan.md"]["content"].startswith("---\ntags:\n- project\n")

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_noop(self, mcp, vault):
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")
        result = await manage_frontmatter("Inbox.md", "delete", "status")
        assert result["message"] == "Key 'status' not found in frontmatter; no action taken."
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_invalid_yaml_is_not_rewritten(self, mcp, vault):
        vault.add("Broken.md", "---\ntitle: [unclosed\n---\nBody")
        manage_frontmatter = get_tool(mcp, "manage_frontmatter")
        with pytest.raises(VaultError) as exc_info:
            await manage_frontmatter("Broken.md", "set", "title", "Fixed")
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert vault.files["Broken.md"]["content"] == "---\ntitle: [unclosed\n---\nBody"


class TestManageTags:
    """Tests for manage_tags tool."""

    @pytest.mark.asyncio
    async def test_list_includes_inline_tags(self, mcp, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        manage_tags = get_tool(mcp, "manage_tags")

        result = await manage_tags("notes/Plan.md", "list")

        assert result["message"] == "Successfully listed all tags."
        assert result["current_tags"] == ["draft", "project", "soon"]

    @pytest.mark.asyncio
    async def test_add_skips_existing(self, mcp, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        manage_tags = get_tool(mcp, "manage_tags")

        result = await manage_tags("notes/plan.md", "add", ["#draft", "review", "review"])

        assert result["message"] == "Successfully added tags: review."
        assert result["current_tags"] == ["draft", "project", "review", "soon"]
        assert "tags:\n- project\n- draft\n- review\n" in vault.files["notes/Plan.md"]["content"]

    @pytest.mark.asyncio
    async def test_add_nothing_new(self, mcp, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        manage_tags = get_tool(mcp, "manage_tags")
        result = await manage_tags("notes/Plan.md", "add", ["project"])
        assert result["message"] == (
            "No new tags to add; all provided tags already exist in frontmatter."
        )
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_add_to_plain_note(self, mcp, vault):
        manage_tags = get_tool(mcp, "manage_tags")
        await manage_tags("Inbox.md", "add", ["todo"])
        assert vault.files["Inbox.md"]["content"] == (
            "---\ntags:\n- todo\n---\nRemember to review the report."
        )

    @pytest.mark.asyncio
    async def test_remove(self, mcp, vault, index):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        await index.refresh()
        manage_tags = get_tool(mcp, "manage_tags")

        result = await manage_tags("notes/Plan.md", "remove", ["draft"])

        assert result["message"] == "Successfully removed tags from frontmatter."
        assert result["current_tags"] == ["project", "soon"]
        assert index.current_snapshot().entries["notes/Plan.md"].content == (
            vault.files["notes/Plan.md"]["content"]
        )

    @pytest.mark.asyncio
    async def test_removing_last_tag_drops_key(self, mcp, vault):
        vault.add("Note.md", "---\ntags:\n- solo\n---\nBody")
        manage_tags = get_tool(mcp, "manage_tags")
        await manage_tags("Note.md", "remove", ["solo"])
        assert vault.files["Note.md"]["content"] == "Body"

    @pytest.mark.asyncio
    async def test_remove_unknown_tag(self, mcp, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        manage_tags = get_tool(mcp, "manage_tags")
        result = await manage_tags("notes/Plan.md", "remove", ["soon"])
        assert result["message"] == (
            "No tags to remove; none of the provided tags exist in frontmatter."
        )
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_add_requires_tags(self, mcp):
        manage_tags = get_tool(mcp, "manage_tags")
        with pytest.raises(VaultError) as exc_info:
            await manage_tags("Inbox.md", "add", ["#", " "])
        assert exc_info.value.kind is ErrorKind.VALIDATION


class TestSearchReplace:
    """Tests for search_replace tool."""

    @pytest.mark.asyncio
    async def test_literal_replace_all(self, mcp, vault):
        vault.add("Note.md", "a.b a.b axb")
        search_replace = get_tool(mcp, "search_replace")

        result = await search_replace("note.md", [Replacement(search="a.b", replace="c")])

        assert result["total_replacements_made"] == 2
        assert result["message"] == "Search/replace completed. 2 replacements made."
        assert result["path"] == "Note.md"
        assert vault.files["Note.md"]["content"] == "c c axb"

    @pytest.mark.asyncio
    async def test_first_only_and_return_content(self, mcp, vault):
        vault.add("Note.md", "one one one")
        search_replace = get_tool(mcp, "search_replace")

        result = await search_replace(
            "Note.md",
            [Replacement(search="one", replace="two")],
            replace_all=False,
            return_content=True,
        )

        assert result["total_replacements_made"] == 1
        assert result["final_content"] == "two one one"

    @pytest.mark.asyncio
    async def test_case_insensitive_whole_word(self, mcp, vault):
        vault.add("Note.md", "Cat catalog CAT")
        search_replace = get_tool(mcp, "search_replace")

        await search_replace(
            "Note.md",
            [Replacement(search="cat", replace="dog")],
            case_sensitive=False,
            whole_word=True,
        )

        assert vault.files["Note.md"]["content"] == "dog catalog dog"

    @pytest.mark.asyncio
    async def test_regex_with_groups(self, mcp, vault):
        vault.add("Note.md", "due 2024-01-31")
        search_replace = get_tool(mcp, "search_replace")

        await search_replace(
            "Note.md",
            [Replacement(search=r"(\d{4})-(\d{2})-(\d{2})", replace=r"\3/\2/\1")],
            use_regex=True,
        )

        assert vault.files["Note.md"]["content"] == "due 31/01/2024"

    @pytest.mark.asyncio
    async def test_literal_replacement_keeps_backslashes(self, mcp, vault):
        vault.add("Note.md", "path here")
        search_replace = get_tool(mcp, "search_replace")
        await search_replace("Note.md", [Replacement(search="here", replace=r"C:\temp\1")])
        assert vault.files["Note.md"]["content"] == r"path C:\temp\1"

    @pytest.mark.asyncio
    async def test_flexible_whitespace(self, mcp, vault):
        vault.add("Note.md", "hello   big\nworld")
        search_replace = get_tool(mcp, "search_replace")

        await search_replace(
            "Note.md",
            [Replacement(search="hello big world", replace="bye")],
            flexible_whitespace=True,
        )

        assert vault.files["Note.md"]["content"] == "bye"

    @pytest.mark.asyncio
    async def test_applies_replacements_in_order(self, mcp, vault):
        vault.add("Note.md", "alpha")
        search_replace = get_tool(mcp, "search_replace")

        result = await search_replace(
            "Note.md",
            [
                Replacement(search="alpha", replace="beta"),
                Replacement(search="beta", replace="gamma"),
            ],
        )

        assert result["total_replacements_made"] == 2
        assert vault.files["Note.md"]["content"] == "gamma"

    @pytest.mark.asyncio
    async def test_no_match_does_not_write(self, mcp, vault):
        search_replace = get_tool(mcp, "search_replace")
        result = await search_replace("Inbox.md", [Replacement(search="absent", replace="x")])
        assert result["total_replacements_made"] == 0
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_flexible_whitespace_rejects_regex(self, mcp, vault):
        search_replace = get_tool(mcp, "search_replace")
        with pytest.raises(VaultError) as exc_info:
            await search_replace(
                "Inbox.md",
                [Replacement(search="a b", replace="c")],
                use_regex=True,
                flexible_whitespace=True,
            )
        assert exc_info.value.kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_invalid_regex(self, mcp, vault):
        search_replace = get_tool(mcp, "search_replace")
        with pytest.raises(VaultError) as exc_info:
            await search_replace("Inbox.md", [Replacement(search="([", replace="x")], use_regex=True)
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert "Invalid regex pattern constructed" in exc_info.value.message
        assert vault.count("GET", "/vault/Inbox.md") == 0

    @pytest.mark.asyncio
    async def test_updates_index_entry(self, mcp, vault, index):
        await index.refresh()
        search_replace = get_tool(mcp, "search_replace")

        await search_replace("Inbox.md", [Replacement(search="review", replace="file")])

        snapshot = index.current_snapshot()
        assert snapshot.generation == 2
        assert snapshot.entries["Inbox.md"].content == "Remember to file the report."


class TestReadOnly:
    """Write tools refuse to run in read-only mode."""

    @pytest.mark.asyncio
    async def test_writes_rejected(self, config, client, vault):
        server = FastMCP()
        register_tools_write(server, replace(config, read_only=True), client, PathResolver(client))

        with pytest.raises(AuthError):
            await get_tool(server, "update_note")("Inbox.md", "nope")
        with pytest.raises(AuthError):
            await get_tool(server, "delete_note")("Inbox.md")
        with pytest.raises(AuthError):
            await get_tool(server, "manage_tags")("Inbox.md", "add", ["todo"])
        with pytest.raises(AuthError):
            await get_tool(server, "search_replace")(
                "Inbox.md", [Replacement(search="review", replace="skip")]
            )
        assert "Inbox.md" in vault.files
        assert vault.count("PUT") == 0

    @pytest.mark.asyncio
    async def test_reads_allowed(self, config, client, vault):
        vault.add("notes/Plan.md", TAGGED_NOTE)
        server = FastMCP()
        register_tools_write(server, replace(config, read_only=True), client, PathResolver(client))

        result = await get_tool(server, "manage_frontmatter")("notes/Plan.md", "get", "title")
        assert result["value"] == "Plan"
