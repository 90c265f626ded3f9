"""Write tools for vaultMCP - update, edit and delete notes in the vault."""

import logging
import re
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, Field

from vault_mcp.auth import check_write_permission
from vault_mcp.client import ObsidianClient
from vault_mcp.config import Config
from vault_mcp.errors import ErrorKind, VaultError
from vault_mcp.index import VaultIndex
from vault_mcp.index.parser import parse_frontmatter, render_frontmatter
from vault_mcp.paths import PathResolver, ResolutionResult, normalize_vault_path
from vault_mcp.tools import describe_resolution

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)

WRITE_VERBS = {
    "overwrite": "overwritten",
    "append": "appended to",
    "prepend": "prepended to",
}


class Replacement(BaseModel):
    """One search/replace pair."""

    search: str = Field(min_length=1, description="Text or pattern to find")
    replace: str = Field(description="Replacement text")


def _split_frontmatter(content: str, path: str) -> tuple[dict, str]:
    """Return the note's frontmatter mapping and body, refusing to edit broken YAML."""
    data, body = parse_frontmatter(content, path)
    if data.error:
        raise VaultError(
            ErrorKind.VALIDATION,
            f"Cannot edit frontmatter of '{path}': {data.error}",
            operation="frontmatter",
        )
    return dict(data.raw), body


def _frontmatter_tags(frontmatter: dict) -> list[str]:
    tags = frontmatter.get("tags")
    if isinstance(tags, str):
        tags = re.split(r"[,\s]+", tags)
    if not isinstance(tags, list):
        return []
    return [str(t) for t in tags if t]


def _build_pattern(
    search: str,
    use_regex: bool,
    case_sensitive: bool,
    flexible_whitespace: bool,
    whole_word: bool,
) -> re.Pattern:
    if use_regex:
        pattern = search
    elif flexible_whitespace:
        pattern = r"\s+".join(re.escape(part) for part in re.split(r"\s+", search))
    else:
        pattern = re.escape(search)
    if whole_word:
        pattern = rf"\b(?:{pattern})\b"

    try:
        return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        raise VaultError(
            ErrorKind.VALIDATION,
            f"Invalid regex pattern constructed: {pattern} ({e})",
            operation="searchReplace",
        ) from e


async def _refresh_index(index: VaultIndex | None, path: str) -> None:
    """Update the index entry for a note after a write.

    Args:
        index: VaultIndex instance (None if caching is disabled)
        path: VaultPath that was written or deleted
    """
    if index is None:
        return
    try:
        await index.refresh_entry(path)
    except Exception:
        # Index maintenance should never break the write itself
        logger.exception("Failed to update vault index for %s", path)


def register_tools_write(
    mcp: "FastMCP",
    config: Config,
    client: ObsidianClient,
    resolver: PathResolver,
    index: VaultIndex | None = None,
) -> None:
    """Register all write tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        config: Config instance (read-only mode)
        client: Backend client for the Local REST API
        resolver: Path resolver; every write targets a resolved path
        index: Optional VaultIndex kept in step with writes
    """

    @mcp.tool()
    async def update_note(
        file_path: Annotated[
            str,
            Field(min_length=1, description="Vault-relative path of the note to write"),
        ],
        content: Annotated[str, Field(description="Markdown content to write")],
        mode: Annotated[
            Literal["overwrite", "append", "prepend"],
            Field(description="Replace the note, or add content at its end or start"),
        ] = "overwrite",
        create_if_missing: Annotated[
            bool, Field(description="Create the note if it does not exist")
        ] = True,
    ) -> dict:
        """Write content to a note.

        The existing note is located with case-insensitive fallback, so
        'notes/report.md' updates 'notes/Report.md' when that is the only
        match.

        Returns:
            Dict with status ("created" or "updated"), path and message
        """
        check_write_permission(config)

        try:
            resolution = await resolver.resolve(file_path)
            created = False
        except VaultError as e:
            if e.kind is not ErrorKind.NOT_FOUND or not create_if_missing:
                raise
            path = normalize_vault_path(file_path)
            resolution = ResolutionResult(path=path, requested=path)
            created = True

        path = resolution.path
        if mode == "append" and not created:
            await client.append_note(path, content)
        elif mode == "prepend" and not created:
            existing = await client.get_note(path)
            await client.put_note(path, content + existing)
        else:
            await client.put_note(path, content)

        status = "created" if created else "updated"
        logger.info("Note %s (%s): %s", status, mode, path)

        await _refresh_index(index, path)

        verb = "created" if created else WRITE_VERBS[mode]
        return {
            "status": status,
            "path": path,
            "requested": resolution.requested,
            "case_corrected": resolution.case_corrected,
            "mode": mode,
            "message": f"Note {describe_resolution(resolution)} {verb} successfully.",
        }

    @mcp.tool()
    async def delete_note(
        file_path: Annotated[
            str,
            Field(
                min_length=1,
                description=(
                    "Vault-relative path of the note to delete. Tries the exact "
                    "path first, then a case-insensitive match."
                ),
            ),
        ],
    ) -> dict:
        """Delete a note from the vault.

        Returns:
            Dict with status, path and message
        """
        check_write_permission(config)

        resolution = await resolver.resolve(file_path)
        await client.delete_note(resolution.path)
        logger.info("Deleted note: %s", resolution.path)

        await _refresh_index(index, resolution.path)

        return {
            "status": "deleted",
            "path": resolution.path,
            "requested": resolution.requested,
            "case_corrected": resolution.case_corrected,
            "message": f"Note {describe_resolution(resolution)} deleted successfully.",
        }

    @mcp.tool()
    async def manage_frontmatter(
        file_path: Annotated[
            str, Field(min_length=1, description="Vault-relative path of the note")
        ],
        operation: Annotated[
            Literal["get", "set", "delete"],
            Field(description="Read, set or remove a single frontmatter key"),
        ],
        key: Annotated[str, Field(min_length=1, description="Frontmatter key")],
        value: Annotated[
            Any, Field(description="Value to store; required for 'set'")
        ] = None,
    ) -> dict:
        """Read or edit one key of a note's YAML frontmatter.

        The body of the note is left untouched. Setting a key on a note
        without frontmatter adds a frontmatter block.

        Returns:
            Dict with success, path, message and (for get and set) value
        """
        if operation == "set" and value is None:
            raise VaultError(
                ErrorKind.VALIDATION,
                "A 'value' is required when the 'operation' is 'set'.",
                operation="manageFrontmatter",
            )
        if operation != "get":
            check_write_permission(config)

        resolution = await resolver.resolve(file_path)
        path = resolution.path
        frontmatter, body = _split_frontmatter(await client.get_note(path), path)
        result = {
            "success": True,
            "path": path,
            "requested": resolution.requested,
            "case_corrected": resolution.case_corrected,
        }

        if operation == "get":
            return {
                **result,
                "message": f"Successfully retrieved key '{key}' from frontmatter.",
                "value": frontmatter.get(key),
            }

        if operation == "delete" and key not in frontmatter:
            return {**result, "message": f"Key '{key}' not found in frontmatter; no action taken."}

        if operation == "set":
            frontmatter[key] = value
            message = f"Successfully set key '{key}' in frontmatter."
        else:
            del frontmatter[key]
            message = f"Successfully deleted key '{key}' from frontmatter."

        await client.put_note(path, render_frontmatter(frontmatter, body))
        logger.info("Frontmatter %s '%s': %s", operation, key, path)
        await _refresh_index(index, path)

        if operation == "set":
            result["value"] = value
        return {**result, "message": message}

    @mcp.tool()
    async def manage_tags(
        file_path: Annotated[
            str, Field(min_length=1, description="Vault-relative path of the note")
        ],
        operation: Annotated[
            Literal["add", "remove", "list"],
            Field(description="Add or remove frontmatter tags, or list all tags"),
        ],
        tags: Annotated[
            list[str] | None,
            Field(description="Tags to add or remove, with or without a leading '#'"),
        ] = None,
    ) -> dict:
        """Add, remove or list the tags of a note.

        Tags are written to the frontmatter ``tags`` list. Listing reports
        both frontmatter tags and inline ``#tags`` from the body.

        Returns:
            Dict with success, path, message and current_tags
        """
        cleaned = (t.strip().lstrip("#").strip() for t in tags or [])
        wanted = list(dict.fromkeys(t for t in cleaned if t))
        if operation != "list":
            if not wanted:
                raise VaultError(
                    ErrorKind.VALIDATION,
                    f"At least one tag is required to {operation} tags.",
                    operation="manageTags",
                )
            check_write_permission(config)

        resolution = await resolver.resolve(file_path)
        path = resolution.path
        content = await client.get_note(path)
        frontmatter, body = _split_frontmatter(content, path)
        result = {
            "success": True,
            "path": path,
            "requested": resolution.requested,
            "case_corrected": resolution.case_corrected,
        }

        existing = _frontmatter_tags(frontmatter)
        if operation == "list":
            message = "Successfully listed all tags."
        elif operation == "add":
            new_tags = [t for t in wanted if t not in existing]
            if new_tags:
                frontmatter["tags"] = existing + new_tags
                message = f"Successfully added tags: {', '.join(new_tags)}."
            else:
                message = "No new tags to add; all provided tags already exist in frontmatter."
        else:
            remaining = [t for t in existing if t not in wanted]
            if len(remaining) == len(existing):
                message = "No tags to remove; none of the provided tags exist in frontmatter."
            else:
                if remaining:
                    frontmatter["tags"] = remaining
                else:
                    frontmatter.pop("tags")
                message = "Successfully removed tags from frontmatter."

        if operation != "list" and _frontmatter_tags(frontmatter) != existing:
            content = render_frontmatter(frontmatter, body)
            await client.put_note(path, content)
            logger.info("Tags %s %s: %s", operation, wanted, path)
            await _refresh_index(index, path)

        data, _ = parse_frontmatter(content, path)
        return {**result, "message": message, "current_tags": data.tags}

    @mcp.tool()
    async def search_replace(
        file_path: Annotated[
            str, Field(min_length=1, description="Vault-relative path of the note")
        ],
        replacements: Annotated[
            list[Replacement],
            Field(min_length=1, description="Search/replace pairs, applied in order"),
        ],
        use_regex: Annotated[
            bool, Field(description="Treat each search string as a regular expression")
        ] = False,
        replace_all: Annotated[
            bool, Field(description="Replace every occurrence, not just the first")
        ] = True,
        case_sensitive: Annotated[bool, Field(description="Match case exactly")] = True,
        flexible_whitespace: Annotated[
            bool,
            Field(description="Match any run of whitespace where the search has whitespace"),
        ] = False,
        whole_word: Annotated[
            bool, Field(description="Only match whole words")
        ] = False,
        return_content: Annotated[
            bool, Field(description="Include the final note content in the response")
        ] = False,
    ) -> dict:
        """Apply search/replace operations to a note.

        In regex mode the replacement may refer to groups as ``\\1`` or
        ``\\g<name>``. The note is only written when its content changes.

        Returns:
            Dict with success, path, message and total_replacements_made
        """
        if flexible_whitespace and use_regex:
            raise VaultError(
                ErrorKind.VALIDATION,
                "'flexible_whitespace' cannot be combined with 'use_regex'.",
                operation="searchReplace",
            )
        if not replacements:
            raise VaultError(
                ErrorKind.VALIDATION,
                "At least one replacement is required.",
                operation="searchReplace",
            )
        check_write_permission(config)

        patterns = [
            (
                _build_pattern(r.search, use_regex, case_sensitive, flexible_whitespace, whole_word),
                r.replace,
            )
            for r in replacements
        ]

        resolution = await resolver.resolve(file_path)
        path = resolution.path
        original = await client.get_note(path)

        content = original
        total = 0
        for pattern, replacement in patterns:
            if not use_regex:
                # Literal replacement text; backslashes are not escapes
                replacement = replacement.replace("\\", "\\\\")
            try:
                content, made = pattern.subn(replacement, content, count=0 if replace_all else 1)
            except re.error as e:
                raise VaultError(
                    ErrorKind.VALIDATION,
                    f"Invalid replacement for pattern {pattern.pattern}: {e}",
                    operation="searchReplace",
                ) from e
            total += made

        if content != original:
            await client.put_note(path, content)
            logger.info("Search/replace made %d replacements: %s", total, path)
            await _refresh_index(index, path)

        result = {
            "success": True,
            "path": path,
            "requested": resolution.requested,
            "case_corrected": resolution.case_corrected,
            "message": f"Search/replace completed. {total} replacements made.",
            "total_replacements_made": total,
        }
        if return_content:
            result["final_content"] = content
        return result
