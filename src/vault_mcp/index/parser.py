"""Parser for YAML frontmatter and inline tags in raw markdown.

Used when the REST API cannot hand back a NoteJson for a file and the index
has to derive metadata from the markdown itself.
"""

import logging
import re
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)


@dataclass
class FrontmatterData:
    """Parsed frontmatter data."""

    tags: list[str] = field(default_factory=list)
    raw: dict = field(default_factory=dict)
    error: str | None = None


# Inline tags like #project or #area/work, not inside words or headings
INLINE_TAG_PATTERN = re.compile(r"(?:^|(?<=\s))#([\w][\w/-]*)", re.UNICODE)

FRONTMATTER_PATTERN = re.compile(r"^---\n(.*?)\n---\n?", re.DOTALL)


def normalize_tags(tags) -> list[str]:
    """Normalize a frontmatter tags value into a sorted, de-duplicated list."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = re.split(r"[,\s]+", tags)
    if not isinstance(tags, list):
        return []
    cleaned = {str(t).strip().lstrip("#") for t in tags if t is not None}
    return sorted(t for t in cleaned if t)


def parse_frontmatter(content: str, file_path: str) -> tuple[FrontmatterData, str]:
    """
    Parse YAML frontmatter from markdown content.

    Tags come from the frontmatter ``tags`` key merged with inline ``#tags``
    found in the body.

    Args:
        content: The full markdown content
        file_path: Vault-relative path, used for log messages only

    Returns:
        Tuple of (FrontmatterData, content_without_frontmatter)
    """
    data = FrontmatterData()
    body = content

    match = FRONTMATTER_PATTERN.match(content)
    if match:
        body = content[match.end():]
        try:
            raw = yaml.safe_load(match.group(1)) or {}
            if isinstance(raw, dict):
                data.raw = raw
            else:
                data.error = "Frontmatter parsed to a non-mapping; ignoring"
        except yaml.YAMLError as e:
            logger.debug("Invalid YAML frontmatter in %s: %s", file_path, e)
            data.error = f"YAML parse error: {e}"

    tags = set(normalize_tags(data.raw.get("tags")))
    for line in body.splitlines():
        if line.lstrip().startswith("```"):
            continue
        tags.update(INLINE_TAG_PATTERN.findall(line))
    data.tags = sorted(tags)

    return data, body


def strip_frontmatter(content: str) -> str:
    """Remove YAML frontmatter from content."""
    match = FRONTMATTER_PATTERN.match(content)
    if match:
        return content[match.end():]
    return content


def render_frontmatter(frontmatter: dict, body: str) -> str:
    """Rebuild markdown from a frontmatter mapping and the body below it.

    An empty mapping drops the frontmatter block.
    """
    if not frontmatter:
        return body
    dumped = yaml.safe_dump(
        frontmatter, sort_keys=False, allow_unicode=True, default_flow_style=False
    )
    return f"---\n{dumped}---\n{body}"
