import re
from datetime import UTC, datetime
from typing import Any

import yaml
from fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

FRONTMATTER_PATTERN = re.compile(r"^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|$)", re.DOTALL)

SLUG_SEPARATOR_PATTERN = re.compile(r"[^a-z0-9]+")

DEFAULT_TITLE = "Untitled Note"


def extract_frontmatter(markdown: str) -> tuple[dict[str, Any], str]:
    """Split a note into its YAML frontmatter and its body.

    Notes without frontmatter, or whose frontmatter is not a YAML mapping, get an empty
    frontmatter and keep their full text as the body.
    """

    match = FRONTMATTER_PATTERN.match(markdown)
    if not match:
        return {}, markdown

    try:
        frontmatter = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse frontmatter: {e}")
        return {}, markdown

    if not isinstance(frontmatter, dict):
        return {}, markdown

    return {str(key): value for key, value in frontmatter.items()}, markdown[match.end() :]


def generate_slug(title: str) -> str:
    """Generate a URL-friendly slug from a title."""

    return SLUG_SEPARATOR_PATTERN.sub("-", title.lower()).strip("-")


def normalize_tags(tags: Any) -> list[str]:
    if tags is None:
        return []

    if isinstance(tags, str):
        return [tag.strip() for tag in tags.split(",") if tag.strip()]

    if isinstance(tags, list | tuple | set):
        return [str(tag) for tag in tags if tag is not None]

    return [str(tags)]


def create_metadata(
    markdown: str,
    overrides: dict[str, Any] | None = None,
    use_frontmatter: bool = True,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Combine the note's frontmatter with explicit overrides and fill in the defaults templates rely on."""

    frontmatter: dict[str, Any] = extract_frontmatter(markdown)[0] if use_frontmatter else {}

    metadata: dict[str, Any] = {**frontmatter}
    metadata.update({key: value for key, value in (overrides or {}).items() if value is not None and value != ""})

    if not metadata.get("title"):
        metadata["title"] = DEFAULT_TITLE

    metadata["title"] = str(metadata["title"])

    if not metadata.get("slug"):
        metadata["slug"] = generate_slug(metadata["title"])

    if not metadata.get("date"):
        metadata["date"] = (now or datetime.now(tz=UTC)).isoformat()

    if metadata.get("description") is None:
        metadata["description"] = ""

    metadata["tags"] = normalize_tags(metadata.get("tags"))

    return metadata
