"""Template rendering for branch names, commit messages, pull requests and filenames.

Templates use `{{variable}}` placeholders filled from the note metadata, plus a
`{{date}}` placeholder that accepts a moment.js style format: `{{date:YYYY/MM}}`.
"""

import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from content_publisher_mcp.publishing.errors import InvalidBranchNameError

DEFAULT_DATE_FORMAT = "YYYY-MM-DD"

DATE_PLACEHOLDER_PATTERN = re.compile(r"\{\{date(?::([^}]+))?\}\}")

DATE_TOKEN_PATTERN = re.compile(r"\[[^\]]*\]|YYYY|YY|MMMM|MMM|MM|M|Do|DD|D|dddd|ddd|HH|H|hh|h|mm|m|ss|s|A|a|ZZ|Z|X")

# Characters git refuses in ref names, see git-check-ref-format
INVALID_BRANCH_CHARACTERS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")
REPEATED_SEPARATORS = re.compile(r"-{2,}|/{2,}|\.{2,}")


ORDINAL_SUFFIXES = {1: "st", 2: "nd", 3: "rd"}


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return f"{day}th"

    return f"{day}{ORDINAL_SUFFIXES.get(day % 10, 'th')}"


def _hour_12(now: datetime) -> int:
    return now.hour % 12 or 12


def _utc_offset(now: datetime, separator: str) -> str:
    offset = now.utcoffset()
    if offset is None:
        return f"+00{separator}00"

    total_minutes = int(offset.total_seconds() // 60)
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}{separator}{minutes:02d}"


DATE_TOKENS: dict[str, Callable[[datetime], str]] = {
    "YYYY": lambda now: f"{now.year:04d}",
    "YY": lambda now: f"{now.year % 100:02d}",
    "MMMM": lambda now: now.strftime("%B"),
    "MMM": lambda now: now.strftime("%b"),
    "MM": lambda now: f"{now.month:02d}",
    "M": lambda now: str(now.month),
    "Do": lambda now: _ordinal(now.day),
    "DD": lambda now: f"{now.day:02d}",
    "D": lambda now: str(now.day),
    "dddd": lambda now: now.strftime("%A"),
    "ddd": lambda now: now.strftime("%a"),
    "HH": lambda now: f"{now.hour:02d}",
    "H": lambda now: str(now.hour),
    "hh": lambda now: f"{_hour_12(now):02d}",
    "h": lambda now: str(_hour_12(now)),
    "mm": lambda now: f"{now.minute:02d}",
    "m": lambda now: str(now.minute),
    "ss": lambda now: f"{now.second:02d}",
    "s": lambda now: str(now.second),
    "A": lambda now: "AM" if now.hour < 12 else "PM",
    "a": lambda now: "am" if now.hour < 12 else "pm",
    "ZZ": lambda now: _utc_offset(now, ""),
    "Z": lambda now: _utc_offset(now, ":"),
    "X": lambda now: str(int(now.timestamp())),
}


def format_date(now: datetime, fmt: str = DEFAULT_DATE_FORMAT) -> str:
    """Format a datetime with a moment.js style format string. Text in square brackets is kept as is."""

    def replace_token(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith("["):
            return token[1:-1]

        return DATE_TOKENS[token](now)

    return DATE_TOKEN_PATTERN.sub(replace_token, fmt)


def stringify(value: Any) -> str:
    if value is None:
        return ""

    if isinstance(value, list | tuple | set):
        return ", ".join(stringify(item) for item in value)

    return str(value)


def process_template(template: str, variables: dict[str, Any], now: datetime | None = None) -> str:
    """Render a template. Placeholders without a matching variable are left untouched."""

    now = now or datetime.now(tz=UTC).astimezone()

    processed = DATE_PLACEHOLDER_PATTERN.sub(lambda match: format_date(now, match.group(1) or DEFAULT_DATE_FORMAT), template)

    for key, value in variables.items():
        replacement = stringify(value)
        processed = re.sub(r"\{\{" + re.escape(key) + r"\}\}", lambda _, replacement=replacement: replacement, processed)

    return processed


class TemplateSet(BaseModel):
    branch_template: str
    commit_message_template: str
    pr_title_template: str
    pr_body_template: str
    filename_template: str


class RenderedTemplates(BaseModel):
    branch_name: str = Field(description="The branch the note is committed to.")
    commit_message: str = Field(description="The message of the commits.")
    pr_title: str = Field(description="The title of the pull request.")
    pr_body: str = Field(description="The body of the pull request.")
    filename: str = Field(description="The filename of the note in the repository.")


def process_templates(templates: TemplateSet, metadata: dict[str, Any], now: datetime | None = None) -> RenderedTemplates:
    now = now or datetime.now(tz=UTC).astimezone()

    return RenderedTemplates(
        branch_name=process_template(templates.branch_template, metadata, now=now),
        commit_message=process_template(templates.commit_message_template, metadata, now=now),
        pr_title=process_template(templates.pr_title_template, metadata, now=now),
        pr_body=process_template(templates.pr_body_template, metadata, now=now),
        filename=process_template(templates.filename_template, metadata, now=now),
    )


def sanitize_branch_name(name: str) -> str:
    """Turn a rendered branch template into a name git accepts as a ref."""

    sanitized = re.sub(r"\s+", "-", name.strip())
    sanitized = INVALID_BRANCH_CHARACTERS.sub("", sanitized)
    sanitized = sanitized.replace("@{", "")
    sanitized = REPEATED_SEPARATORS.sub(lambda match: match.group(0)[0], sanitized)

    # No path component may start with a dot or end with .lock
    components = [component.lstrip(".") for component in sanitized.split("/")]
    components = [component.removesuffix(".lock") for component in components]
    sanitized = "/".join(component for component in components if component)

    sanitized = sanitized.strip("-.").rstrip("/")

    if not sanitized or sanitized == "@":
        raise InvalidBranchNameError(template_output=name)

    return sanitized
