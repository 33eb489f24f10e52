"""Find media referenced by a note, map each reference to a vault file and rewrite it to its repository path."""

import re
from logging import Logger
from pathlib import PurePosixPath
from typing import Literal
from urllib.parse import unquote

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from content_publisher_mcp.content.paths import resolve_target_path
from content_publisher_mcp.servers.shared.utility import encode_content
from content_publisher_mcp.vault import Vault, VaultFile

WIKI_EMBED_PATTERN = re.compile(r"!\[\[([^\]]+?)\]\]")
MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[([^\]\[]*)\]\(\s*(<[^>]+>|[^)\s]+)(?:\s+[\"'][^\"']*[\"'])?\s*\)")
HTML_IMAGE_PATTERN = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
HTML_SRC_PATTERN = re.compile(r"""\bsrc\s*=\s*(["'])(.*?)\1""", re.IGNORECASE)
HTML_ALT_PATTERN = re.compile(r"""\balt\s*=\s*(["'])(.*?)\1""", re.IGNORECASE)

# Wiki embed aliases that only set the display size: ![[image.png|300]] or ![[image.png|300x200]]
EMBED_SIZE_PATTERN = re.compile(r"^\d+(x\d+)?$")

EXTERNAL_PREFIXES = ("http://", "https://", "data:")

ReferenceKind = Literal["wikilink", "markdown", "html"]


class MediaReference(BaseModel):
    """A media reference found in a note."""

    original: str = Field(description="The reference exactly as written in the note.")
    path: str = Field(description="The path or file name the reference points to.")
    alt: str = Field(description="The alt text of the reference.")
    kind: ReferenceKind = Field(description="The syntax the reference is written in.")

    @property
    def is_external(self) -> bool:
        return self.path.lower().startswith(EXTERNAL_PREFIXES)


class MediaUpload(BaseModel):
    """A vault file to be committed to the repository."""

    source_path: str = Field(description="The path of the file in the vault.")
    target_path: str = Field(description="The path of the file in the repository.")
    content: str = Field(repr=False, description="The base64 encoded content of the file.")


class MediaFailure(BaseModel):
    reference: str = Field(description="The reference that could not be processed.")
    reason: str = Field(description="Why the reference could not be processed.")


class ProcessedContent(BaseModel):
    content: str = Field(description="The note content with media references rewritten to their repository paths.")
    media_files: list[MediaUpload] = Field(default_factory=list)
    failures: list[MediaFailure] = Field(default_factory=list)


def _split_embed(target: str) -> tuple[str, str | None]:
    path, _, alias = target.partition("|")
    # Heading and block anchors never apply to media
    path = path.split("#", 1)[0].strip()
    return path, alias.strip() or None


def extract_media_references(content: str) -> list[MediaReference]:
    """Extract wiki embeds, markdown images and HTML images, in that order. Each distinct reference is reported once."""

    references: list[MediaReference] = []

    for match in WIKI_EMBED_PATTERN.finditer(content):
        path, alias = _split_embed(match.group(1))

        # Embeds without an extension transclude other notes
        if not PurePosixPath(path).suffix:
            continue

        alt = alias if alias and not EMBED_SIZE_PATTERN.match(alias) else PurePosixPath(path).stem
        references.append(MediaReference(original=match.group(0), path=path, alt=alt, kind="wikilink"))

    for match in MARKDOWN_IMAGE_PATTERN.finditer(content):
        path = match.group(2).strip()
        if path.startswith("<") and path.endswith(">"):
            path = path[1:-1]
        references.append(MediaReference(original=match.group(0), path=path, alt=match.group(1), kind="markdown"))

    for match in HTML_IMAGE_PATTERN.finditer(content):
        tag = match.group(0)
        if not (src := HTML_SRC_PATTERN.search(tag)):
            continue
        alt = HTML_ALT_PATTERN.search(tag)
        references.append(MediaReference(original=tag, path=src.group(2), alt=alt.group(2) if alt else "", kind="html"))

    unique: dict[str, MediaReference] = {}
    for reference in references:
        unique.setdefault(reference.original, reference)

    return list(unique.values())


def create_new_reference(reference: MediaReference, new_path: str) -> str:
    """Rewrite a reference to point at `new_path`. HTML tags keep their other attributes."""

    if reference.kind == "html":
        return HTML_SRC_PATTERN.sub(lambda match: f"src={match.group(1)}{new_path}{match.group(1)}", reference.original, count=1)

    return f"![{reference.alt}]({new_path})"


class MediaHandler:
    vault: Vault
    target_path: str
    logger: Logger

    def __init__(self, vault: Vault, target_path: str, logger: Logger | None = None):
        self.vault = vault
        self.target_path = target_path
        self.logger = logger or get_logger(__name__)

    def _candidate_paths(self, reference: MediaReference) -> list[str]:
        candidates = [reference.path]
        if reference.kind != "wikilink" and (decoded := unquote(reference.path)) != reference.path:
            candidates.append(decoded)

        return candidates

    def resolve(self, reference: MediaReference, active_note: VaultFile | None = None) -> VaultFile | None:
        """Find the vault file a reference points to.

        Tried in order: an exact file name match for wiki embeds, the path relative to the vault root,
        the path relative to the folder of the active note, and finally any file with the same base name.
        """

        if reference.is_external:
            return None

        all_files = self.vault.files()

        for candidate in self._candidate_paths(reference):
            if reference.kind == "wikilink" and (file := next((f for f in all_files if f.name == candidate), None)):
                self.logger.debug(f"Resolved {reference.original} by file name to {file.path}")
                return file

            if file := self.vault.get_file_by_path(candidate):
                self.logger.debug(f"Resolved {reference.original} by vault path to {file.path}")
                return file

            if active_note is not None and active_note.parent:
                if file := self.vault.get_file_by_path(f"{active_note.parent}/{candidate.removeprefix('./')}"):
                    self.logger.debug(f"Resolved {reference.original} relative to {active_note.path} to {file.path}")
                    return file

            basename = PurePosixPath(candidate).name
            if file := next((f for f in all_files if f.name == basename), None):
                self.logger.debug(f"Resolved {reference.original} by base name to {file.path}")
                return file

        return None

    def process_markdown(self, content: str, active_note: VaultFile | None = None) -> ProcessedContent:
        """Prepare every resolvable media reference for upload and rewrite the note to use the uploaded paths.

        References that cannot be resolved or read are reported as failures and left as written.
        """

        references = extract_media_references(content)

        self.logger.info(f"Found {len(references)} media references in {active_note.path if active_note else 'note'}")

        processed_content = content
        uploads: dict[str, MediaUpload] = {}
        failures: list[MediaFailure] = []

        for reference in references:
            if reference.is_external:
                self.logger.debug(f"Skipping external media reference {reference.path}")
                continue

            if (media_file := self.resolve(reference, active_note)) is None:
                self.logger.warning(f"Media file not found: {reference.path}")
                failures.append(MediaFailure(reference=reference.original, reason=f"Media file not found: {reference.path}"))
                continue

            target_path = resolve_target_path(self.target_path, media_file.name)

            if (existing := uploads.get(target_path)) is not None and existing.source_path != media_file.path:
                self.logger.warning(f"{media_file.path} and {existing.source_path} would both be uploaded to {target_path}")
                failures.append(
                    MediaFailure(reference=reference.original, reason=f"{target_path} is already used by {existing.source_path}")
                )
                continue

            if existing is None:
                try:
                    data = self.vault.read_binary(media_file)
                except OSError as e:
                    self.logger.exception(f"Error reading media file {media_file.path}")
                    failures.append(MediaFailure(reference=reference.original, reason=f"Error reading file: {e}"))
                    continue

                if not data:
                    self.logger.warning(f"Media file {media_file.path} is empty")
                    failures.append(MediaFailure(reference=reference.original, reason=f"Media file is empty: {media_file.path}"))
                    continue

                uploads[target_path] = MediaUpload(source_path=media_file.path, target_path=target_path, content=encode_content(data))

            processed_content = processed_content.replace(reference.original, create_new_reference(reference, f"/{target_path}"))

        if uploads:
            self.logger.info(f"Prepared {len(uploads)} media files for upload")

        if failures:
            self.logger.warning(f"Failed to process {len(failures)} media references")

        return ProcessedContent(content=processed_content, media_files=list(uploads.values()), failures=failures)
