import base64
from collections.abc import Callable
from datetime import UTC, datetime
from logging import Logger
from pathlib import PurePosixPath

from fastmcp.utilities.logging import get_logger

from content_publisher_mcp.clients.errors.github import ClientError, ResourceAlreadyExistsError
from content_publisher_mcp.clients.github import GitHubPublishingClient
from content_publisher_mcp.clients.models.github import PullRequest
from content_publisher_mcp.content.frontmatter import create_metadata, extract_frontmatter
from content_publisher_mcp.content.media import MediaFailure, MediaHandler, ProcessedContent
from content_publisher_mcp.content.paths import ensure_extension, resolve_target_path
from content_publisher_mcp.content.templates import TemplateSet, process_templates, sanitize_branch_name
from content_publisher_mcp.publishing.errors import NoteNotFoundError, PublishError, PublisherError
from content_publisher_mcp.publishing.models import PublishPlan, PublishRequest, PublishResult
from content_publisher_mcp.servers.shared.utility import git_blob_sha
from content_publisher_mcp.settings import PublisherSettings
from content_publisher_mcp.vault import Vault

TEMPLATE_FIELDS = {"branch_template", "commit_message_template", "pr_title_template", "pr_body_template", "filename_template"}


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Publisher:
    """Publishes a note as a pull request: branch, media commits, content commit, pull request.

    Every stage checks what already exists on GitHub first, so publishing the same note again
    resumes a partially failed run instead of failing on the branch or pull request it left behind.
    """

    settings: PublisherSettings
    client: GitHubPublishingClient | None
    vault: Vault
    logger: Logger

    def __init__(
        self,
        settings: PublisherSettings,
        vault: Vault,
        client: GitHubPublishingClient | None = None,
        logger: Logger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.client = client
        self.vault = vault
        self.logger = logger or get_logger(__name__)
        self.clock = clock

    @property
    def github(self) -> GitHubPublishingClient:
        if self.client is None:
            raise PublisherError(message="A GitHub client is required to publish.")

        return self.client

    def prepare(self, request: PublishRequest) -> PublishPlan:
        """Work out what publishing the note would write, without calling GitHub."""

        repository = self.settings.select_repository(request.repository)

        if (note := self.vault.get_note(request.note_path)) is None:
            raise NoteNotFoundError(note_path=request.note_path)

        markdown = self.vault.read_text(note)
        now = self.clock()

        frontmatter = extract_frontmatter(markdown)[0] if self.settings.extract_frontmatter else {}

        overrides = {
            "title": request.title or frontmatter.get("title") or note.stem,
            "description": request.description,
            "slug": request.slug,
        }

        metadata = create_metadata(markdown, overrides=overrides, use_frontmatter=self.settings.extract_frontmatter, now=now)

        templates = TemplateSet.model_validate(self.settings.model_dump(include=TEMPLATE_FIELDS))
        rendered = process_templates(templates, metadata, now=now)
        rendered = rendered.model_copy(
            update={
                "branch_name": sanitize_branch_name(rendered.branch_name),
                "filename": ensure_extension(rendered.filename),
            }
        )

        if self.settings.media.enabled:
            media_handler = MediaHandler(vault=self.vault, target_path=self.settings.media.target_path, logger=self.logger)
            processed = media_handler.process_markdown(markdown, active_note=note)
        else:
            processed = ProcessedContent(content=markdown)

        return PublishPlan(
            repository=repository,
            note_path=note.path,
            metadata=metadata,
            templates=rendered,
            content_path=resolve_target_path(repository.target_path, rendered.filename),
            content=processed.content,
            media_files=processed.media_files,
            media_failures=processed.failures,
        )

    async def publish(self, request: PublishRequest) -> PublishResult:
        plan = self.prepare(request)

        return await self.publish_plan(plan)

    async def publish_plan(self, plan: PublishPlan) -> PublishResult:
        """Run the publish pipeline for a prepared plan.

        Raises:
            PublishError: If the branch, the content file or the pull request could not be written.
        """

        repository = plan.repository

        self.logger.info(f"Publishing {plan.note_path} to {repository.full_name} on branch {plan.branch_name}")

        branch_created = await self._ensure_branch(plan)

        uploaded_files: list[str] = []
        unchanged_files: list[str] = []
        media_failures: list[MediaFailure] = list(plan.media_failures)

        for media_file in plan.media_files:
            try:
                changed = await self._upload_file(
                    plan,
                    path=media_file.target_path,
                    content=base64.b64decode(media_file.content),
                    message=f"Add media: {PurePosixPath(media_file.target_path).name}",
                )
            except ClientError as e:
                self.logger.error(f"Failed to upload media {media_file.source_path}: {e}")
                media_failures.append(MediaFailure(reference=media_file.source_path, reason=f"Upload failed: {e}"))
                continue

            (uploaded_files if changed else unchanged_files).append(media_file.target_path)

        try:
            changed = await self._upload_file(
                plan, path=plan.content_path, content=plan.content.encode("utf-8"), message=plan.templates.commit_message
            )
        except ClientError as e:
            raise PublishError(stage="content", message=str(e), branch=plan.branch_name) from e

        (uploaded_files if changed else unchanged_files).append(plan.content_path)

        pull_request, pull_request_created = await self._ensure_pull_request(plan)

        self.logger.info(f"Pull request for {plan.note_path}: {pull_request.url}")

        return PublishResult(
            pull_request_url=pull_request.url,
            pull_request_number=pull_request.number,
            pull_request_created=pull_request_created,
            branch_name=plan.branch_name,
            branch_created=branch_created,
            content_path=plan.content_path,
            uploaded_files=uploaded_files,
            unchanged_files=unchanged_files,
            media_failures=media_failures,
        )

    async def _ensure_branch(self, plan: PublishPlan) -> bool:
        """Create the branch from the base branch. Returns False when the branch already existed."""

        repository = plan.repository
        owner, repo = repository.owner, repository.name

        try:
            if await self.github.branch_exists(owner=owner, repo=repo, branch=plan.branch_name):
                self.logger.info(f"Branch {plan.branch_name} already exists, reusing it")
                return False

            base_ref = await self.github.get_git_ref(owner=owner, repo=repo, ref=f"heads/{repository.base_branch}")
            if base_ref is None:
                raise PublishError(
                    stage="branch", message=f"Base branch {repository.base_branch} not found in {repository.full_name}", branch=plan.branch_name
                )

            await self.github.create_branch(owner=owner, repo=repo, branch=plan.branch_name, sha=base_ref.sha)
        except ResourceAlreadyExistsError:
            self.logger.info(f"Branch {plan.branch_name} was created concurrently, reusing it")
            return False
        except ClientError as e:
            raise PublishError(stage="branch", message=str(e), branch=plan.branch_name) from e

        self.logger.info(f"Created branch {plan.branch_name} from {repository.base_branch}")

        return True

    async def _upload_file(self, plan: PublishPlan, path: str, content: bytes, message: str) -> bool:
        """Commit a file to the branch. Returns False when the branch already holds identical content.

        Files are compared by blob SHA, GitHub leaves the content of large files out of the response.
        """

        owner, repo = plan.repository.owner, plan.repository.name

        existing = await self.github.get_file(owner=owner, repo=repo, path=path, ref=plan.branch_name)

        if existing is not None and existing.sha == git_blob_sha(content):
            self.logger.info(f"{path} is unchanged on {plan.branch_name}, skipping")
            return False

        await self.github.create_or_update_file(
            owner=owner,
            repo=repo,
            path=path,
            content=content,
            message=message,
            branch=plan.branch_name,
            sha=existing.sha if existing is not None else None,
        )

        self.logger.info(f"Committed {path} to {plan.branch_name}")

        return True

    async def _ensure_pull_request(self, plan: PublishPlan) -> tuple[PullRequest, bool]:
        """Open the pull request unless one is already open for the branch."""

        repository = plan.repository
        owner, repo = repository.owner, repository.name

        try:
            if existing := await self.github.find_open_pull_request(owner=owner, repo=repo, head=plan.branch_name, base=repository.base_branch):
                self.logger.info(f"Pull request #{existing.number} is already open for {plan.branch_name}")
                return existing, False

            try:
                pull_request = await self.github.create_pull_request(
                    owner=owner,
                    repo=repo,
                    title=plan.templates.pr_title,
                    body=plan.templates.pr_body,
                    head=plan.branch_name,
                    base=repository.base_branch,
                )
            except ResourceAlreadyExistsError:
                # Opened elsewhere between the lookup and the create
                if existing := await self.github.find_open_pull_request(owner=owner, repo=repo, head=plan.branch_name):
                    return existing, False
                raise
        except ClientError as e:
            raise PublishError(stage="pull_request", message=str(e), branch=plan.branch_name) from e

        return pull_request, True
