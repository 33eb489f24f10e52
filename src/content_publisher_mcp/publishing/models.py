from typing import Any

from pydantic import BaseModel, Field

from content_publisher_mcp.content.media import MediaFailure, MediaUpload
from content_publisher_mcp.content.templates import RenderedTemplates
from content_publisher_mcp.settings import Repository


class PublishRequest(BaseModel):
    """What to publish and the values that override the note's frontmatter."""

    note_path: str = Field(description="The path of the note, relative to the vault root or absolute.")
    title: str | None = Field(default=None, description="The title of the content. Defaults to the frontmatter title or the note name.")
    description: str | None = Field(default=None, description="A brief description, used in the pull request body.")
    slug: str | None = Field(default=None, description="The URL-friendly identifier. Defaults to a slug of the title.")
    repository: str | None = Field(default=None, description="The repository to publish to, as owner/name. Defaults to the default one.")


class PublishPlan(BaseModel):
    """Everything the publish pipeline will write, computed without touching GitHub."""

    repository: Repository
    note_path: str = Field(description="The vault-relative path of the note.")
    metadata: dict[str, Any] = Field(description="The metadata templates were rendered with.")
    templates: RenderedTemplates
    content_path: str = Field(description="The path the note is written to in the repository.")
    content: str = Field(repr=False, description="The note content as it will be committed.")
    media_files: list[MediaUpload] = Field(default_factory=list)
    media_failures: list[MediaFailure] = Field(default_factory=list)

    @property
    def branch_name(self) -> str:
        return self.templates.branch_name


class PlanSummary(BaseModel):
    """A publish plan without file contents, for display."""

    repository: str
    base_branch: str
    branch_name: str
    commit_message: str
    pr_title: str
    pr_body: str
    content_path: str
    media_paths: list[str]
    media_failures: list[MediaFailure]

    @classmethod
    def from_plan(cls, plan: PublishPlan) -> "PlanSummary":
        return cls(
            repository=plan.repository.full_name,
            base_branch=plan.repository.base_branch,
            branch_name=plan.branch_name,
            commit_message=plan.templates.commit_message,
            pr_title=plan.templates.pr_title,
            pr_body=plan.templates.pr_body,
            content_path=plan.content_path,
            media_paths=[media_file.target_path for media_file in plan.media_files],
            media_failures=plan.media_failures,
        )


class PublishResult(BaseModel):
    """The outcome of a publish run."""

    pull_request_url: str = Field(description="The URL of the pull request.")
    pull_request_number: int = Field(description="The number of the pull request.")
    pull_request_created: bool = Field(description="Whether this run opened the pull request, rather than finding it already open.")
    branch_name: str = Field(description="The branch the content was committed to.")
    branch_created: bool = Field(description="Whether this run created the branch, rather than reusing it.")
    content_path: str = Field(description="The path of the note in the repository.")
    uploaded_files: list[str] = Field(default_factory=list, description="The paths committed by this run.")
    unchanged_files: list[str] = Field(default_factory=list, description="The paths skipped because the branch already had them.")
    media_failures: list[MediaFailure] = Field(default_factory=list, description="The media that could not be published.")
