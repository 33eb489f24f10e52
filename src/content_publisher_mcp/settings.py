import os
from pathlib import Path
from typing import Any, Self

import yaml
from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, ConfigDict, Field

from content_publisher_mcp.publishing.errors import (
    GitHubTokenMissingError,
    NoRepositoriesConfiguredError,
    RepositoryNotConfiguredError,
    UnknownPresetError,
)

logger = get_logger(__name__)

DEFAULT_SETTINGS_PATH = Path("content-publisher.yaml")

TOKEN_ENV_VARS = ["GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN"]

DEFAULT_PR_BODY_TEMPLATE = "## New Content Submission\n\n{{description}}\n\n---\n\nSubmitted via Content Publisher"


class Repository(BaseModel):
    """A repository notes are published to."""

    model_config = ConfigDict(extra="forbid")

    owner: str = Field(description="The owner of the repository.")
    name: str = Field(description="The name of the repository.")
    base_branch: str = Field(default="main", description="The branch pull requests are opened against.")
    target_path: str = Field(default="content/posts", description="The directory notes are written to.")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_full_name(cls, full_name: str, **kwargs: Any) -> Self:
        owner, _, name = full_name.partition("/")
        if not owner or not name:
            msg = f"Repository names must have the form owner/name, got {full_name!r}"
            raise ValueError(msg)

        return cls(owner=owner, name=name, **kwargs)


class MediaSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Whether media referenced by notes is uploaded.")
    target_path: str = Field(default="public/images", description="The directory media files are written to.")


class SitePreset(BaseModel):
    target_path: str
    filename_template: str


SITE_PRESETS: dict[str, SitePreset] = {
    "nextjs": SitePreset(target_path="content/posts", filename_template="{{slug}}.md"),
    "jekyll": SitePreset(target_path="_posts", filename_template="{{date:YYYY-MM-DD}}-{{slug}}.md"),
    "hugo": SitePreset(target_path="content/posts", filename_template="{{slug}}/index.md"),
}

TEMPLATE_VARIABLES: dict[str, str] = {
    "{{title}}": "The title of the note",
    "{{slug}}": "URL-friendly version of the title",
    "{{description}}": "Description from frontmatter or the publish request",
    "{{date}}": "Current date (can use format specifiers, e.g. {{date:YYYY-MM-DD}})",
    "{{tags}}": "Tags from frontmatter",
}


def default_repositories() -> list[Repository]:
    return [Repository(owner="username", name="my-blog")]


class PublisherSettings(BaseModel):
    """Everything needed to turn a note into a pull request."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    github_token: str = Field(default="", repr=False, description="The GitHub token used to publish.")
    repositories: list[Repository] = Field(default_factory=default_repositories)
    default_repository: str = Field(default="username/my-blog", description="The repository used when none is requested.")

    branch_template: str = "post/{{slug}}"
    commit_message_template: str = "Add post: {{title}}"
    pr_title_template: str = "Content: {{title}}"
    pr_body_template: str = DEFAULT_PR_BODY_TEMPLATE
    filename_template: str = "{{date:YYYY-MM-DD}}-{{slug}}.md"

    extract_frontmatter: bool = Field(default=True, description="Whether title and description are read from the note's frontmatter.")
    media: MediaSettings = Field(default_factory=MediaSettings)

    def require_token(self) -> str:
        if not self.github_token:
            raise GitHubTokenMissingError

        return self.github_token

    def get_repository(self, full_name: str) -> Repository | None:
        return next((repository for repository in self.repositories if repository.full_name == full_name), None)

    def select_repository(self, full_name: str | None = None) -> Repository:
        """Pick the requested repository, falling back to the default and then to the first one configured."""

        if not self.repositories:
            raise NoRepositoriesConfiguredError

        if full_name:
            if repository := self.get_repository(full_name):
                return repository

            raise RepositoryNotConfiguredError(repository=full_name)

        if repository := self.get_repository(self.default_repository):
            return repository

        return self.repositories[0]

    def add_repositories(self, repositories: list[Repository]) -> list[Repository]:
        added: list[Repository] = []

        for repository in repositories:
            if self.get_repository(repository.full_name) or repository.full_name in {r.full_name for r in added}:
                logger.debug(f"Repository {repository.full_name} is already configured")
                continue

            added.append(repository)

        self.repositories = [*self.repositories, *added]

        if not self.default_repository and added:
            self.default_repository = added[0].full_name

        return added

    def apply_preset(self, preset_name: str) -> SitePreset:
        if (preset := SITE_PRESETS.get(preset_name)) is None:
            raise UnknownPresetError(preset=preset_name, known_presets=sorted(SITE_PRESETS))

        self.filename_template = preset.filename_template
        self.repositories = [repository.model_copy(update={"target_path": preset.target_path}) for repository in self.repositories]

        return preset


def get_token_from_environment() -> str:
    for env_var in TOKEN_ENV_VARS:
        if token := os.environ.get(env_var):
            return token

    return ""


def load_settings(path: Path | str = DEFAULT_SETTINGS_PATH) -> PublisherSettings:
    """Load settings from a YAML file. A missing file yields the defaults."""

    path = Path(path)

    data: dict[str, Any] = {}

    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if loaded is not None and not isinstance(loaded, dict):
            msg = f"Settings file {path} must contain a mapping, got {type(loaded).__name__}"
            raise ValueError(msg)
        data = loaded or {}
    else:
        logger.info(f"Settings file {path} not found, using defaults")

    settings = PublisherSettings.model_validate(data)

    if not settings.github_token:
        settings.github_token = get_token_from_environment()

    return settings


def save_settings(settings: PublisherSettings, path: Path | str = DEFAULT_SETTINGS_PATH) -> Path:
    """Write settings to a YAML file. The GitHub token is never written to disk."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = settings.model_dump(mode="json", exclude={"github_token"})

    path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")

    return path
