from logging import Logger

from fastmcp import FastMCP
from fastmcp.tools import Tool
from fastmcp.utilities.logging import get_logger

from content_publisher_mcp.clients.github import GitHubPublishingClient
from content_publisher_mcp.clients.models.github import RepositorySummary
from content_publisher_mcp.publishing.models import PlanSummary, PublishRequest, PublishResult
from content_publisher_mcp.publishing.publisher import Publisher
from content_publisher_mcp.servers.shared.annotations import DESCRIPTION, NOTE_PATH, REPOSITORY, SLUG, TITLE
from content_publisher_mcp.settings import PublisherSettings, Repository
from content_publisher_mcp.vault import Vault


class PublisherServer:
    settings: PublisherSettings
    vault: Vault
    logger: Logger

    def __init__(
        self,
        settings: PublisherSettings,
        vault: Vault,
        github_client: GitHubPublishingClient | None = None,
        logger: Logger | None = None,
    ):
        self.settings = settings
        self.vault = vault
        self.logger = logger or get_logger(name=__name__)
        self._github_client = github_client

    @property
    def github_client(self) -> GitHubPublishingClient:
        # Created on first use so the server starts without a token
        if self._github_client is None:
            self._github_client = GitHubPublishingClient.from_token(token=self.settings.require_token(), logger=self.logger)

        return self._github_client

    def publisher(self) -> Publisher:
        return Publisher(settings=self.settings, vault=self.vault, client=self.github_client, logger=self.logger)

    def register_tools(self, fastmcp: FastMCP) -> FastMCP:
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.publish_note))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.preview_note))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.validate_github_token))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.list_github_repositories))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.list_configured_repositories))

        return fastmcp

    async def publish_note(
        self,
        note_path: NOTE_PATH,
        title: TITLE = None,
        description: DESCRIPTION = None,
        slug: SLUG = None,
        repository: REPOSITORY = None,
    ) -> PublishResult:
        """Publish a note from the vault as a GitHub pull request, uploading the media it references.

        Publishing the same note again reuses the branch and the open pull request and only commits files that changed."""

        request = PublishRequest(note_path=note_path, title=title, description=description, slug=slug, repository=repository)

        return await self.publisher().publish(request)

    async def preview_note(
        self,
        note_path: NOTE_PATH,
        title: TITLE = None,
        description: DESCRIPTION = None,
        slug: SLUG = None,
        repository: REPOSITORY = None,
    ) -> PlanSummary:
        """Show the branch, paths, commit message and pull request that publishing a note would produce, without publishing it."""

        request = PublishRequest(note_path=note_path, title=title, description=description, slug=slug, repository=repository)

        publisher = Publisher(settings=self.settings, vault=self.vault, logger=self.logger)

        return PlanSummary.from_plan(publisher.prepare(request))

    async def validate_github_token(self) -> bool:
        """Check whether the configured GitHub token is valid."""

        return await self.github_client.validate_token()

    async def list_github_repositories(self) -> list[RepositorySummary]:
        """List the GitHub repositories the configured token can access, most recently updated first."""

        return await self.github_client.list_repositories()

    async def list_configured_repositories(self) -> list[Repository]:
        """List the repositories notes can be published to."""

        return self.settings.repositories
