import asyncio
from collections.abc import Awaitable, Callable
from logging import Logger
from pathlib import Path
from typing import Literal, TypeVar

import click
import yaml
from fastmcp import FastMCP
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.utilities.logging import get_logger

from content_publisher_mcp.clients.errors.github import ClientError
from content_publisher_mcp.clients.github import GitHubPublishingClient
from content_publisher_mcp.publishing.errors import PublisherError
from content_publisher_mcp.publishing.models import PlanSummary, PublishRequest
from content_publisher_mcp.publishing.publisher import Publisher
from content_publisher_mcp.servers.publisher import PublisherServer
from content_publisher_mcp.settings import (
    DEFAULT_SETTINGS_PATH,
    SITE_PRESETS,
    TEMPLATE_VARIABLES,
    PublisherSettings,
    Repository,
    load_settings,
    save_settings,
)
from content_publisher_mcp.vault import Vault

logger: Logger = get_logger(name=__name__)

T = TypeVar("T")


def new_mcp_server(settings: PublisherSettings, vault: Vault, github_client: GitHubPublishingClient | None = None) -> FastMCP:
    mcp = FastMCP(name="Content Publisher MCP")

    mcp.add_middleware(middleware=LoggingMiddleware(include_payloads=True, logger=logger))

    publisher_server: PublisherServer = PublisherServer(settings=settings, vault=vault, github_client=github_client, logger=logger)
    _ = publisher_server.register_tools(fastmcp=mcp)

    return mcp


def run_with_client(settings: PublisherSettings, action: Callable[[GitHubPublishingClient], Awaitable[T]]) -> T:
    """Run an async action against GitHub, turning publishing and request errors into CLI errors."""

    async def run() -> T:
        client = GitHubPublishingClient.from_token(token=settings.require_token(), logger=logger)
        return await action(client)

    try:
        return asyncio.run(run())
    except (PublisherError, ClientError) as e:
        raise click.ClickException(str(e)) from e


def echo_plan(plan: PlanSummary) -> None:
    click.echo(f"Repository:   {plan.repository} (base {plan.base_branch})")
    click.echo(f"Branch:       {plan.branch_name}")
    click.echo(f"Content path: {plan.content_path}")
    click.echo(f"Commit:       {plan.commit_message}")
    click.echo(f"PR title:     {plan.pr_title}")
    for media_path in plan.media_paths:
        click.echo(f"Media:        {media_path}")
    for failure in plan.media_failures:
        click.echo(f"Media failed: {failure.reason}", err=True)


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_SETTINGS_PATH,
    envvar="CONTENT_PUBLISHER_SETTINGS",
    show_default=True,
    help="The YAML settings file",
)
@click.pass_context
def cli(ctx: click.Context, settings_path: Path):
    """Publish notes from a markdown vault to GitHub as pull requests."""

    ctx.obj = settings_path


def get_settings(ctx: click.Context) -> PublisherSettings:
    try:
        return load_settings(ctx.obj)
    except (ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Invalid settings file {ctx.obj}: {e}") from e


@cli.command()
@click.argument("note")
@click.option("--vault", "vault_path", type=click.Path(exists=True, file_okay=False, path_type=Path), required=True, help="The vault root")
@click.option("--repository", help="The configured repository to publish to, as owner/name")
@click.option("--title", help="The title of the content")
@click.option("--description", help="A brief description, used in the pull request body")
@click.option("--slug", help="The URL-friendly identifier of the content")
@click.option("--dry-run", is_flag=True, help="Show what would be published without calling GitHub")
@click.pass_context
def publish(
    ctx: click.Context,
    note: str,
    vault_path: Path,
    repository: str | None,
    title: str | None,
    description: str | None,
    slug: str | None,
    dry_run: bool,
):
    """Publish NOTE as a pull request.

    NOTE is a path to the note, either from the current directory or from the vault root.
    """

    settings = get_settings(ctx)
    vault = Vault(vault_path)

    note_path = Path(note)
    if not note_path.is_absolute() and note_path.is_file():
        note = str(note_path.resolve())

    request = PublishRequest(note_path=note, title=title, description=description, slug=slug, repository=repository)

    if dry_run:
        try:
            plan = Publisher(settings=settings, vault=vault, logger=logger).prepare(request)
        except PublisherError as e:
            raise click.ClickException(str(e)) from e

        echo_plan(PlanSummary.from_plan(plan))
        return

    async def publish_note(client: GitHubPublishingClient):
        return await Publisher(settings=settings, vault=vault, client=client, logger=logger).publish(request)

    result = run_with_client(settings, publish_note)

    for failure in result.media_failures:
        click.echo(f"Media failed: {failure.reason}", err=True)

    if result.pull_request_created:
        click.echo(f"Created pull request #{result.pull_request_number}: {result.pull_request_url}")
    else:
        click.echo(f"Pull request #{result.pull_request_number} is already open: {result.pull_request_url}")


@cli.command("validate-token")
@click.pass_context
def validate_token(ctx: click.Context):
    """Check that the configured GitHub token is valid."""

    settings = get_settings(ctx)

    async def validate(client: GitHubPublishingClient) -> bool:
        return await client.validate_token()

    if not run_with_client(settings, validate):
        raise click.ClickException("GitHub token is invalid or has insufficient permissions.")

    click.echo("GitHub token is valid!")


@cli.command("list-repositories")
@click.option("--add", "add_all", is_flag=True, help="Add every listed repository to the settings")
@click.option("--target-path", default="content/posts", show_default=True, help="The content directory for added repositories")
@click.pass_context
def list_repositories(ctx: click.Context, add_all: bool, target_path: str):
    """List the GitHub repositories the token can access."""

    settings = get_settings(ctx)

    async def fetch(client: GitHubPublishingClient):
        return await client.list_repositories()

    repositories = run_with_client(settings, fetch)

    if not repositories:
        raise click.ClickException("No repositories found or unable to fetch repositories")

    for repository in repositories:
        configured = "*" if settings.get_repository(repository.full_name) else " "
        click.echo(f"{configured} {repository.full_name} ({repository.default_branch})")

    if add_all:
        added = settings.add_repositories(
            [
                Repository(owner=repository.owner, name=repository.name, base_branch=repository.default_branch, target_path=target_path)
                for repository in repositories
            ]
        )
        save_settings(settings, ctx.obj)
        click.echo(f"Added {len(added)} {'repository' if len(added) == 1 else 'repositories'}")


@cli.command("add-repository")
@click.argument("full_name")
@click.option("--base-branch", default="main", show_default=True)
@click.option("--target-path", default="content/posts", show_default=True)
@click.option("--default", "make_default", is_flag=True, help="Publish to this repository unless another one is requested")
@click.pass_context
def add_repository(ctx: click.Context, full_name: str, base_branch: str, target_path: str, make_default: bool):
    """Add the repository FULL_NAME (owner/name) to the settings."""

    settings = get_settings(ctx)

    try:
        repository = Repository.from_full_name(full_name, base_branch=base_branch, target_path=target_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="FULL_NAME") from e

    if not settings.add_repositories([repository]):
        click.echo(f"{full_name} is already configured")

    if make_default:
        settings.default_repository = repository.full_name

    save_settings(settings, ctx.obj)
    click.echo(f"Saved settings to {ctx.obj}")


@cli.command("apply-preset")
@click.argument("preset", type=click.Choice(sorted(SITE_PRESETS)))
@click.pass_context
def apply_preset(ctx: click.Context, preset: str):
    """Use the filename template and content directory of a static site generator."""

    settings = get_settings(ctx)
    site_preset = settings.apply_preset(preset)
    save_settings(settings, ctx.obj)
    click.echo(f"Applied {preset} preset: {site_preset.target_path}/{site_preset.filename_template}")


@cli.command("template-variables")
def template_variables():
    """List the variables templates can use."""

    for variable, description in TEMPLATE_VARIABLES.items():
        click.echo(f"{variable:<12} {description}")


@cli.command("init-settings")
@click.option("--force", is_flag=True, help="Overwrite an existing settings file")
@click.pass_context
def init_settings(ctx: click.Context, force: bool):
    """Write a settings file with the default values."""

    path: Path = ctx.obj
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists, use --force to overwrite it")

    save_settings(PublisherSettings(), path)
    click.echo(f"Wrote default settings to {path}")


@cli.command("run-mcp")
@click.option("--vault", "vault_path", type=click.Path(exists=True, file_okay=False, path_type=Path), required=True, help="The vault root")
@click.option(
    "--mcp-transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="stdio",
    help="The transport to run the MCP server on",
)
@click.pass_context
def run_mcp(ctx: click.Context, vault_path: Path, mcp_transport: Literal["stdio", "streamable-http"]):
    """Serve the publishing tools over MCP."""

    mcp = new_mcp_server(settings=get_settings(ctx), vault=Vault(vault_path))
    mcp.run(transport=mcp_transport)


if __name__ == "__main__":
    cli()
