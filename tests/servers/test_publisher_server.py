from collections.abc import AsyncGenerator
from typing import Any

import pytest
from fastmcp import FastMCP
from fastmcp.client import Client
from fastmcp.client.client import CallToolResult
from fastmcp.client.transports import FastMCPTransport

from content_publisher_mcp.clients.github import GitHubPublishingClient
from content_publisher_mcp.publishing.errors import GitHubTokenMissingError
from content_publisher_mcp.servers.publisher import PublisherServer
from content_publisher_mcp.settings import PublisherSettings
from content_publisher_mcp.vault import Vault
from tests.conftest import FakeGitHub


def get_result_from_call_tool_result(call_tool_result: CallToolResult) -> dict[str, Any]:
    assert call_tool_result.structured_content is not None
    assert isinstance(call_tool_result.structured_content, dict)
    return call_tool_result.structured_content


@pytest.fixture
def publisher_server(settings: PublisherSettings, vault: Vault, github_client: GitHubPublishingClient) -> PublisherServer:
    return PublisherServer(settings=settings, vault=vault, github_client=github_client)


@pytest.fixture
def publisher_mcp_server(publisher_server: PublisherServer) -> FastMCP:
    return publisher_server.register_tools(fastmcp=FastMCP(name="Test Content Publisher"))


@pytest.fixture
async def publisher_mcp_client(publisher_mcp_server: FastMCP) -> AsyncGenerator[Client[FastMCPTransport], Any]:
    async with Client(transport=publisher_mcp_server) as fastmcp_client:
        yield fastmcp_client


async def test_list_tools(publisher_mcp_client: Client[FastMCPTransport]):
    tools = await publisher_mcp_client.list_tools()

    assert sorted(tool.name for tool in tools) == [
        "list_configured_repositories",
        "list_github_repositories",
        "preview_note",
        "publish_note",
        "validate_github_token",
    ]


async def test_publish_note_tool(publisher_mcp_client: Client[FastMCPTransport], fake_github: FakeGitHub):
    call_tool_result = await publisher_mcp_client.call_tool("publish_note", arguments={"note_path": "posts/Hello World.md"})

    result = get_result_from_call_tool_result(call_tool_result=call_tool_result)

    assert result["pull_request_url"] == "https://github.com/octo/blog/pull/1"
    assert result["pull_request_created"] is True
    assert result["branch_name"] == "post/hello-world"
    assert len(fake_github.pulls) == 1


async def test_preview_note_tool(publisher_mcp_client: Client[FastMCPTransport], fake_github: FakeGitHub):
    call_tool_result = await publisher_mcp_client.call_tool("preview_note", arguments={"note_path": "posts/Hello World.md", "slug": "custom"})

    result = get_result_from_call_tool_result(call_tool_result=call_tool_result)

    assert result["branch_name"] == "post/custom"
    assert result["content_path"].startswith("content/posts/")
    assert result["content_path"].endswith("-custom.md")
    assert fake_github.requests == []


async def test_publish_note(publisher_server: PublisherServer):
    first = await publisher_server.publish_note(note_path="posts/Plain.md", description="Plain text")
    second = await publisher_server.publish_note(note_path="posts/Plain.md", description="Plain text")

    assert first.pull_request_created is True
    assert second.pull_request_created is False
    assert second.pull_request_url == first.pull_request_url


async def test_validate_github_token(publisher_server: PublisherServer):
    assert await publisher_server.validate_github_token() is True


async def test_list_github_repositories(publisher_server: PublisherServer):
    repositories = await publisher_server.list_github_repositories()

    assert [repository.full_name for repository in repositories] == ["octo/blog"]


async def test_list_configured_repositories(publisher_server: PublisherServer):
    repositories = await publisher_server.list_configured_repositories()

    assert [repository.full_name for repository in repositories] == ["octo/blog"]


async def test_missing_token(vault: Vault):
    publisher_server = PublisherServer(settings=PublisherSettings(), vault=vault)

    with pytest.raises(GitHubTokenMissingError):
        await publisher_server.validate_github_token()

    preview = await publisher_server.preview_note(note_path="posts/Plain.md")

    assert preview.repository == "username/my-blog"
