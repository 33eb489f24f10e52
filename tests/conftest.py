import base64
import hashlib
import json
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from logging import Logger
from pathlib import Path
from typing import Any

import httpx
import pytest
from githubkit import GitHub as GitHubKit
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.typing import RetryOption

from content_publisher_mcp.clients.github import GitHubPublishingClient, get_githubkit_client, get_retry_chain
from content_publisher_mcp.settings import PublisherSettings, Repository
from content_publisher_mcp.vault import Vault

TEST_TOKEN = "test-token"
TEST_OWNER = "octo"
TEST_REPO = "blog"
BASE_SHA = "0000000000000000000000000000000000000001"

FIXED_NOW = datetime(2024, 3, 5, 14, 7, 9, tzinfo=UTC)

# A 1x1 transparent PNG
PNG_BYTES = base64.b64decode("iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg==")

# The contents API leaves out the content of files larger than this
CONTENT_SIZE_LIMIT = 1024 * 1024


def blob_sha(content: bytes) -> str:
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()  # noqa: S324


def json_response(status_code: int, body: Any, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(status_code=status_code, json=body, headers=headers)


def retry_immediately(exc: GitHubKitGitHubException, retry_count: int) -> RetryOption:
    """Make the same retry decisions as the client, without waiting."""
    retry_option = get_retry_chain()(exc, retry_count)
    if not retry_option.do_retry:
        return retry_option
    return RetryOption(do_retry=True, retry_after=timedelta(microseconds=1))


def new_test_client(
    handler: Callable[[httpx.Request], httpx.Response], token: str = TEST_TOKEN, logger: Logger | None = None
) -> GitHubPublishingClient:
    githubkit_client: GitHubKit[Any] = get_githubkit_client(
        token=token, async_transport=httpx.MockTransport(handler), auto_retry=retry_immediately
    )
    return GitHubPublishingClient(githubkit_client=githubkit_client, logger=logger)


class FakeGitHub:
    """An in-memory stand-in for the parts of the GitHub REST API used to publish content."""

    def __init__(self, owner: str = TEST_OWNER, repo: str = TEST_REPO, token: str = TEST_TOKEN):
        self.token = token
        self.login = "octocat"
        self.repositories: dict[str, str] = {f"{owner}/{repo}": "main"}
        self.branches: dict[tuple[str, str], str] = {(f"{owner}/{repo}", "main"): BASE_SHA}
        self.files: dict[tuple[str, str, str], bytes] = {}
        self.pulls: list[dict[str, Any]] = []
        self.requests: list[tuple[str, str]] = []
        self.failures: list[tuple[str, re.Pattern[str], int, int, dict[str, str] | None]] = []
        self.commit_count = 0

    def fail(
        self, method: str, path_pattern: str, status_code: int = 500, times: int = 1, headers: dict[str, str] | None = None
    ) -> None:
        """Answer the next `times` requests matching the method and path with an error."""
        self.failures.append((method, re.compile(path_pattern), status_code, times, headers))

    def requests_to(self, method: str, path_pattern: str) -> list[str]:
        return [path for request_method, path in self.requests if request_method == method and re.search(path_pattern, path)]

    def add_file(self, repository: str, branch: str, path: str, content: bytes) -> None:
        self.files[(repository, branch, path)] = content

    def _injected_failure(self, method: str, path: str) -> httpx.Response | None:
        for index, (failure_method, pattern, status_code, times, headers) in enumerate(self.failures):
            if failure_method == method and pattern.search(path):
                if times <= 1:
                    del self.failures[index]
                else:
                    self.failures[index] = (failure_method, pattern, status_code, times - 1, headers)
                return json_response(status_code, {"message": f"Injected failure {status_code}"}, headers=headers)
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))

        if request.headers.get("Authorization") != f"token {self.token}":
            return json_response(401, {"message": "Bad credentials"})

        if failure := self._injected_failure(method, path):
            return failure

        body: dict[str, Any] = json.loads(request.content) if request.content else {}

        routes: list[tuple[str, str, Callable[..., httpx.Response]]] = [
            ("GET", r"/user", self._get_user),
            ("GET", r"/user/repos", self._list_repositories),
            ("GET", r"/repos/(?P<repository>[^/]+/[^/]+)", self._get_repository),
            ("GET", r"/repos/(?P<repository>[^/]+/[^/]+)/git/ref/heads/(?P<branch>.+)", self._get_ref),
            ("POST", r"/repos/(?P<repository>[^/]+/[^/]+)/git/refs", self._create_ref),
            ("GET", r"/repos/(?P<repository>[^/]+/[^/]+)/contents/(?P<path>.+)", self._get_contents),
            ("PUT", r"/repos/(?P<repository>[^/]+/[^/]+)/contents/(?P<path>.+)", self._put_contents),
            ("GET", r"/repos/(?P<repository>[^/]+/[^/]+)/pulls", self._list_pulls),
            ("POST", r"/repos/(?P<repository>[^/]+/[^/]+)/pulls", self._create_pull),
        ]

        for route_method, pattern, handler in routes:
            if route_method == method and (match := re.fullmatch(pattern, path)):
                repository = match.groupdict().get("repository")
                if repository is not None and repository not in self.repositories:
                    return json_response(404, {"message": "Not Found"})
                return handler(request=request, body=body, **match.groupdict())

        return json_response(404, {"message": "Not Found"})

    def _get_user(self, request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        return json_response(200, {"login": self.login, "name": "The Octocat"})

    def _list_repositories(self, request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        return json_response(
            200,
            [
                {"full_name": full_name, "default_branch": default_branch, "private": False}
                for full_name, default_branch in self.repositories.items()
            ],
        )

    def _get_repository(self, request: httpx.Request, body: dict[str, Any], repository: str) -> httpx.Response:
        return json_response(200, {"full_name": repository, "default_branch": self.repositories[repository], "private": False})

    def _get_ref(self, request: httpx.Request, body: dict[str, Any], repository: str, branch: str) -> httpx.Response:
        if (sha := self.branches.get((repository, branch))) is None:
            return json_response(404, {"message": "Not Found"})

        return json_response(200, {"ref": f"refs/heads/{branch}", "object": {"sha": sha, "type": "commit"}})

    def _create_ref(self, request: httpx.Request, body: dict[str, Any], repository: str) -> httpx.Response:
        branch = body["ref"].removeprefix("refs/heads/")

        if (repository, branch) in self.branches:
            return json_response(422, {"message": "Reference already exists"})

        # New branches start with the content of the branch they were created from
        source_branch = next((name for (repo, name), sha in self.branches.items() if repo == repository and sha == body["sha"]), None)
        self.branches[(repository, branch)] = body["sha"]
        for (repo, file_branch, path), content in list(self.files.items()):
            if repo == repository and file_branch == source_branch:
                self.files[(repository, branch, path)] = content

        return json_response(201, {"ref": body["ref"], "object": {"sha": body["sha"], "type": "commit"}})

    def _get_contents(self, request: httpx.Request, body: dict[str, Any], repository: str, path: str) -> httpx.Response:
        branch = request.url.params.get("ref") or self.repositories[repository]

        if (content := self.files.get((repository, branch, path))) is None:
            return json_response(404, {"message": "Not Found"})

        if len(content) > CONTENT_SIZE_LIMIT:
            encoding, encoded = "none", ""
        else:
            encoding, encoded = "base64", base64.encodebytes(content).decode("ascii")

        return json_response(
            200, {"type": "file", "path": path, "sha": blob_sha(content), "encoding": encoding, "content": encoded, "size": len(content)}
        )

    def _put_contents(self, request: httpx.Request, body: dict[str, Any], repository: str, path: str) -> httpx.Response:
        branch = body["branch"]

        if (repository, branch) not in self.branches:
            return json_response(404, {"message": "Branch not found"})

        existing = self.files.get((repository, branch, path))
        if existing is not None and body.get("sha") != blob_sha(existing):
            return json_response(422, {"message": 'Invalid request.\n\n"sha" wasn\'t supplied.'})

        content = base64.b64decode(body["content"])
        self.files[(repository, branch, path)] = content
        self.commit_count += 1
        commit_sha = f"{self.commit_count:040d}"
        self.branches[(repository, branch)] = commit_sha

        return json_response(
            200 if existing is not None else 201, {"content": {"path": path, "sha": blob_sha(content)}, "commit": {"sha": commit_sha}}
        )

    def _open_pulls(self, repository: str, head: str | None = None, base: str | None = None) -> list[dict[str, Any]]:
        return [
            pull
            for pull in self.pulls
            if pull["repository"] == repository and pull["state"] == "open" and head in (None, pull["head"]) and base in (None, pull["base"])
        ]

    def _pull_payload(self, pull: dict[str, Any]) -> dict[str, Any]:
        return {
            "number": pull["number"],
            "html_url": f"https://github.com/{pull['repository']}/pull/{pull['number']}",
            "title": pull["title"],
            "body": pull["body"],
            "state": pull["state"],
            "head": {"ref": pull["head"]},
            "base": {"ref": pull["base"]},
        }

    def _list_pulls(self, request: httpx.Request, body: dict[str, Any], repository: str) -> httpx.Response:
        head = request.url.params.get("head")
        branch = head.split(":", 1)[1] if head else None

        return json_response(200, [self._pull_payload(pull) for pull in self._open_pulls(repository, branch, request.url.params.get("base"))])

    def _create_pull(self, request: httpx.Request, body: dict[str, Any], repository: str) -> httpx.Response:
        if (repository, body["head"]) not in self.branches:
            return json_response(422, {"message": "Validation Failed", "errors": [{"resource": "PullRequest", "field": "head", "code": "invalid"}]})

        if self._open_pulls(repository, body["head"]):
            message = f"A pull request already exists for {repository.split('/')[0]}:{body['head']}."
            return json_response(422, {"message": "Validation Failed", "errors": [{"resource": "PullRequest", "code": "custom", "message": message}]})

        pull = {
            "repository": repository,
            "number": len(self.pulls) + 1,
            "title": body["title"],
            "body": body["body"],
            "state": "open",
            "head": body["head"],
            "base": body["base"],
        }
        self.pulls.append(pull)

        return json_response(201, self._pull_payload(pull))


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def github_client(fake_github: FakeGitHub) -> GitHubPublishingClient:
    return new_test_client(fake_github.handle)


@pytest.fixture
def settings() -> PublisherSettings:
    return PublisherSettings(
        github_token=TEST_TOKEN,
        repositories=[Repository(owner=TEST_OWNER, name=TEST_REPO)],
        default_repository=f"{TEST_OWNER}/{TEST_REPO}",
    )


def write_file(root: Path, relative_path: str, content: str | bytes) -> Path:
    path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


POST_NOTE = """\
---
title: Hello World
description: My first post
tags: [python, notes]
---
# Hello

![[diagram.png]]

![Screenshot](attachments/screen%20shot.png)

<img src="assets/photo.jpg" alt="A photo">
"""


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    write_file(root, "posts/Hello World.md", POST_NOTE)
    write_file(root, "attachments/diagram.png", PNG_BYTES)
    write_file(root, "attachments/screen shot.png", PNG_BYTES + b"screen")
    write_file(root, "posts/assets/photo.jpg", b"\xff\xd8\xff\xe0jpeg")
    write_file(root, "posts/Plain.md", "Just some text without frontmatter.\n")
    write_file(root, ".obsidian/workspace.json", "{}")
    return root


@pytest.fixture
def vault(vault_root: Path) -> Vault:
    return Vault(vault_root)
