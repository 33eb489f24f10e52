import os
from collections.abc import Awaitable, Callable
from logging import Logger, getLogger
from typing import Any, Literal, Self, overload
from urllib.parse import quote

import httpx
from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from githubkit.retry import RetryChainDecision, RetryRateLimit, RetryServerError
from githubkit.typing import RetryDecisionFunc

from content_publisher_mcp.clients.errors.github import (
    ClientError,
    RequestError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ResourceTypeMismatchError,
)
from content_publisher_mcp.clients.models.github import (
    AuthenticatedUser,
    FileCommit,
    GitReference,
    PullRequest,
    RepositoryFile,
    RepositorySummary,
)
from content_publisher_mcp.servers.shared.utility import encode_content

NOT_FOUND_ERROR = 404
UNPROCESSABLE_ENTITY_ERROR = 422

DEFAULT_TIMEOUT = 30.0

DEFAULT_REPOSITORIES_PER_PAGE = 100

# Keys that carry file payloads and are kept out of the logs
REDACTED_PAYLOAD_KEYS = {"content"}


def get_github_token() -> str:
    env_vars: list[str] = ["GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN"]
    for env_var in env_vars:
        if os.environ.get(env_var):
            return os.environ[env_var]
    msg = "GITHUB_TOKEN or GITHUB_PERSONAL_ACCESS_TOKEN must be set"
    raise ValueError(msg)


def get_retry_chain() -> RetryChainDecision:
    # Retry server errors up to 3 times
    retry_server_error = RetryServerError()

    # Retry rate limit errors up to 3 times, waiting for the limit to reset
    retry_rate_limit = RetryRateLimit(max_retry=3)

    return RetryChainDecision(
        retry_server_error,
        retry_rate_limit,
    )


def get_githubkit_client(
    token: str | None = None, async_transport: httpx.AsyncBaseTransport | None = None, auto_retry: RetryDecisionFunc | None = None
) -> GitHubKit[TokenAuthStrategy]:
    """Build a githubkit client authenticated with the token.

    The HTTP cache is disabled: files are read back right after they are committed.
    """

    return GitHubKit[TokenAuthStrategy](
        auth=TokenAuthStrategy(token=token or get_github_token()),
        timeout=DEFAULT_TIMEOUT,
        http_cache=False,
        async_transport=async_transport,
        auto_retry=auto_retry or get_retry_chain(),
    )


def quote_path(path: str) -> str:
    return quote(path.strip("/"), safe="/")


def redact_payload(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: ("<redacted>" if key in REDACTED_PAYLOAD_KEYS else value) for key, value in payload.items()}


def extract_error_message(response: httpx.Response) -> str:
    """Flatten the message and validation errors GitHub returns into a single string."""

    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if not isinstance(body, dict):
        return str(body)

    messages: list[str] = []

    if message := body.get("message"):
        messages.append(str(message))

    for error in body.get("errors") or []:
        if isinstance(error, dict) and (error_message := error.get("message")):
            messages.append(str(error_message))
        elif isinstance(error, str):
            messages.append(error)

    return ". ".join(messages) or response.reason_phrase


def is_already_exists_error(response: httpx.Response) -> bool:
    return response.status_code == UNPROCESSABLE_ENTITY_ERROR and "already exists" in extract_error_message(response).lower()


class GitHubPublishingClient:
    githubkit_client: GitHubKit[Any]
    logger: Logger

    log_requests: bool
    log_responses: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_client: GitHubKit[Any] | None = None,
        logger: Logger | None = None,
        log_requests: bool = True,
        log_responses: bool = False,
        log_on_error: bool = True,
    ):
        self.githubkit_client = githubkit_client or get_githubkit_client()
        self.logger = logger or getLogger(__name__)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_on_error = log_on_error

    @classmethod
    def from_token(cls, token: str, logger: Logger | None = None) -> Self:
        return cls(githubkit_client=get_githubkit_client(token=token), logger=logger)

    def _get_loggers(
        self, log_request: bool | None = None, log_response: bool | None = None, log_on_error: bool | None = None
    ) -> tuple[Callable[[str], Any], Callable[[str], Any], Callable[[str], Any]]:
        request_logger = self.logger.info if log_request or self.log_requests else self.logger.debug
        response_logger = self.logger.info if log_response or self.log_responses else self.logger.debug
        error_logger = self.logger.exception if log_on_error or self.log_on_error else self.logger.debug
        return request_logger, response_logger, error_logger

    @overload
    async def _perform_rest_request(
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[False] = False,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,
    ) -> Any | None: ...

    @overload
    async def _perform_rest_request(
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[True] = True,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,
    ) -> Any: ...

    async def _perform_rest_request(
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: bool | None = None,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,
    ) -> Any | None:
        """Perform a request and extract the decoded JSON response.

        The JSON is returned as-is rather than githubkit's parsed models, the client models only need a handful of fields.

        Args:
            action: The action being performed.
            log_request: Whether to log the request.
            log_response: Whether to log the response.
            log_on_error: Whether to log on error.
            error_on_not_found: Whether to raise an error if the resource is not found.
            method: The githubkit REST method to call.
            request_args: The arguments of the githubkit method.

        Raises:
            ResourceNotFoundError: If the resource is not found and error_on_not_found is True.
            ResourceAlreadyExistsError: If the resource being created already exists.
            RequestError: If the request fails.
        """

        request_logger, response_logger, error_logger = self._get_loggers(
            log_request=log_request, log_response=log_response, log_on_error=log_on_error
        )

        request_logger(f"Performing {action} using {method.__name__} with kwargs {redact_payload(request_args)}")

        try:
            response: GitHubKitResponse[Any] = await method(**request_args)
        except GitHubKitRequestFailed as e:
            raw_response: httpx.Response = e.response.raw_response

            if e.response.status_code == NOT_FOUND_ERROR:
                if error_on_not_found:
                    raise ResourceNotFoundError(action=action, resource=e.request.url.path) from e

                return None

            if is_already_exists_error(raw_response):
                raise ResourceAlreadyExistsError(action=action, resource=e.request.url.path, message=extract_error_message(raw_response)) from e

            message = extract_error_message(raw_response)

            error_logger(f"RequestFailed error performing {action} using {method.__name__}: {e.response.status_code} {message}")

            raise RequestError(action=action, message=f"{e.response.status_code}: {message}", status_code=e.response.status_code) from e
        except GitHubKitGitHubException as e:
            error_logger(f"Error performing {action} using {method.__name__} with kwargs {redact_payload(request_args)}: {e}")

            raise RequestError(action=action, message=str(e)) from e

        extracted_response = response.json() if response.content else None

        response_logger(f"Completed {action} using {method.__name__} with status {response.status_code}")

        return extracted_response

    async def get_authenticated_user(self) -> AuthenticatedUser:
        """Get the user the token belongs to."""

        user = await self._perform_rest_request(
            action="Get authenticated user",
            error_on_not_found=True,
            method=self.githubkit_client.rest.users.async_get_authenticated,
        )

        return AuthenticatedUser.from_api(user)

    async def validate_token(self) -> bool:
        """Check that the token can authenticate against GitHub."""

        try:
            user = await self.get_authenticated_user()
        except ClientError as e:
            self.logger.warning(f"GitHub token validation failed: {e}")
            return False

        self.logger.info(f"GitHub token is valid for user {user.login}")

        return True

    async def list_repositories(self, per_page: int = DEFAULT_REPOSITORIES_PER_PAGE) -> list[RepositorySummary]:
        """List the repositories the authenticated user has access to, most recently updated first."""

        repositories = await self._perform_rest_request(
            action="List repositories",
            error_on_not_found=True,
            method=self.githubkit_client.rest.repos.async_list_for_authenticated_user,
            sort="updated",
            per_page=per_page,
        )

        return [RepositorySummary.from_api(repository) for repository in repositories]

    @overload
    async def get_repository(self, owner: str, repo: str, error_on_not_found: Literal[True]) -> RepositorySummary: ...

    @overload
    async def get_repository(self, owner: str, repo: str, error_on_not_found: bool = False) -> RepositorySummary | None: ...

    async def get_repository(self, owner: str, repo: str, error_on_not_found: bool = False) -> RepositorySummary | None:
        """Get a repository."""

        if repository := await self._perform_rest_request(
            action="Get repository",
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.repos.async_get,
            owner=owner,
            repo=repo,
        ):
            return RepositorySummary.from_api(repository)

        return None

    @overload
    async def get_git_ref(self, owner: str, repo: str, ref: str, error_on_not_found: Literal[True]) -> GitReference: ...

    @overload
    async def get_git_ref(self, owner: str, repo: str, ref: str, error_on_not_found: bool = False) -> GitReference | None: ...

    async def get_git_ref(self, owner: str, repo: str, ref: str, error_on_not_found: bool = False) -> GitReference | None:
        """Get details about a git ref from the repository.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            ref: The ref to get, for example `heads/main`.
            error_on_not_found: Whether to raise an error if the ref is not found.
        """

        if git_ref := await self._perform_rest_request(
            action="Get git ref",
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.git.async_get_ref,
            owner=owner,
            repo=repo,
            ref=quote_path(ref),
        ):
            if isinstance(git_ref, list):
                # GitHub answers with every ref sharing the prefix when there is no exact match
                raise ResourceTypeMismatchError(action="Get git ref", resource=ref, expected_type="ref", actual_type="list of refs")

            return GitReference.from_api(git_ref)

        return None

    async def branch_exists(self, owner: str, repo: str, branch: str) -> bool:
        return await self.get_git_ref(owner=owner, repo=repo, ref=f"heads/{branch}") is not None

    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> GitReference:
        """Create a branch pointing at the provided commit SHA.

        Raises:
            ResourceAlreadyExistsError: If the branch already exists.
        """

        git_ref = await self._perform_rest_request(
            action="Create branch",
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_ref,
            owner=owner,
            repo=repo,
            ref=f"refs/heads/{branch}",
            sha=sha,
        )

        return GitReference.from_api(git_ref)

    @overload
    async def get_file(self, owner: str, repo: str, path: str, ref: str, error_on_not_found: Literal[True]) -> RepositoryFile: ...

    @overload
    async def get_file(self, owner: str, repo: str, path: str, ref: str, error_on_not_found: bool = False) -> RepositoryFile | None: ...

    async def get_file(self, owner: str, repo: str, path: str, ref: str, error_on_not_found: bool = False) -> RepositoryFile | None:
        """Get a file from a branch of a repository.

        Files over 1 MB come back without their content, only with their blob SHA.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            path: The path of the file.
            ref: The branch, tag or commit to read the file from.
            error_on_not_found: Whether to raise an error if the file is not found.
        """

        if file := await self._perform_rest_request(
            action="Get file",
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.repos.async_get_content,
            owner=owner,
            repo=repo,
            path=quote_path(path),
            ref=ref,
        ):
            if not isinstance(file, dict) or file.get("type", "file") != "file":
                actual_type = "directory" if isinstance(file, list) else str(file.get("type"))
                raise ResourceTypeMismatchError(action="Get file", resource=path, expected_type="file", actual_type=actual_type)

            return RepositoryFile.from_api(file)

        return None

    async def create_or_update_file(
        self, owner: str, repo: str, path: str, content: bytes | str, message: str, branch: str, sha: str | None = None
    ) -> FileCommit:
        """Commit a file to a branch. Updating an existing file requires its current blob SHA."""

        body: dict[str, Any] = {
            "message": message,
            "content": encode_content(content),
            "branch": branch,
        }

        if sha is not None:
            body["sha"] = sha

        file_commit = await self._perform_rest_request(
            action="Create or update file",
            error_on_not_found=True,
            method=self.githubkit_client.rest.repos.async_create_or_update_file_contents,
            owner=owner,
            repo=repo,
            path=quote_path(path),
            **body,
        )

        return FileCommit.from_api(file_commit)

    async def find_open_pull_request(self, owner: str, repo: str, head: str, base: str | None = None) -> PullRequest | None:
        """Find the open pull request merging the `head` branch, if there is one."""

        filters: dict[str, Any] = {"head": f"{owner}:{head}", "state": "open"}
        if base is not None:
            filters["base"] = base

        pull_requests = await self._perform_rest_request(
            action="Find open pull request",
            error_on_not_found=True,
            method=self.githubkit_client.rest.pulls.async_list,
            owner=owner,
            repo=repo,
            **filters,
        )

        if not pull_requests:
            return None

        return PullRequest.from_api(pull_requests[0])

    async def create_pull_request(self, owner: str, repo: str, title: str, body: str, head: str, base: str) -> PullRequest:
        """Open a pull request.

        Raises:
            ResourceAlreadyExistsError: If a pull request for the branch is already open.
        """

        pull_request = await self._perform_rest_request(
            action="Create pull request",
            error_on_not_found=True,
            method=self.githubkit_client.rest.pulls.async_create,
            owner=owner,
            repo=repo,
            title=title,
            body=body,
            head=head,
            base=base,
        )

        return PullRequest.from_api(pull_request)
