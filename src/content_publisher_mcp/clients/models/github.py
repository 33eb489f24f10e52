from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from content_publisher_mcp.servers.shared.utility import decode_content_bytes


class AuthenticatedUser(BaseModel):
    """The user the GitHub token belongs to."""

    login: str = Field(description="The login of the user.")
    name: str | None = Field(default=None, description="The display name of the user.")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Self:
        return cls(login=data["login"], name=data.get("name"))


class RepositorySummary(BaseModel):
    """A repository the authenticated user has access to."""

    model_config = ConfigDict(frozen=True)

    full_name: str = Field(description="The full name of the repository, in the form owner/name.")
    default_branch: str = Field(description="The default branch of the repository.")
    private: bool = Field(default=False, description="Whether the repository is private.")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Self:
        return cls(full_name=data["full_name"], default_branch=data["default_branch"], private=data.get("private", False))

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[1]


class GitReference(BaseModel):
    """A git reference."""

    name: str = Field(description="The name of the reference.")
    sha: str = Field(description="The SHA of the reference.")
    ref_type: str = Field(description="The type of the reference.")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Self:
        return cls(name=data["ref"], sha=data["object"]["sha"], ref_type=data["object"]["type"])


class RepositoryFile(BaseModel):
    """A file stored in a repository branch."""

    path: str = Field(description="The path of the file.")
    sha: str = Field(description="The blob SHA of the file.")
    content: bytes | None = Field(default=None, description="The decoded content of the file, when GitHub returned it.")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Self:
        content: bytes | None = None
        if data.get("encoding") == "base64" and data.get("content") is not None:
            content = decode_content_bytes(data["content"])

        return cls(path=data["path"], sha=data["sha"], content=content)


class FileCommit(BaseModel):
    """The result of creating or updating a file."""

    path: str = Field(description="The path of the file.")
    blob_sha: str = Field(description="The blob SHA of the new file content.")
    commit_sha: str = Field(description="The SHA of the commit that wrote the file.")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Self:
        return cls(path=data["content"]["path"], blob_sha=data["content"]["sha"], commit_sha=data["commit"]["sha"])


class PullRequest(BaseModel):
    """A pull request."""

    number: int = Field(description="The number of the pull request.")
    url: str = Field(description="The URL of the pull request on github.com.")
    title: str = Field(description="The title of the pull request.")
    state: str = Field(description="The state of the pull request.")
    head: str = Field(description="The branch the pull request merges from.")
    base: str = Field(description="The branch the pull request merges into.")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Self:
        return cls(
            number=data["number"],
            url=data["html_url"],
            title=data["title"],
            state=data["state"],
            head=data["head"]["ref"],
            base=data["base"]["ref"],
        )
