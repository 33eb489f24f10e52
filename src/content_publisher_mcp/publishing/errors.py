from typing import Literal

ExtraInfoType = dict[str, str | None]

PublishStage = Literal["branch", "content", "pull_request"]


class PublisherError(Exception):
    """An error from the content publisher."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class GitHubTokenMissingError(PublisherError):
    def __init__(self):
        super().__init__(
            message="GitHub token not configured. Set github_token in the settings file or the GITHUB_TOKEN environment variable."
        )


class NoRepositoriesConfiguredError(PublisherError):
    def __init__(self):
        super().__init__(message="No repositories configured. Please add at least one repository to the settings.")


class RepositoryNotConfiguredError(PublisherError):
    def __init__(self, repository: str):
        super().__init__(message="The repository is not configured.", extra_info={"repository": repository})


class UnknownPresetError(PublisherError):
    def __init__(self, preset: str, known_presets: list[str]):
        super().__init__(message="Unknown site preset.", extra_info={"preset": preset, "known_presets": ", ".join(known_presets)})


class InvalidBranchNameError(PublisherError):
    def __init__(self, template_output: str):
        super().__init__(message="The branch template produced an invalid branch name.", extra_info={"branch": template_output})


class NoteNotFoundError(PublisherError):
    def __init__(self, note_path: str):
        super().__init__(message="The note could not be found in the vault.", extra_info={"note": note_path})


class PublishError(PublisherError):
    """A stage of the publish pipeline failed. Re-running the publish resumes where it stopped."""

    stage: PublishStage

    def __init__(self, stage: PublishStage, message: str, branch: str | None = None):
        self.stage = stage
        super().__init__(message=f"Failed to publish: {message}", extra_info={"stage": stage, "branch": branch})
