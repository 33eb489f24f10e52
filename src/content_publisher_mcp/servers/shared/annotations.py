from typing import Annotated

from pydantic import Field

NOTE_PATH_DESCRIPTION = "The path of the note to publish, relative to the root of the vault. For example, 'posts/My Post.md'."
NOTE_PATH = Annotated[str, Field(description=NOTE_PATH_DESCRIPTION)]

TITLE_DESCRIPTION = "The title of the content. If not provided, the frontmatter title or the note name is used."
TITLE = Annotated[str | None, Field(description=TITLE_DESCRIPTION)]

DESCRIPTION_DESCRIPTION = "A brief description of the content, used in the pull request body."
DESCRIPTION = Annotated[str | None, Field(description=DESCRIPTION_DESCRIPTION)]

SLUG_DESCRIPTION = "The URL-friendly identifier of the content. If not provided, it is generated from the title."
SLUG = Annotated[str | None, Field(description=SLUG_DESCRIPTION)]

REPOSITORY_DESCRIPTION = "The configured repository to publish to, as owner/name. If not provided, the default repository is used."
REPOSITORY = Annotated[str | None, Field(description=REPOSITORY_DESCRIPTION)]
