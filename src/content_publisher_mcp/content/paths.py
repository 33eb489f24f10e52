import re

REPEATED_SLASHES = re.compile(r"/+")


def normalize_repository_path(path: str) -> str:
    return REPEATED_SLASHES.sub("/", path)


def resolve_target_path(target_path: str, filename: str) -> str:
    """Join a repository directory and a filename into a repository path without leading or trailing slashes."""

    parts = [target_path.strip("/"), filename.lstrip("/")]

    return normalize_repository_path("/".join(part for part in parts if part))


def ensure_extension(filename: str, extension: str = "md") -> str:
    if not filename.endswith(f".{extension}"):
        return f"{filename}.{extension}"

    return filename
