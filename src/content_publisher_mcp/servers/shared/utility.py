import base64
import hashlib


def encode_content(content: bytes | str) -> str:
    """Base64 encode content for the GitHub contents API."""

    if isinstance(content, str):
        content = content.encode("utf-8")

    return base64.b64encode(content).decode("ascii")


def decode_content_bytes(content: str) -> bytes:
    # GitHub wraps base64 content at 60 characters
    return base64.b64decode("".join(content.split()))


def git_blob_sha(content: bytes) -> str:
    """The SHA git gives the content as a blob, which is the `sha` the contents API reports for a file."""

    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()  # noqa: S324
