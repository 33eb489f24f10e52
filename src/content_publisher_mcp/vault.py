from pathlib import Path, PurePosixPath

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, ConfigDict, Field

logger = get_logger(__name__)


class VaultFile(BaseModel):
    """A file in the vault, addressed by its vault-relative POSIX path."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="The path of the file relative to the vault root.")

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def stem(self) -> str:
        return PurePosixPath(self.path).stem

    @property
    def parent(self) -> str:
        parent = str(PurePosixPath(self.path).parent)
        return "" if parent == "." else parent


class Vault:
    """A directory of notes and attachments."""

    root: Path

    def __init__(self, root: Path | str):
        self.root = Path(root).resolve()
        self._files: list[VaultFile] | None = None

    def _is_hidden(self, path: Path) -> bool:
        return any(part.startswith(".") for part in path.relative_to(self.root).parts)

    def files(self) -> list[VaultFile]:
        """Every file in the vault sorted by path. Hidden files and folders such as `.obsidian` are skipped."""

        if self._files is None:
            self._files = sorted(
                (
                    VaultFile(path=path.relative_to(self.root).as_posix())
                    for path in self.root.rglob("*")
                    if path.is_file() and not self._is_hidden(path)
                ),
                key=lambda file: file.path,
            )

            logger.debug(f"Vault {self.root} contains {len(self._files)} files")

        return self._files

    def refresh(self) -> None:
        self._files = None

    def absolute_path(self, file: VaultFile) -> Path:
        return self.root / file.path

    def get_file_by_path(self, path: str) -> VaultFile | None:
        """Find a file by its vault-relative path. Paths leaving the vault are never resolved."""

        candidate = (self.root / path.lstrip("/")).resolve()

        if not candidate.is_relative_to(self.root) or not candidate.is_file():
            return None

        return VaultFile(path=candidate.relative_to(self.root).as_posix())

    def get_note(self, note_path: Path | str) -> VaultFile | None:
        """Find a note by a vault-relative or absolute path."""

        note_path = Path(note_path)

        if note_path.is_absolute():
            note_path = note_path.resolve()
            if not note_path.is_relative_to(self.root):
                return None
            note_path = note_path.relative_to(self.root)

        return self.get_file_by_path(note_path.as_posix())

    def read_binary(self, file: VaultFile) -> bytes:
        return self.absolute_path(file).read_bytes()

    def read_text(self, file: VaultFile) -> str:
        return self.absolute_path(file).read_text(encoding="utf-8")
