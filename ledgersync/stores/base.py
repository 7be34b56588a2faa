"""Abstract local and remote store interfaces consumed by the sync engine."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ledgersync.exceptions import NotFoundError, RemoteUnavailableError


@dataclass
class LocalFileInfo:
    """A local file as reported by a LocalStore."""

    path: str  # relative, forward slashes
    mtime: float
    size: int


@dataclass
class RemoteItem:
    """An entry in a remote listing."""

    path: str  # full remote path, forward slashes
    is_folder: bool
    size: int
    last_modified: float


class LocalStore(ABC):
    """Local file tree addressed by relative paths."""

    @abstractmethod
    def list_files(self) -> list[LocalFileInfo]:
        """Enumerate every file in the tree."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Read a file.

        Raises:
            NotFoundError: If the file does not exist
        """

    @abstractmethod
    def write(self, path: str, content: bytes) -> None:
        """Create or overwrite a file, creating parent directories."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a file; a missing file is not an error."""

    @abstractmethod
    def ensure_directories(self, path: str) -> None:
        """Create every ancestor directory of a file path."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a file exists."""

    @abstractmethod
    def stat(self, path: str) -> LocalFileInfo | None:
        """Return file info, or None if the file does not exist."""


class RemoteStore(ABC):
    """Remote blob store addressed by full remote paths."""

    @abstractmethod
    def put(self, path: str, content: bytes) -> None:
        """Create or overwrite a blob."""

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Read a blob.

        Raises:
            NotFoundError: If the blob does not exist
        """

    def get_or_none(self, path: str) -> bytes | None:
        """Read a blob, returning None when it does not exist."""
        try:
            return self.get(path)
        except NotFoundError:
            return None

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a blob; deleting a missing blob succeeds."""

    @abstractmethod
    def mkdir(self, path: str) -> None:
        """Ensure a folder exists."""

    @abstractmethod
    def list_recursive(self, path: str) -> list[RemoteItem]:
        """List every item below a folder."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a blob exists."""

    def check_available(self, root: str) -> None:
        """Fail if the remote cannot be reached; also ensures the root folder.

        Raises:
            RemoteUnavailableError: If the remote is unreachable
        """
        try:
            self.mkdir(root)
        except Exception as e:
            raise RemoteUnavailableError(f"Remote store is not reachable: {e}") from e
