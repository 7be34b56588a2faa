"""Filesystem-backed LocalStore."""

import logging
from pathlib import Path

from ledgersync.exceptions import NotFoundError, StoreError
from ledgersync.fingerprint import normalize_path
from ledgersync.stores.base import LocalFileInfo, LocalStore

logger = logging.getLogger(__name__)


class FilesystemLocalStore(LocalStore):
    """Local store rooted at a directory on disk."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _full_path(self, path: str) -> Path:
        rel = normalize_path(path)
        full = (self.root / rel).resolve()
        root = self.root.resolve()
        if full != root and root not in full.parents:
            raise StoreError(f"Path escapes local root: {path}")
        return full

    def list_files(self) -> list[LocalFileInfo]:
        if not self.root.exists():
            logger.debug(f"Local root does not exist: {self.root}")
            return []

        files = []
        for file_path in self.root.rglob("*"):
            if not file_path.is_file():
                continue
            try:
                stat_info = file_path.stat()
            except OSError as e:
                logger.warning(f"Failed to stat {file_path}: {e}")
                continue
            files.append(
                LocalFileInfo(
                    path=file_path.relative_to(self.root).as_posix(),
                    mtime=stat_info.st_mtime,
                    size=stat_info.st_size,
                )
            )
        return files

    def read_bytes(self, path: str) -> bytes:
        full_path = self._full_path(path)
        try:
            return full_path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Local file not found: {path}")
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}") from e

    def write(self, path: str, content: bytes) -> None:
        full_path = self._full_path(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(content)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e

    def delete(self, path: str) -> None:
        full_path = self._full_path(path)
        try:
            full_path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to delete {path}: {e}") from e

    def ensure_directories(self, path: str) -> None:
        self._full_path(path).parent.mkdir(parents=True, exist_ok=True)

    def exists(self, path: str) -> bool:
        return self._full_path(path).is_file()

    def stat(self, path: str) -> LocalFileInfo | None:
        full_path = self._full_path(path)
        try:
            stat_info = full_path.stat()
        except FileNotFoundError:
            return None
        return LocalFileInfo(
            path=normalize_path(path), mtime=stat_info.st_mtime, size=stat_info.st_size
        )
