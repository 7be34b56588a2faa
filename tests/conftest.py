"""Shared fixtures for ledgersync tests."""

import json
import time
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from ledgersync.config import SyncSettings
from ledgersync.engine import SyncEngine
from ledgersync.exceptions import NotFoundError
from ledgersync.fingerprint import normalize_path
from ledgersync.ledger import LedgerStore
from ledgersync.manifest import MANIFEST_NAME
from ledgersync.stores.base import RemoteItem, RemoteStore
from ledgersync.stores.local import FilesystemLocalStore

REMOTE_ROOT = "vault"


class InMemoryRemoteStore(RemoteStore):
    """RemoteStore keeping blobs in a dict.

    Failures can be injected per operation (and optionally per path) with
    ``fail()``.
    """

    def __init__(self, clock=time.time):
        self.clock = clock
        self.files: dict[str, tuple[bytes, float]] = {}
        self.folders: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._failures: list[tuple[str, str | None, Exception]] = []

    def fail(self, op: str, error: Exception, path: str | None = None) -> None:
        self._failures.append((op, normalize_path(path) if path else None, error))

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        for fail_op, fail_path, error in self._failures:
            if fail_op == op and (fail_path is None or fail_path == path):
                raise error

    def put(self, path: str, content: bytes) -> None:
        path = normalize_path(path)
        self._check("put", path)
        self.files[path] = (bytes(content), self.clock())

    def get(self, path: str) -> bytes:
        path = normalize_path(path)
        self._check("get", path)
        if path not in self.files:
            raise NotFoundError(f"Remote file not found: {path}")
        return self.files[path][0]

    def delete(self, path: str) -> None:
        path = normalize_path(path)
        self._check("delete", path)
        self.files.pop(path, None)

    def mkdir(self, path: str) -> None:
        path = normalize_path(path)
        self._check("mkdir", path)
        self.folders.add(path)

    def list_recursive(self, path: str) -> list[RemoteItem]:
        path = normalize_path(path)
        self._check("list_recursive", path)
        prefix = f"{path}/" if path else ""
        items = [
            RemoteItem(
                path=file_path,
                is_folder=False,
                size=len(content),
                last_modified=modified,
            )
            for file_path, (content, modified) in sorted(self.files.items())
            if file_path.startswith(prefix)
        ]
        items.extend(
            RemoteItem(path=folder, is_folder=True, size=0, last_modified=0.0)
            for folder in sorted(self.folders)
            if folder.startswith(prefix)
        )
        return items

    def exists(self, path: str) -> bool:
        path = normalize_path(path)
        self._check("exists", path)
        return path in self.files

    # Test helpers

    def read(self, rel_path: str) -> bytes | None:
        entry = self.files.get(f"{REMOTE_ROOT}/{normalize_path(rel_path)}")
        return entry[0] if entry else None

    def write(self, rel_path: str, content: bytes) -> None:
        self.files[f"{REMOTE_ROOT}/{normalize_path(rel_path)}"] = (
            content,
            self.clock(),
        )

    def manifest(self) -> dict[str, str]:
        data = self.read(MANIFEST_NAME)
        return json.loads(data) if data else {}

    def write_manifest(self, hashes: dict[str, str]) -> None:
        self.write(MANIFEST_NAME, json.dumps(hashes).encode("utf-8"))

    def content_paths(self) -> set[str]:
        """Relative paths of synced content (no lock or manifest files)."""
        prefix = f"{REMOTE_ROOT}/"
        return {
            path[len(prefix) :]
            for path in self.files
            if path.startswith(prefix)
            and not path.startswith(f"{prefix}.locks/")
            and not path.endswith(MANIFEST_NAME)
        }


def write_local(root: Path, rel_path: str, content: str | bytes) -> Path:
    """Create a file below root, with parent directories."""
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode("utf-8")
    path.write_bytes(content)
    return path


def make_settings(local_root: Path, **overrides) -> SyncSettings:
    values = {
        "local_root": local_root,
        "remote_root": REMOTE_ROOT,
        "s3_bucket": None,
        "lock_ttl_seconds": 180.0,
        "lock_refresh_seconds": 60.0,
    }
    values.update(overrides)
    return SyncSettings(**values)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def remote():
    """Create an empty in-memory remote store."""
    return InMemoryRemoteStore()


@pytest.fixture
def make_engine(temp_dir, remote):
    """Factory building engines for named devices sharing one remote."""

    def _make(device: str = "device_a", **overrides) -> SyncEngine:
        local_root = temp_dir / device
        local_root.mkdir(parents=True, exist_ok=True)
        settings = make_settings(local_root, **overrides)
        return SyncEngine(
            local=FilesystemLocalStore(local_root),
            remote=remote,
            ledger_store=LedgerStore(settings.ledger_path),
            settings=settings,
        )

    return _make


@pytest.fixture
def engine(make_engine):
    """Create an engine for a single device."""
    return make_engine()
