"""Per-cycle state shared by the reconciliation phases."""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from ledgersync.exceptions import SyncCancelled
from ledgersync.ledger import SyncItemState, SyncLedger
from ledgersync.manifest import RemoteManifest
from ledgersync.scanner import LocalSnapshotEntry, RemoteSnapshotEntry
from ledgersync.stores.base import LocalStore, RemoteStore

# Slack allowed when falling back to remote timestamps
REMOTE_MTIME_TOLERANCE = 1.0


class ProgressSink(Protocol):
    def __call__(self, message: str, current: int, total: int) -> None: ...


@dataclass
class SyncResult:
    """Result of a sync cycle."""

    success: bool = True
    uploaded: int = 0
    downloaded: int = 0
    deleted_local: int = 0
    deleted_remote: int = 0
    conflicts: int = 0
    renames: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def total_operations(self) -> int:
        """Get total number of operations performed."""
        return (
            self.uploaded
            + self.downloaded
            + self.deleted_local
            + self.deleted_remote
            + self.conflicts
            + self.renames
        )

    @classmethod
    def failure(cls, message: str) -> "SyncResult":
        return cls(success=False, errors=[message])


class CancelToken:
    """Cooperative cancellation flag checked at phase and item boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled("Sync cancelled")


@dataclass
class CycleContext:
    """Everything a single cycle reads and mutates.

    The ledger and manifest are owned by the cycle for its whole duration;
    nothing else mutates them while it runs.
    """

    local: LocalStore
    remote: RemoteStore
    remote_root: str
    ledger: SyncLedger
    manifest: RemoteManifest
    cancel_token: CancelToken = field(default_factory=CancelToken)
    result: SyncResult = field(default_factory=SyncResult)
    clock: Callable[[], float] = time.time
    local_files: dict[str, LocalSnapshotEntry] = field(default_factory=dict)
    remote_files: dict[str, RemoteSnapshotEntry] = field(default_factory=dict)
    # Paths present on a side but filtered out of its snapshot
    local_skipped: set[str] = field(default_factory=set)
    remote_skipped: set[str] = field(default_factory=set)
    # Paths already resolved by an earlier phase of this cycle
    resolved: set[str] = field(default_factory=set)
    # New local paths held back by the upload phase for rename matching
    deferred_new: set[str] = field(default_factory=set)

    def remote_changed(
        self, path: str, item: SyncItemState, remote: RemoteSnapshotEntry | None = None
    ) -> bool:
        """Did the remote change since the ledger entry was written?

        Uses the manifest digest when there is one; otherwise, given a remote
        snapshot entry, compares its timestamp with the recorded remote mtime.
        """
        digest = self.manifest.get(path)
        if digest is not None:
            return digest != item.content_hash
        if remote is not None:
            return remote.last_modified > item.remote_mtime + REMOTE_MTIME_TOLERANCE
        return False

    def local_changed(self, path: str, item: SyncItemState) -> bool:
        local = self.local_files.get(path)
        return local is not None and local.digest != item.content_hash

    def add_error(self, message: str) -> None:
        self.result.errors.append(message)
