"""Bidirectional file synchronization.

This package keeps a local file tree and a remote content store in sync:
- SyncEngine: Runs sync cycles (upload, rename detection, delete, delta)
- SyncLedger / LedgerStore: Last agreed state per path, persisted locally
- LockCoordinator: Advisory per-device lock on the remote
- ConflictResolver: Copy, local-wins and remote-wins strategies
- SyncSettings: Environment-driven configuration
"""

from ledgersync.config import ConflictStrategy, SyncSettings
from ledgersync.conflict_resolver import (
    ConflictResolver,
    CopyResolver,
    LocalWinsResolver,
    RemoteWinsResolver,
    create_conflict_resolver,
)
from ledgersync.cycle import CancelToken, SyncResult
from ledgersync.engine import SyncEngine
from ledgersync.exceptions import (
    ConflictResolutionError,
    LockDeniedError,
    LockError,
    NotFoundError,
    RemoteUnavailableError,
    StoreError,
    SyncCancelled,
    SyncError,
)
from ledgersync.ledger import LedgerStore, SyncItemState, SyncLedger
from ledgersync.lock import LockCoordinator, SyncLock

__all__ = [
    # Engine
    "SyncEngine",
    "SyncResult",
    "CancelToken",
    # State
    "LedgerStore",
    "SyncItemState",
    "SyncLedger",
    "LockCoordinator",
    "SyncLock",
    # Conflicts
    "ConflictResolver",
    "CopyResolver",
    "LocalWinsResolver",
    "RemoteWinsResolver",
    "create_conflict_resolver",
    # Configuration
    "ConflictStrategy",
    "SyncSettings",
    # Exceptions
    "ConflictResolutionError",
    "LockDeniedError",
    "LockError",
    "NotFoundError",
    "RemoteUnavailableError",
    "StoreError",
    "SyncCancelled",
    "SyncError",
]
