"""
Exceptions for ledgersync.
"""


class SyncError(Exception):
    """Base exception for sync operations."""


class NotFoundError(SyncError):
    """Raised when a local or remote path does not exist."""


class StoreError(SyncError):
    """Raised when a local or remote store operation fails."""


class RemoteUnavailableError(SyncError):
    """Raised when the remote store cannot be reached at cycle start."""


class LockError(SyncError):
    """Raised when the remote lock cannot be read or written."""


class LockDeniedError(LockError):
    """Raised when an unexpired exclusive lock blocks the cycle."""


class SyncCancelled(SyncError):
    """Raised when a cycle observes a cancellation request."""


class ConflictResolutionError(SyncError):
    """Raised when a conflict cannot be resolved."""
