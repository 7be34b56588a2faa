"""Remote lock coordination.

Each device writes its own non-exclusive lock file under
``<remote_root>/.locks/`` while a cycle runs. Many of these may coexist; they
are advisory and do not serialize cycles from different devices. Correctness
against concurrent writers comes from digest comparison in the reconciler.

A maintenance operation may hold the well-known exclusive lock
(``.locks/exclusive.json``); while it is unexpired no cycle may start.
"""

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable

from ledgersync.exceptions import LockError
from ledgersync.fingerprint import join_remote
from ledgersync.stores.base import RemoteStore

logger = logging.getLogger(__name__)

LOCK_DIR = ".locks"
EXCLUSIVE_LOCK_NAME = "exclusive.json"
DEFAULT_LOCK_TTL = 180.0
DEFAULT_REFRESH_INTERVAL = 60.0


@dataclass
class SyncLock:
    """Lock record stored on the remote."""

    device_id: str
    client_type: str
    timestamp: float
    updated_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_json(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "SyncLock":
        raw = json.loads(data.decode("utf-8"))
        return cls(
            device_id=str(raw["device_id"]),
            client_type=str(raw.get("client_type", "")),
            timestamp=float(raw.get("timestamp", 0.0)),
            updated_at=float(raw.get("updated_at", 0.0)),
            expires_at=float(raw["expires_at"]),
        )


class LockCoordinator:
    """Acquire, refresh and release this device's sync lock."""

    def __init__(
        self,
        remote: RemoteStore,
        remote_root: str,
        device_id: str,
        client_type: str = "ledgersync",
        ttl: float = DEFAULT_LOCK_TTL,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the coordinator.

        Args:
            remote: Remote store holding the lock files
            remote_root: Sync root on the remote
            device_id: This device's stable identifier
            client_type: Free-form client label written into the lock
            ttl: Seconds a lock stays valid without refresh
            refresh_interval: Seconds between refreshes (shorter than ttl)
            fail_open: If True, I/O errors during acquire let the cycle proceed;
                if False they raise LockError
            clock: Time source returning POSIX seconds
        """
        if refresh_interval >= ttl:
            raise ValueError("refresh_interval must be shorter than ttl")

        self.remote = remote
        self.remote_root = remote_root
        self.device_id = device_id
        self.client_type = client_type
        self.ttl = ttl
        self.refresh_interval = refresh_interval
        self.fail_open = fail_open
        self.clock = clock

        self._created_at: float | None = None
        self._stop_event = threading.Event()
        self._refresh_thread: threading.Thread | None = None

    @property
    def lock_dir(self) -> str:
        return join_remote(self.remote_root, LOCK_DIR)

    @property
    def lock_path(self) -> str:
        return f"{self.lock_dir}/sync_{self.device_id}.json"

    @property
    def exclusive_lock_path(self) -> str:
        return f"{self.lock_dir}/{EXCLUSIVE_LOCK_NAME}"

    def _new_lock(self, created_at: float | None = None) -> SyncLock:
        now = self.clock()
        return SyncLock(
            device_id=self.device_id,
            client_type=self.client_type,
            timestamp=created_at if created_at is not None else now,
            updated_at=now,
            expires_at=now + self.ttl,
        )

    def read_exclusive_lock(self) -> SyncLock | None:
        """Return the exclusive lock if one exists and parses."""
        data = self.remote.get_or_none(self.exclusive_lock_path)
        if not data:
            return None
        try:
            return SyncLock.from_json(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable exclusive lock: {e}")
            return None

    def acquire(self) -> bool:
        """Write this device's lock unless an exclusive lock is active.

        Returns:
            False if an unexpired exclusive lock exists, True otherwise

        Raises:
            LockError: On I/O errors when fail_open is disabled
        """
        try:
            exclusive = self.read_exclusive_lock()
            if exclusive and not exclusive.is_expired(self.clock()):
                logger.info(f"Exclusive lock held by {exclusive.device_id}")
                return False

            self.remote.mkdir(self.lock_dir)
            self._created_at = self.clock()
            self.remote.put(self.lock_path, self._new_lock(self._created_at).to_json())
            logger.debug(f"Acquired sync lock {self.lock_path}")
            return True
        except Exception as e:
            if not self.fail_open:
                raise LockError(f"Lock acquisition failed: {e}") from e
            logger.warning(f"Lock acquisition error, proceeding: {e}")
            return True

    def refresh(self) -> None:
        """Rewrite the lock with a fresh expiry; failures are logged only."""
        try:
            lock = self._new_lock(self._created_at)
            self.remote.put(self.lock_path, lock.to_json())
            logger.debug(f"Refreshed sync lock until {lock.expires_at:.0f}")
        except Exception as e:
            logger.warning(f"Lock refresh failed: {e}")

    def start_refresh(self) -> None:
        """Start the background refresh task."""
        if self._refresh_thread is not None:
            return
        self._stop_event.clear()
        self._refresh_thread = threading.Thread(
            target=self._refresh_loop, name="ledgersync-lock-refresh", daemon=True
        )
        self._refresh_thread.start()

    def stop_refresh(self) -> None:
        """Stop the refresh task and wait for it to exit."""
        self._stop_event.set()
        if self._refresh_thread is not None:
            self._refresh_thread.join()
            self._refresh_thread = None

    def _refresh_loop(self) -> None:
        while not self._stop_event.wait(self.refresh_interval):
            self.refresh()

    def release(self) -> None:
        """Delete this device's lock; failures are left to the TTL."""
        try:
            self.remote.delete(self.lock_path)
            logger.debug(f"Released sync lock {self.lock_path}")
        except Exception as e:
            logger.warning(f"Failed to release lock: {e}")
