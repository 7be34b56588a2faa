"""Sync cycle orchestration.

A cycle runs these steps in order:

    reachability check -> ledger load -> lock acquire (+ refresh thread)
    -> manifest load -> local scan -> upload -> rename detection
    -> delete remote -> remote scan -> delta -> manifest save -> ledger save

The remote is listed only right before the delta step so that the snapshot
already reflects this client's own uploads, moves and deletes.
"""

import logging
import threading
import time
from typing import Callable

from ledgersync.config import SyncSettings
from ledgersync.conflict_resolver import ConflictResolver, create_conflict_resolver
from ledgersync.cycle import CancelToken, CycleContext, ProgressSink, SyncResult
from ledgersync.exceptions import LockDeniedError, SyncCancelled
from ledgersync.ledger import LedgerStore
from ledgersync.lock import LockCoordinator
from ledgersync.manifest import RemoteManifest
from ledgersync.reconciler import Reconciler
from ledgersync.scanner import Scanner
from ledgersync.stores.base import LocalStore, RemoteStore
from ledgersync.stores.local import FilesystemLocalStore
from ledgersync.stores.s3 import S3RemoteStore

logger = logging.getLogger(__name__)

TOTAL_STEPS = 10
BUSY_MESSAGE = "Sync already in progress"
LOCKED_MESSAGE = (
    "Sync target is locked by another device performing maintenance. "
    "Try again later."
)


class SyncEngine:
    """Bidirectional sync between a LocalStore and a RemoteStore.

    One engine runs at most one cycle at a time. ``sync()`` always returns a
    SyncResult and never raises.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        ledger_store: LedgerStore,
        settings: SyncSettings | None = None,
        progress: ProgressSink | None = None,
        conflict_resolver: ConflictResolver | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the sync engine.

        Args:
            local: Local file tree
            remote: Remote content store
            ledger_store: Persistence for the sync ledger
            settings: Sync settings (read from the environment if omitted)
            progress: Optional callback receiving (message, current, total)
            conflict_resolver: Resolver for double changes (defaults to the
                configured strategy)
            clock: Time source returning POSIX seconds
        """
        self.local = local
        self.remote = remote
        self.ledger_store = ledger_store
        self.settings = settings or SyncSettings()
        self.progress = progress
        self.conflict_resolver = conflict_resolver or create_conflict_resolver(
            self.settings.conflict_strategy
        )
        self.clock = clock

        self._busy = threading.Lock()
        self._cancel_token: CancelToken | None = None

    @classmethod
    def from_settings(
        cls, settings: SyncSettings, progress: ProgressSink | None = None
    ) -> "SyncEngine":
        """Build an engine for a local directory and an S3 bucket."""
        return cls(
            local=FilesystemLocalStore(settings.local_root),
            remote=S3RemoteStore.from_settings(settings),
            ledger_store=LedgerStore(
                settings.ledger_path, legacy_path=settings.legacy_ledger_path
            ),
            settings=settings,
            progress=progress,
        )

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    def cancel(self) -> None:
        """Request cancellation of the running cycle, if any."""
        token = self._cancel_token
        if token is not None:
            logger.info("Cancellation requested")
            token.cancel()

    def _report(self, message: str, current: int) -> None:
        logger.debug(f"[{current}/{TOTAL_STEPS}] {message}")
        if self.progress is None:
            return
        try:
            self.progress(message, current, TOTAL_STEPS)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def _make_scanner(self) -> Scanner:
        return Scanner(
            self.local,
            self.remote,
            self.settings.remote_root,
            excluded_folders=self.settings.excluded_folders,
            internal_paths=[self.settings.state_dir],
            max_file_size=self.settings.max_file_size_bytes,
            sync_attachments=self.settings.sync_attachments,
        )

    def sync(self) -> SyncResult:
        """Run one sync cycle.

        Returns:
            SyncResult with counts and errors. A fatal error ends the cycle
            with ``success=False``, appends one explanatory error and leaves
            the persisted ledger and manifest untouched.
        """
        return self._run_exclusive(reset=False)

    def force_full_sync(self) -> SyncResult:
        """Forget every ledger item, then run a cycle.

        The device id survives. Hash comparison keeps identical files from
        being reported as conflicts. The reset happens while the engine is
        held, so no other cycle can interleave with it.
        """
        return self._run_exclusive(reset=True)

    def _run_exclusive(self, reset: bool) -> SyncResult:
        if not self._busy.acquire(blocking=False):
            logger.info("Sync requested while another cycle is running")
            return SyncResult.failure(BUSY_MESSAGE)

        start_time = self.clock()
        token = CancelToken()
        self._cancel_token = token
        try:
            result = self._reset_ledger() if reset else None
            if result is None:
                result = self._run_cycle(token)
        finally:
            self._cancel_token = None
            self._busy.release()

        result.duration = self.clock() - start_time
        logger.info(
            f"Sync finished in {result.duration:.1f}s: "
            f"{result.uploaded} up, {result.downloaded} down, "
            f"{result.deleted_local} deleted locally, "
            f"{result.deleted_remote} deleted remotely, "
            f"{result.renames} renames, {result.conflicts} conflicts, "
            f"{len(result.errors)} errors"
        )
        return result

    def _reset_ledger(self) -> SyncResult | None:
        """Reset ledger items; returns a failure result if that fails."""
        try:
            ledger = self.ledger_store.load()
            ledger.reset()
            self.ledger_store.save(ledger)
        except Exception as e:
            logger.error(f"Failed to reset sync state: {e}")
            return SyncResult.failure(f"Failed to reset sync state: {e}")

        logger.info("Sync state reset, running full sync")
        return None

    def _run_cycle(self, token: CancelToken) -> SyncResult:
        settings = self.settings
        result = SyncResult()
        lock: LockCoordinator | None = None
        lock_acquired = False

        try:
            self._report("Checking remote...", 0)
            self.remote.check_available(settings.remote_root)
            ledger = self.ledger_store.load()
            token.raise_if_cancelled()

            self._report("Acquiring sync lock...", 1)
            lock = LockCoordinator(
                self.remote,
                settings.remote_root,
                ledger.device_id,
                client_type=settings.client_type,
                ttl=settings.lock_ttl_seconds,
                refresh_interval=settings.lock_refresh_seconds,
                fail_open=settings.lock_fail_open,
                clock=self.clock,
            )
            if not lock.acquire():
                raise LockDeniedError(LOCKED_MESSAGE)
            lock_acquired = True
            lock.start_refresh()

            self._report("Loading remote state...", 2)
            manifest = RemoteManifest(self.remote, settings.remote_root)
            manifest.load()
            token.raise_if_cancelled()

            ctx = CycleContext(
                local=self.local,
                remote=self.remote,
                remote_root=settings.remote_root,
                ledger=ledger,
                manifest=manifest,
                cancel_token=token,
                result=result,
                clock=self.clock,
            )
            scanner = self._make_scanner()
            reconciler = Reconciler(ctx, self.conflict_resolver)

            self._report("Scanning local files...", 3)
            ctx.local_files = scanner.scan_local(ledger, skipped=ctx.local_skipped)
            token.raise_if_cancelled()

            self._report("Uploading changes...", 4)
            reconciler.upload_phase()
            token.raise_if_cancelled()

            self._report("Detecting renames...", 5)
            reconciler.rename_phase()
            token.raise_if_cancelled()

            self._report("Deleting remote files...", 6)
            reconciler.delete_remote_phase()
            token.raise_if_cancelled()

            self._report("Scanning remote files...", 7)
            ctx.remote_files = scanner.scan_remote(skipped=ctx.remote_skipped)
            token.raise_if_cancelled()

            self._report("Downloading changes...", 8)
            reconciler.delta_phase()
            token.raise_if_cancelled()

            self._report("Saving state...", 9)
            manifest.save()
            ledger.last_sync_time = self.clock()
            self.ledger_store.save(ledger)

            self._report("Sync complete", 10)
            result.success = not result.errors
        except SyncCancelled as e:
            logger.info("Sync cancelled, sync state not saved")
            result.success = False
            result.errors.append(str(e))
        except Exception as e:
            logger.error(f"Sync failed: {e}")
            result.success = False
            result.errors.append(str(e))
        finally:
            if lock is not None:
                lock.stop_refresh()
                if lock_acquired:
                    lock.release()

        return result
