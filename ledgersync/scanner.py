"""Local and remote snapshot scanning."""

import logging
from dataclasses import dataclass

from ledgersync.fingerprint import (
    compute_hash,
    is_binary_file,
    is_under,
    normalize_path,
)
from ledgersync.ledger import SyncLedger
from ledgersync.lock import LOCK_DIR
from ledgersync.manifest import MANIFEST_NAME
from ledgersync.stores.base import LocalStore, RemoteStore

logger = logging.getLogger(__name__)


@dataclass
class LocalSnapshotEntry:
    """A local file as seen at the start of a cycle."""

    mtime: float
    size: int
    digest: str


@dataclass
class RemoteSnapshotEntry:
    """A remote file as seen before the delta phase."""

    size: int
    last_modified: float


class Scanner:
    """Build per-cycle snapshots of the local and remote trees."""

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        remote_root: str,
        excluded_folders: list[str] | None = None,
        internal_paths: list[str] | None = None,
        max_file_size: int | None = None,
        sync_attachments: bool = True,
    ):
        """Initialize the scanner.

        Args:
            local: Local store to enumerate
            remote: Remote store to list
            remote_root: Sync root on the remote
            excluded_folders: Local folder prefixes never synced
            internal_paths: Local state paths never synced (e.g. the ledger dir)
            max_file_size: Skip local files larger than this many bytes
            sync_attachments: If False, skip non-text files
        """
        self.local = local
        self.remote = remote
        self.remote_root = normalize_path(remote_root)
        self.excluded_folders = [normalize_path(p) for p in excluded_folders or []]
        self.internal_paths = [normalize_path(p) for p in internal_paths or []]
        self.max_file_size = max_file_size
        self.sync_attachments = sync_attachments

    def is_excluded(self, path: str) -> bool:
        return any(
            is_under(path, prefix)
            for prefix in self.excluded_folders + self.internal_paths
        )

    def is_filtered(self, path: str, size: int) -> bool:
        """Check the user-facing filters: folders, file size, attachments."""
        if self.is_excluded(path):
            return True
        if self.max_file_size is not None and size > self.max_file_size:
            logger.debug(f"Skipping {path}: {size} bytes exceeds limit")
            return True
        return not self.sync_attachments and is_binary_file(path)

    def scan_local(
        self, ledger: SyncLedger, skipped: set[str] | None = None
    ) -> dict[str, LocalSnapshotEntry]:
        """Snapshot the local tree.

        Files whose mtime and size match the ledger reuse the ledger digest
        without being read. A different file with identical mtime and size
        would go unnoticed; that risk is accepted.

        Args:
            ledger: Ledger supplying cached digests
            skipped: If given, collects paths that exist but are not synced

        Returns:
            Dictionary mapping relative paths to LocalSnapshotEntry
        """
        files: dict[str, LocalSnapshotEntry] = {}
        hashed = 0

        for info in self.local.list_files():
            path = normalize_path(info.path)
            if self.is_filtered(path, info.size):
                if skipped is not None:
                    skipped.add(path)
                continue

            item = ledger.get_item(path)
            if item and info.mtime == item.local_mtime and info.size == item.size:
                digest = item.content_hash
            else:
                try:
                    digest = compute_hash(self.local.read_bytes(path))
                except Exception as e:
                    logger.warning(f"Could not read {path}, skipping: {e}")
                    if skipped is not None:
                        skipped.add(path)
                    continue
                hashed += 1

            files[path] = LocalSnapshotEntry(
                mtime=info.mtime, size=info.size, digest=digest
            )

        logger.debug(f"Scanned {len(files)} local files ({hashed} hashed)")
        return files

    def scan_remote(
        self, skipped: set[str] | None = None
    ) -> dict[str, RemoteSnapshotEntry]:
        """Snapshot the remote tree below the sync root.

        Listing errors propagate; a partial remote snapshot would look like
        remote deletions.

        Args:
            skipped: If given, collects paths that exist but are not synced

        Returns:
            Dictionary mapping relative paths to RemoteSnapshotEntry
        """
        files: dict[str, RemoteSnapshotEntry] = {}
        prefix = f"{self.remote_root}/" if self.remote_root else ""

        for item in self.remote.list_recursive(self.remote_root):
            if item.is_folder:
                continue
            full_path = normalize_path(item.path)
            if prefix and not full_path.startswith(prefix):
                continue
            rel_path = full_path[len(prefix) :]
            if not rel_path or self.is_internal_remote(rel_path):
                continue
            if self.is_filtered(rel_path, item.size):
                if skipped is not None:
                    skipped.add(rel_path)
                continue
            files[rel_path] = RemoteSnapshotEntry(
                size=item.size, last_modified=item.last_modified
            )

        logger.debug(f"Scanned {len(files)} remote files")
        return files

    @staticmethod
    def is_internal_remote(rel_path: str) -> bool:
        """Check for control files stored next to synced content."""
        name = rel_path.rsplit("/", 1)[-1]
        if name == MANIFEST_NAME:
            return True
        return is_under(rel_path, LOCK_DIR) or rel_path.startswith(".ledgersync")
