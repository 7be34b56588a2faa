"""Action executors.

Every transfer performs its I/O first and records the new agreement point in
the ledger and remote manifest only after the I/O succeeded.
"""

import logging
from datetime import datetime, timezone

from ledgersync.cycle import CycleContext
from ledgersync.fingerprint import compute_hash, generate_conflict_name, join_remote
from ledgersync.ledger import SyncItemState

logger = logging.getLogger(__name__)


class Transfers:
    """Upload, download and delete files on behalf of a cycle."""

    def __init__(self, ctx: CycleContext):
        self.ctx = ctx

    def remote_path(self, path: str) -> str:
        return join_remote(self.ctx.remote_root, path)

    def _record(self, path: str, digest: str, size: int) -> None:
        """Record that both sides now hold ``digest`` at ``path``."""
        now = self.ctx.clock()
        info = self.ctx.local.stat(path)
        self.ctx.ledger.set_item(
            path,
            SyncItemState(
                local_mtime=info.mtime if info else now,
                remote_mtime=now,
                content_hash=digest,
                synced_at=now,
                size=info.size if info else size,
            ),
        )
        self.ctx.manifest.set(path, digest)

    def record_agreement(self, path: str, digest: str, size: int) -> None:
        """Register a path whose content already matches on both sides."""
        self._record(path, digest, size)
        logger.info(f"Registered {path} (already identical on both sides)")

    def upload(self, path: str) -> str:
        """Push the local file to the remote.

        Returns:
            Digest of the uploaded content
        """
        content = self.ctx.local.read_bytes(path)
        self.ctx.remote.put(self.remote_path(path), content)

        digest = compute_hash(content)
        self._record(path, digest, len(content))
        logger.info(f"Uploaded {path} ({len(content)} bytes)")
        return digest

    def download(self, path: str) -> str:
        """Pull the remote file into the local tree.

        Returns:
            Digest of the downloaded content
        """
        content = self.ctx.remote.get(self.remote_path(path))
        self.ctx.local.ensure_directories(path)
        self.ctx.local.write(path, content)

        digest = compute_hash(content)
        self._record(path, digest, len(content))
        logger.info(f"Downloaded {path} ({len(content)} bytes)")
        return digest

    def move_remote(self, old_path: str, new_path: str) -> str:
        """Upload ``new_path`` and drop ``old_path`` from the remote and ledger.

        Returns:
            Digest of the content now stored under new_path
        """
        content = self.ctx.local.read_bytes(new_path)
        self.ctx.remote.put(self.remote_path(new_path), content)
        self.ctx.remote.delete(self.remote_path(old_path))

        self.ctx.ledger.remove_item(old_path)
        self.ctx.manifest.remove(old_path)

        digest = compute_hash(content)
        self._record(new_path, digest, len(content))
        logger.info(f"Moved {old_path} -> {new_path} on remote")
        return digest

    def delete_remote(self, path: str) -> None:
        self.ctx.remote.delete(self.remote_path(path))
        self.forget(path)
        logger.info(f"Deleted remote file {path}")

    def delete_local(self, path: str) -> None:
        self.ctx.local.delete(path)
        self.forget(path)
        logger.info(f"Deleted local file {path}")

    def forget(self, path: str) -> None:
        """Drop ledger and manifest entries for a path."""
        self.ctx.ledger.remove_item(path)
        self.ctx.manifest.remove(path)

    def write_conflict_copy(self, path: str, when: datetime | None = None) -> str:
        """Save the local version of ``path`` as a conflict copy on both sides.

        Returns:
            The conflict copy's relative path
        """
        content = self.ctx.local.read_bytes(path)
        when = when or datetime.fromtimestamp(self.ctx.clock(), tz=timezone.utc)
        conflict_path = generate_conflict_name(path, when)

        self.ctx.local.write(conflict_path, content)
        self.ctx.remote.put(self.remote_path(conflict_path), content)

        self._record(conflict_path, compute_hash(content), len(content))
        logger.warning(f"Conflict on {path}: local version saved as {conflict_path}")
        return conflict_path
