"""Three-way reconciliation phases.

Each phase compares the cycle's snapshots with the ledger (the last agreed
state) and the remote manifest (the last known remote digests) and decides a
per-path action. Phases run in a fixed order and a path resolved by one phase
is not revisited by a later one in the same cycle:

1. Upload: local changes are pushed, or resolved as conflicts when the remote
   changed too.
2. Rename detection: a new local path whose digest matches a path deleted
   locally becomes a remote move instead of delete + upload.
3. Delete remote: local deletions propagate when the remote is unchanged.
4. Delta: remote changes are pulled. Local changes were already pushed by
   this point, so a remote that differs from the ledger is simply newer.

Per-item failures are recorded on the result and never stop a phase.
"""

import logging

from ledgersync.conflict_resolver import ConflictResolver
from ledgersync.cycle import CycleContext
from ledgersync.exceptions import ConflictResolutionError
from ledgersync.transfers import Transfers

logger = logging.getLogger(__name__)


class Reconciler:
    """Run the reconciliation phases of one cycle."""

    def __init__(self, ctx: CycleContext, resolver: ConflictResolver):
        self.ctx = ctx
        self.resolver = resolver
        self.transfers = Transfers(ctx)

    def _item_error(self, action: str, path: str, error: Exception) -> None:
        message = f"{action} error {path}: {error}"
        logger.error(message)
        self.ctx.add_error(message)

    def _resolve_conflict(self, path: str) -> None:
        logger.debug(f"Resolving conflict on {path} ({self.resolver.strategy.value})")
        try:
            self.resolver.resolve_conflict(path, self.transfers)
        except Exception as e:
            raise ConflictResolutionError(f"Conflict resolution failed: {e}") from e
        self.ctx.result.conflicts += 1

    def _deleted_locally(self) -> dict[str, str]:
        """Index ledger paths gone locally with an unchanged remote, by digest."""
        ctx = self.ctx
        index: dict[str, str] = {}
        for path, item in sorted(ctx.ledger.all_items().items()):
            if path in ctx.local_files or path in ctx.local_skipped:
                continue
            if path in ctx.resolved or ctx.remote_changed(path, item):
                continue
            index.setdefault(item.content_hash, path)
        return index

    # ── Step 1: upload ────────────────────────────────────────────────────

    def upload_phase(self) -> None:
        """Push local changes, detecting conflicts with remote changes."""
        ctx = self.ctx
        rename_sources = self._deleted_locally()

        for path, local in sorted(ctx.local_files.items()):
            ctx.cancel_token.raise_if_cancelled()

            item = ctx.ledger.get_item(path)
            if item and local.digest == item.content_hash:
                continue

            try:
                if item is None:
                    remote_digest = ctx.manifest.get(path)
                    if remote_digest is None:
                        if local.digest in rename_sources:
                            logger.debug(f"Deferring {path} to rename detection")
                            ctx.deferred_new.add(path)
                            continue
                        self.transfers.upload(path)
                        ctx.result.uploaded += 1
                    elif remote_digest == local.digest:
                        self.transfers.record_agreement(path, local.digest, local.size)
                    else:
                        logger.info(f"{path} created independently on both sides")
                        self._resolve_conflict(path)
                elif ctx.manifest.get(path) == local.digest:
                    # Same edit on both sides, or a stale ledger after an aborted cycle
                    self.transfers.record_agreement(path, local.digest, local.size)
                elif ctx.remote_changed(path, item):
                    logger.info(f"{path} modified on both sides since last sync")
                    self._resolve_conflict(path)
                else:
                    self.transfers.upload(path)
                    ctx.result.uploaded += 1
                ctx.resolved.add(path)
            except Exception as e:
                self._item_error("Upload", path, e)

    # ── Step 1.5: rename detection ────────────────────────────────────────

    def rename_phase(self) -> None:
        """Turn matching delete + create pairs into remote moves.

        New files without a matching deleted path are uploaded normally. Each
        deleted path is consumed by at most one new path.
        """
        ctx = self.ctx
        if not ctx.deferred_new:
            return

        sources = self._deleted_locally()
        for new_path in sorted(ctx.deferred_new):
            ctx.cancel_token.raise_if_cancelled()

            digest = ctx.local_files[new_path].digest
            old_path = sources.pop(digest, None)
            try:
                if old_path is None:
                    self.transfers.upload(new_path)
                    ctx.result.uploaded += 1
                else:
                    logger.info(f"Rename detected: {old_path} -> {new_path}")
                    self.transfers.move_remote(old_path, new_path)
                    ctx.result.renames += 1
                    ctx.resolved.add(old_path)
                ctx.resolved.add(new_path)
            except Exception as e:
                if old_path is not None:
                    # Keep the old remote copy until a later cycle retries the move
                    ctx.resolved.add(old_path)
                self._item_error("Rename", new_path, e)

        ctx.deferred_new.clear()

    # ── Step 2: delete remote ─────────────────────────────────────────────

    def delete_remote_phase(self) -> None:
        """Propagate local deletions when the remote did not change."""
        ctx = self.ctx
        for path, item in sorted(ctx.ledger.all_items().items()):
            ctx.cancel_token.raise_if_cancelled()

            if path in ctx.local_files or path in ctx.resolved:
                continue
            if path in ctx.local_skipped:
                logger.debug(f"{path} still exists locally but is not synced")
                continue

            try:
                if not ctx.remote.exists(self.transfers.remote_path(path)):
                    logger.info(f"Ghost-file cleanup: {path} (deleted on both sides)")
                    self.transfers.forget(path)
                    ctx.resolved.add(path)
                    continue
                if ctx.remote_changed(path, item):
                    # Delta downloads the newer remote version
                    logger.info(f"Not deleting {path}: remote changed after sync")
                    continue
                self.transfers.delete_remote(path)
                ctx.result.deleted_remote += 1
                ctx.resolved.add(path)
            except Exception as e:
                self._item_error("Delete remote", path, e)

    # ── Step 3: delta ─────────────────────────────────────────────────────

    def delta_phase(self) -> None:
        """Pull remote changes and apply remote deletions locally."""
        ctx = self.ctx
        items = ctx.ledger.all_items()

        for path, remote in sorted(ctx.remote_files.items()):
            ctx.cancel_token.raise_if_cancelled()

            if path in ctx.resolved or path in ctx.local_skipped:
                continue
            local = ctx.local_files.get(path)
            item = items.get(path)

            try:
                if local is None:
                    if item is None:
                        self.transfers.download(path)
                        ctx.result.downloaded += 1
                    elif ctx.remote_changed(path, item, remote):
                        # Deleted locally but changed remotely: remote wins
                        self.transfers.download(path)
                        ctx.result.downloaded += 1
                elif item is not None:
                    if ctx.remote_changed(path, item, remote) and not ctx.local_changed(
                        path, item
                    ):
                        self.transfers.download(path)
                        ctx.result.downloaded += 1
            except Exception as e:
                self._item_error("Download", path, e)

        self._apply_remote_deletions()

    def _apply_remote_deletions(self) -> None:
        ctx = self.ctx
        for path, item in sorted(ctx.ledger.all_items().items()):
            ctx.cancel_token.raise_if_cancelled()

            if path in ctx.remote_files or path in ctx.remote_skipped:
                continue
            if path in ctx.resolved:
                continue

            local = ctx.local_files.get(path)
            if local is None:
                if path in ctx.local_skipped:
                    continue
                logger.info(f"Ghost-file cleanup: {path} (deleted on both sides)")
                self.transfers.forget(path)
                continue

            if local.digest == item.content_hash:
                try:
                    self.transfers.delete_local(path)
                    ctx.result.deleted_local += 1
                except Exception as e:
                    self._item_error("Delete local", path, e)
            else:
                # Deleted remotely but edited locally: keep the edit
                try:
                    self.transfers.upload(path)
                    ctx.result.uploaded += 1
                except Exception as e:
                    self._item_error("Re-upload", path, e)
