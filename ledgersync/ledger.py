"""Sync ledger: the last state both sides agreed on, per path.

A ledger entry for a path means local and remote both held content with the
recorded digest when the entry was written. No entry means the path has never
completed a sync. The ledger is owned by a single sync cycle and persisted
atomically at its end; a stale ledger on disk only causes re-comparison.

Stored as: <local_root>/<state_dir>/sync-state.json
"""

import json
import logging
import os
import secrets
import string
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path

from ledgersync.fingerprint import normalize_path

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1
_DEVICE_ALPHABET = string.ascii_lowercase + string.digits


def generate_device_id() -> str:
    """Generate a random device identifier such as ``device-k3j9x0a1b2c4``."""
    suffix = "".join(secrets.choice(_DEVICE_ALPHABET) for _ in range(12))
    return f"device-{suffix}"


@dataclass
class SyncItemState:
    """Last synced state of a single file."""

    local_mtime: float
    remote_mtime: float
    content_hash: str
    synced_at: float
    size: int

    @classmethod
    def from_dict(cls, data: dict) -> "SyncItemState":
        return cls(
            local_mtime=float(data["local_mtime"]),
            remote_mtime=float(data["remote_mtime"]),
            content_hash=str(data["content_hash"]),
            synced_at=float(data["synced_at"]),
            size=int(data["size"]),
        )


@dataclass
class SyncLedger:
    """Per-path sync records plus ledger-wide metadata."""

    version: int = LEDGER_VERSION
    items: dict[str, SyncItemState] = field(default_factory=dict)
    last_sync_time: float = 0.0
    device_id: str = field(default_factory=generate_device_id)

    def get_item(self, path: str) -> SyncItemState | None:
        return self.items.get(normalize_path(path))

    def set_item(self, path: str, state: SyncItemState) -> None:
        self.items[normalize_path(path)] = state

    def remove_item(self, path: str) -> None:
        self.items.pop(normalize_path(path), None)

    def all_items(self) -> dict[str, SyncItemState]:
        """Return a copy of all tracked items."""
        return dict(self.items)

    def paths(self) -> list[str]:
        return list(self.items)

    def reset(self) -> None:
        """Forget every item so the next cycle re-compares everything.

        The device id is kept.
        """
        self.items = {}
        self.last_sync_time = 0.0

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "items": {path: asdict(item) for path, item in self.items.items()},
            "last_sync_time": self.last_sync_time,
            "device_id": self.device_id,
        }


class LedgerStore:
    """Load and save a SyncLedger as JSON on the local disk."""

    def __init__(self, path: Path, legacy_path: Path | None = None):
        """Initialize the ledger store.

        Args:
            path: Ledger file location
            legacy_path: Older ledger location migrated on first load (optional)
        """
        self.path = Path(path)
        self.legacy_path = Path(legacy_path) if legacy_path else None

    def load(self) -> SyncLedger:
        """Load the ledger from disk.

        Never raises: a missing, unreadable or differently versioned file
        yields an empty ledger (keeping a readable device id when there is one).

        Returns:
            The loaded SyncLedger
        """
        self._migrate_legacy()

        if not self.path.exists():
            logger.debug(f"No ledger found at {self.path}")
            return SyncLedger()

        try:
            data = json.loads(self.path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read ledger {self.path}, starting fresh: {e}")
            return SyncLedger()

        if not isinstance(data, dict):
            logger.warning(f"Ledger {self.path} is malformed, starting fresh")
            return SyncLedger()

        ledger = SyncLedger()
        device_id = data.get("device_id")
        if isinstance(device_id, str) and device_id:
            ledger.device_id = device_id

        if data.get("version") != LEDGER_VERSION:
            logger.info(
                f"Ledger version {data.get('version')!r} != {LEDGER_VERSION}, "
                f"resetting sync state"
            )
            return ledger

        try:
            ledger.items = {
                normalize_path(path): SyncItemState.from_dict(item)
                for path, item in data.get("items", {}).items()
            }
            ledger.last_sync_time = float(data.get("last_sync_time", 0.0))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ledger {self.path} has invalid items, resetting: {e}")
            ledger.reset()

        logger.debug(f"Loaded ledger with {len(ledger.items)} entries")
        return ledger

    def save(self, ledger: SyncLedger) -> None:
        """Write the ledger atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(ledger.to_dict(), indent=2, sort_keys=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=".sync-state-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.error(f"Failed to save ledger {self.path}: {e}")
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Saved ledger with {len(ledger.items)} entries")

    def _migrate_legacy(self) -> None:
        if self.legacy_path is None or self.path.exists():
            return
        if not self.legacy_path.exists():
            return

        logger.info(f"Migrating ledger from {self.legacy_path} to {self.path}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(self.legacy_path, self.path)
        except OSError as e:
            logger.warning(f"Ledger migration failed: {e}")
            return

        try:
            self.legacy_path.parent.rmdir()
        except OSError:
            # Legacy directory still holds other files.
            pass
