"""Remote hash manifest.

The manifest maps relative paths to content digests and lives on the remote
itself (``<remote_root>/.ledgersync-hashes.json``), so every client can tell
whether a remote file changed since its own last sync without downloading it.
It is loaded once per cycle and written back at the end of the cycle.
"""

import json
import logging

from ledgersync.fingerprint import join_remote, normalize_path
from ledgersync.stores.base import RemoteStore

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".ledgersync-hashes.json"


class RemoteManifest:
    """In-memory copy of the remote path -> digest manifest."""

    def __init__(self, remote: RemoteStore, remote_root: str):
        self.remote = remote
        self.remote_root = remote_root
        self._hashes: dict[str, str] = {}

    @property
    def remote_path(self) -> str:
        return join_remote(self.remote_root, MANIFEST_NAME)

    def load(self) -> dict[str, str]:
        """Load the manifest; any failure yields an empty manifest."""
        try:
            data = self.remote.get_or_none(self.remote_path)
            hashes = json.loads(data.decode("utf-8")) if data else {}
            if not isinstance(hashes, dict):
                raise ValueError(f"expected an object, got {type(hashes).__name__}")
            self._hashes = {normalize_path(k): str(v) for k, v in hashes.items()}
        except Exception as e:
            logger.warning(f"Could not load remote hashes: {e}")
            self._hashes = {}

        logger.debug(f"Loaded remote manifest with {len(self)} entries")
        return dict(self._hashes)

    def save(self) -> None:
        payload = json.dumps(self._hashes, sort_keys=True).encode("utf-8")
        self.remote.put(self.remote_path, payload)
        logger.debug(f"Saved remote manifest with {len(self)} entries")

    def get(self, path: str) -> str | None:
        return self._hashes.get(normalize_path(path))

    def set(self, path: str, digest: str) -> None:
        self._hashes[normalize_path(path)] = digest

    def remove(self, path: str) -> None:
        self._hashes.pop(normalize_path(path), None)

    def __len__(self) -> int:
        return len(self._hashes)
