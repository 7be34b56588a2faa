"""Configuration for ledgersync.

Settings are read from ``LEDGERSYNC_*`` environment variables (and a ``.env``
file loaded by the CLI), e.g.::

    LEDGERSYNC_LOCAL_ROOT=~/notes
    LEDGERSYNC_REMOTE_ROOT=notes
    LEDGERSYNC_S3_BUCKET=my-sync-bucket
    LEDGERSYNC_CONFLICT_STRATEGY=copy
    LEDGERSYNC_EXCLUDED_FOLDERS='[".trash", "drafts"]'
"""

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConflictStrategy(str, Enum):
    """How to resolve a path changed on both sides since the last sync."""

    COPY = "copy"
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"


class SyncSettings(BaseSettings):
    """Settings consumed by the sync engine and its collaborators."""

    model_config = SettingsConfigDict(env_prefix="LEDGERSYNC_", extra="ignore")

    local_root: Path = Path(".")
    remote_root: str = "ledgersync"
    state_dir: str = ".ledgersync"

    sync_attachments: bool = True
    max_file_size_mb: float = 50
    excluded_folders: list[str] = Field(default_factory=lambda: [".trash"])
    conflict_strategy: ConflictStrategy = ConflictStrategy.COPY

    lock_ttl_seconds: float = 180.0
    lock_refresh_seconds: float = 60.0
    lock_fail_open: bool = True
    client_type: str = "ledgersync"

    s3_bucket: str | None = None
    s3_prefix: str = ""
    s3_endpoint_url: str | None = None
    aws_region: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    log_level: str = "INFO"

    @field_validator("local_root")
    @classmethod
    def _expand_local_root(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("lock_refresh_seconds")
    @classmethod
    def _positive_refresh(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("lock_refresh_seconds must be positive")
        return value

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def ledger_path(self) -> Path:
        return self.local_root / self.state_dir / "sync-state.json"

    @property
    def legacy_ledger_path(self) -> Path:
        """Ledger location used by earlier releases, migrated on first load."""
        return self.local_root / ".sync" / "sync-state.json"
