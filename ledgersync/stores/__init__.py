"""Local and remote store implementations."""

from ledgersync.stores.base import LocalFileInfo, LocalStore, RemoteItem, RemoteStore
from ledgersync.stores.local import FilesystemLocalStore
from ledgersync.stores.s3 import S3RemoteStore

__all__ = [
    "LocalFileInfo",
    "LocalStore",
    "RemoteItem",
    "RemoteStore",
    "FilesystemLocalStore",
    "S3RemoteStore",
]
