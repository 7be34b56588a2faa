"""S3-backed RemoteStore."""

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ledgersync.exceptions import NotFoundError, RemoteUnavailableError, StoreError
from ledgersync.fingerprint import normalize_path
from ledgersync.stores.base import RemoteItem, RemoteStore

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _MISSING_CODES


class S3RemoteStore(RemoteStore):
    """Handles all S3 operations for a sync target.

    Remote paths map to object keys below an optional prefix. S3 has no real
    folders, so ``mkdir`` does nothing and listings are derived from keys.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        client=None,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
    ):
        """Initialize the S3 client.

        Args:
            bucket: Bucket name
            prefix: Key prefix every remote path lives under
            client: Pre-built boto3 S3 client (optional)
        """
        self.s3 = client or boto3.client(
            "s3",
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
            endpoint_url=endpoint_url,
        )
        self.bucket = bucket
        self.prefix = normalize_path(prefix)

    @classmethod
    def from_settings(cls, settings) -> "S3RemoteStore":
        """Create a store from SyncSettings."""
        if not settings.s3_bucket:
            raise StoreError("No S3 bucket configured (LEDGERSYNC_S3_BUCKET)")
        return cls(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )

    def _make_key(self, path: str) -> str:
        """Convert a remote path to an S3 key with prefix."""
        path = normalize_path(path)
        return f"{self.prefix}/{path}" if self.prefix else path

    def _strip_key(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix + "/"):
            return key[len(self.prefix) + 1 :]
        return key

    def put(self, path: str, content: bytes) -> None:
        key = self._make_key(path)
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=content)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error writing {path}: {e}")
            raise StoreError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Put {path} ({len(content)} bytes)")

    def get(self, path: str) -> bytes:
        key = self._make_key(path)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError(f"Remote file not found: {path}")
            logger.error(f"Error reading {path}: {e}")
            raise StoreError(f"Failed to read {path}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to read {path}: {e}") from e

    def delete(self, path: str) -> None:
        # delete_object succeeds for missing keys
        key = self._make_key(path)
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return
            raise StoreError(f"Failed to delete {path}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to delete {path}: {e}") from e
        logger.debug(f"Deleted {path}")

    def mkdir(self, path: str) -> None:
        return None

    def list_recursive(self, path: str) -> list[RemoteItem]:
        """List every object below a remote folder.

        The whole listing is paginated before returning; an error on any page
        raises StoreError instead of returning a partial tree.
        """
        folder = self._make_key(path)
        list_prefix = f"{folder}/" if folder else ""

        items = []
        folders = set()
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if key.endswith("/"):
                        continue
                    remote_path = self._strip_key(key)
                    items.append(
                        RemoteItem(
                            path=remote_path,
                            is_folder=False,
                            size=obj.get("Size", 0),
                            last_modified=obj["LastModified"].timestamp(),
                        )
                    )
                    parent = remote_path.rpartition("/")[0]
                    while parent and parent != normalize_path(path):
                        folders.add(parent)
                        parent = parent.rpartition("/")[0]
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing {path}: {e}")
            raise StoreError(f"Failed to list {path}: {e}") from e

        items.extend(
            RemoteItem(path=folder_path, is_folder=True, size=0, last_modified=0.0)
            for folder_path in sorted(folders)
        )
        return items

    def exists(self, path: str) -> bool:
        key = self._make_key(path)
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_missing(e):
                return False
            raise StoreError(f"Failed to check {path}: {e}") from e

    def check_available(self, root: str) -> None:
        """Check that the bucket is accessible."""
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Health check failed: {e}")
            raise RemoteUnavailableError(
                f"S3 bucket {self.bucket} is not reachable: {e}"
            ) from e
