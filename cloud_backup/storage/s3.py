"""S3 object store authenticated through the credential broker."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from datetime import UTC
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cloud_backup.errors import StorageError
from cloud_backup.storage import CloudFile

if TYPE_CHECKING:
    from cloud_backup.credentials import CredentialBroker, TemporaryCredentials

logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 error codes meaning the credentials themselves are no longer accepted
AUTH_ERROR_CODES = frozenset({"ExpiredToken", "InvalidAccessKeyId", "InvalidToken", "TokenRefreshRequired"})


def _default_client_factory(credentials: TemporaryCredentials, region: str) -> Any:
    return boto3.client("s3", region_name=region, **credentials.as_boto3_kwargs())


class S3ObjectStore:
    """List and verify a bucket with brokered temporary credentials.

    Every call asks the broker for credentials first. If S3 rejects them as
    expired or invalid, the broker is invalidated and the call retried once
    with a fresh exchange.
    """

    def __init__(
        self,
        broker: CredentialBroker,
        token_provider: Callable[[], str],
        bucket: str,
        region: str,
        client_factory: Callable[[TemporaryCredentials, str], Any] | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket must not be empty")
        self.bucket = bucket
        self.region = region
        self._broker = broker
        self._token_provider = token_provider
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._client_key: str | None = None

    def _client_for(self, credentials: TemporaryCredentials) -> Any:
        if self._client is None or self._client_key != credentials.access_key_id:
            self._client = self._client_factory(credentials, self.region)
            self._client_key = credentials.access_key_id
        return self._client

    async def _call(self, operation: str, fn: Callable[[Any], T]) -> T:
        for attempt in (1, 2):
            credentials = await self._broker.get_credentials(self._token_provider())
            client = self._client_for(credentials)
            try:
                return await asyncio.to_thread(fn, client)
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "Unknown")
                if code in AUTH_ERROR_CODES and attempt == 1:
                    logger.warning(f"{operation} on s3://{self.bucket} rejected credentials ({code}), refreshing")
                    self._broker.invalidate()
                    self._client = None
                    continue
                raise StorageError(f"{operation} on s3://{self.bucket} failed ({code})", code=code) from e
            except BotoCoreError as e:
                raise StorageError(f"{operation} on s3://{self.bucket} failed: {e}") from e
        raise AssertionError("unreachable")

    async def verify(self) -> None:
        """Verify credentials and bucket access. Raises on failure."""
        await self._call("HeadBucket", lambda client: client.head_bucket(Bucket=self.bucket))
        logger.info(f"Bucket s3://{self.bucket} is reachable")

    async def list_files(self, prefix: str = "") -> list[CloudFile]:
        """One level of the bucket under ``prefix``, directories first."""
        prefix = prefix.strip("/")
        if prefix:
            prefix += "/"
        return await self._call("ListObjectsV2", lambda client: self._list(client, prefix))

    def _list(self, client: Any, prefix: str) -> list[CloudFile]:
        files: list[CloudFile] = []
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter="/"):
            for common in page.get("CommonPrefixes", []):
                path = common["Prefix"][len(prefix) :].rstrip("/")
                files.append(CloudFile(path=path, name=path, size=0, mod_time=None, is_dir=True))
            for obj in page.get("Contents", []):
                path = obj["Key"][len(prefix) :]
                if not path:
                    # Folder marker object for the prefix itself
                    continue
                modified = obj.get("LastModified")
                if modified is not None and modified.tzinfo is None:
                    modified = modified.replace(tzinfo=UTC)
                files.append(
                    CloudFile(
                        path=path,
                        name=path.rsplit("/", 1)[-1],
                        size=obj.get("Size", 0),
                        mod_time=modified,
                        mime_type=mimetypes.guess_type(path)[0],
                    )
                )

        files.sort(key=lambda f: (not f.is_dir, f.name))
        logger.debug(f"Listed {len(files)} entries under s3://{self.bucket}/{prefix}")
        return files
