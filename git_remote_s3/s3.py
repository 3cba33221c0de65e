"""Async S3 object store for bundle objects.

Uses the S3 client factory pattern: every operation opens a fresh aiobotocore
client context from the factory, e.g.::

    factory = create_s3_client_factory(settings)
    store = S3ObjectStore(factory)
    objects = await store.list(settings.root)

Retries and timeouts are delegated to botocore (``Config(retries=...)``);
errors that survive the retries are translated into ``ObjectStoreError``.
"""

import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Protocol

import aiofiles
from aiobotocore.session import get_session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from git_remote_s3.config import RemoteSettings, S3Key
from git_remote_s3.errors import ObjectNotFoundError, ObjectStoreError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass(frozen=True)
class ObjectInfo:
    """An entry of an S3 listing."""

    key: S3Key
    last_modified: datetime
    size: int = 0


class ObjectStore(Protocol):
    """Operations the synchronization engine needs from the object store."""

    async def get(self, key: S3Key, path: str) -> None:
        ...

    async def put(self, path: str, key: S3Key) -> None:
        ...

    async def delete(self, key: S3Key) -> None:
        ...

    async def list(self, prefix: S3Key) -> List[ObjectInfo]:
        ...

    async def rename(self, src: S3Key, dst: S3Key) -> None:
        ...


def create_s3_config(settings: RemoteSettings) -> Config:
    """Create the botocore config carrying retry and timeout policy."""
    kwargs = {
        "retries": {"max_attempts": settings.max_attempts, "mode": "standard"},
        "connect_timeout": settings.connect_timeout,
        "read_timeout": settings.read_timeout,
    }
    if settings.endpoint_url:
        # custom endpoints are addressed path-style
        kwargs["s3"] = {"addressing_style": "path"}
    return Config(**kwargs)


def create_s3_client_factory(settings: RemoteSettings) -> Callable:
    """Create an S3 client factory for the remote.

    Returns a callable that returns an async context manager for an
    aiobotocore S3 client. Credentials come from botocore's default chain.
    """
    session = get_session()
    config = create_s3_config(settings)

    @asynccontextmanager
    async def s3_client_factory():
        async with session.create_client(
            "s3",
            endpoint_url=settings.endpoint_url,
            region_name=settings.region_name,
            config=config,
        ) as client:
            yield client

    return s3_client_factory


@contextmanager
def _translate_errors(action: str, key: S3Key):
    try:
        yield
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if code in NOT_FOUND_CODES:
            logger.debug(f"Key not found in S3: {key}")
            raise ObjectNotFoundError(key) from e
        logger.error(f"S3 {action} failed for {key}: {e}")
        raise ObjectStoreError(f"S3 {action} failed for {key}: {e}") from e
    except BotoCoreError as e:
        logger.error(f"S3 {action} failed for {key}: {e}")
        raise ObjectStoreError(f"S3 {action} failed for {key}: {e}") from e


class S3ObjectStore:
    """Upload, download, list, delete and rename objects in S3."""

    def __init__(self, s3_client_factory: Callable):
        """Initialize the store.

        Args:
            s3_client_factory: Factory function that returns an async context
                               manager for an S3 client
        """
        self._s3_client_factory = s3_client_factory

    async def get(self, key: S3Key, path: str) -> None:
        """Download an object into a local file."""
        logger.debug(f"Getting object {key} -> {path}")
        with _translate_errors("get", key):
            async with self._s3_client_factory() as s3_client:
                response = await s3_client.get_object(Bucket=key.bucket, Key=key.key)
                data = await response["Body"].read()
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        logger.debug(f"Downloaded {len(data)} bytes from {key}")

    async def put(self, path: str, key: S3Key) -> None:
        """Upload a local file as an object."""
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        logger.debug(f"Putting object {path} -> {key} ({len(data)} bytes)")
        with _translate_errors("put", key):
            async with self._s3_client_factory() as s3_client:
                await s3_client.put_object(Bucket=key.bucket, Key=key.key, Body=data)

    async def delete(self, key: S3Key) -> None:
        """Delete an object."""
        logger.debug(f"Deleting object {key}")
        with _translate_errors("delete", key):
            async with self._s3_client_factory() as s3_client:
                await s3_client.delete_object(Bucket=key.bucket, Key=key.key)

    async def list(self, prefix: S3Key) -> List[ObjectInfo]:
        """List every object below a prefix.

        The prefix is treated as a directory: ``root`` lists ``root/...``
        but not ``root-other/...``.
        """
        list_prefix = f"{prefix.key.strip('/')}/" if prefix.key.strip("/") else ""
        objects = []
        with _translate_errors("list", prefix):
            async with self._s3_client_factory() as s3_client:
                kwargs = {"Bucket": prefix.bucket, "Prefix": list_prefix}
                while True:
                    response = await s3_client.list_objects_v2(**kwargs)
                    for obj in response.get("Contents", []):
                        objects.append(
                            ObjectInfo(
                                key=S3Key(bucket=prefix.bucket, key=obj["Key"]),
                                last_modified=obj["LastModified"],
                                size=obj.get("Size", 0),
                            )
                        )
                    if not response.get("IsTruncated"):
                        break
                    kwargs["ContinuationToken"] = response["NextContinuationToken"]
        logger.debug(f"Listed {len(objects)} objects under {prefix}")
        return objects

    async def copy(self, src: S3Key, dst: S3Key) -> None:
        """Copy an object server-side."""
        logger.debug(f"Copying object {src} -> {dst}")
        with _translate_errors("copy", src):
            async with self._s3_client_factory() as s3_client:
                await s3_client.copy_object(
                    Bucket=dst.bucket,
                    Key=dst.key,
                    CopySource={"Bucket": src.bucket, "Key": src.key},
                )

    async def rename(self, src: S3Key, dst: S3Key) -> None:
        """Move an object; S3 has no rename, so this is copy then delete."""
        await self.copy(src, dst)
        await self.delete(src)

