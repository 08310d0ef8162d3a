import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Tuple
from urllib.parse import quote

import aiofiles
import aiofiles.os
import boto3
from botocore.exceptions import ClientError

from file_gateway import config
from file_gateway.logger_config import setup_logger

logger = setup_logger()

CHUNK_SIZE = 8192

# Key segments that have no file name of their own. quote() never produces
# a bare "%", so these cannot clash with an encoded segment.
SPECIAL_SEGMENTS = {"": "%", ".": "%2E", "..": "%2E%2E"}


@dataclass
class StoredObject:
    key: str
    size: int
    chunks: AsyncIterator[bytes]
    content_type: Optional[str] = None

    async def read(self) -> bytes:
        """Consume the payload stream and return it as one bytes object."""
        return b"".join([chunk async for chunk in self.chunks])


class ObjectStore(ABC):
    """Minimal contract every bucket backend fulfils."""

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredObject]:
        """Return the object stored under *key*, or None if there is none.

        The payload is not read until ``chunks`` is iterated.
        """
        ...

    @abstractmethod
    async def put(self, key: str, file: BinaryIO, content_type: Optional[str] = None) -> None:
        """Store the contents of *file* (opened in binary mode) under *key*."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the object. Missing keys are ignored."""
        ...


def key_to_path(key: str) -> Path:
    """Map a key onto a relative path with one directory level per "/"-separated segment.

    Every segment is percent-encoded, and empty or dot segments get reserved
    names, so "/photo.jpg", "photo.jpg" and "../photo.jpg" are distinct keys
    that all stay inside the bucket.
    """
    return Path(*(SPECIAL_SEGMENTS.get(segment) or quote(segment, safe="") for segment in key.split("/")))


class LocalBucket(ObjectStore):
    """
    Stores objects under <data_dir>/objects/<key>, where *key* may contain
    slashes (e.g. albums/2024/photo_1700000000000.jpg).

    The declared content type lives in a JSON sidecar under
    <data_dir>/metadata/<key>.json. Uploads are written to <temp_dir> first
    and moved into place once complete.
    """

    def __init__(self, data_dir: Path, temp_dir: Path):
        self.data_dir = Path(data_dir)
        self.temp_dir = Path(temp_dir)
        self.objects_dir = self.data_dir / "objects"
        self.metadata_dir = self.data_dir / "metadata"

    async def initialize(self):
        """Create the bucket directories and clear leftovers from interrupted uploads."""
        logger.info("Initializing local bucket...")

        self.objects_dir.mkdir(exist_ok=True, parents=True)
        self.metadata_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Bucket directories created/verified: {self.data_dir}, {self.temp_dir}")

        files_removed = 0
        for file in self.temp_dir.glob("*"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    def get_object_paths(self, key: str) -> Tuple[Path, Path]:
        """Get the object and metadata paths for *key*."""
        relative = key_to_path(key)
        object_path = self.objects_dir / relative
        metadata_path = self.metadata_dir / relative.parent / f"{relative.name}.json"
        return object_path, metadata_path

    async def _iter_file(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, 'rb') as f:
            while chunk := await f.read(CHUNK_SIZE):
                yield chunk

    async def get(self, key: str) -> Optional[StoredObject]:
        object_path, metadata_path = self.get_object_paths(key)

        if not await aiofiles.os.path.isfile(object_path):
            return None
        stat = await aiofiles.os.stat(object_path)

        content_type = None
        try:
            async with aiofiles.open(metadata_path, 'r') as f:
                metadata = json.loads(await f.read())
            content_type = metadata.get("content_type")
        except (FileNotFoundError, json.JSONDecodeError):
            pass

        logger.debug(f"Found {stat.st_size} bytes for key {key!r}")
        return StoredObject(
            key=key,
            size=stat.st_size,
            chunks=self._iter_file(object_path),
            content_type=content_type,
        )

    async def put(self, key: str, file: BinaryIO, content_type: Optional[str] = None) -> None:
        object_path, metadata_path = self.get_object_paths(key)

        temp_path = self.temp_dir / f"{uuid.uuid4().hex}.upload"
        try:
            size = 0
            async with aiofiles.open(temp_path, 'wb') as f:
                while chunk := await asyncio.to_thread(file.read, CHUNK_SIZE):
                    size += len(chunk)
                    await f.write(chunk)

            await aiofiles.os.makedirs(object_path.parent, exist_ok=True)
            await aiofiles.os.makedirs(metadata_path.parent, exist_ok=True)
            async with aiofiles.open(metadata_path, 'w') as f:
                await f.write(json.dumps({"content_type": content_type}))
            await aiofiles.os.rename(str(temp_path), str(object_path))
        finally:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.unlink(temp_path)

        logger.debug(f"Stored {size} bytes under key {key!r}")

    async def delete(self, key: str) -> None:
        for path in self.get_object_paths(key):
            try:
                await aiofiles.os.unlink(path)
            except FileNotFoundError:
                pass


class R2Bucket(ObjectStore):
    """
    Cloudflare R2 bucket accessed through its S3-compatible API.
    Works with any S3 endpoint; boto3 calls are blocking, so each one runs
    in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ):
        self.bucket = bucket
        extra_cfg = {}
        if access_key_id and secret_access_key:
            extra_cfg["aws_access_key_id"] = access_key_id
            extra_cfg["aws_secret_access_key"] = secret_access_key
        self.s3 = boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region,
            **extra_cfg,
        )

    def _get_object(self, key: str) -> Optional[dict]:
        try:
            return self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise

    async def _iter_body(self, body) -> AsyncIterator[bytes]:
        try:
            while chunk := await asyncio.to_thread(body.read, CHUNK_SIZE):
                yield chunk
        finally:
            body.close()

    async def get(self, key: str) -> Optional[StoredObject]:
        response = await asyncio.to_thread(self._get_object, key)
        if response is None:
            return None
        return StoredObject(
            key=key,
            size=response.get("ContentLength", 0),
            chunks=self._iter_body(response["Body"]),
            content_type=response.get("ContentType"),
        )

    async def put(self, key: str, file: BinaryIO, content_type: Optional[str] = None) -> None:
        extra_args = {"ContentType": content_type} if content_type else {}
        await asyncio.to_thread(
            self.s3.upload_fileobj, file, self.bucket, key, ExtraArgs=extra_args
        )
        logger.debug(f"Uploaded key {key!r} to bucket {self.bucket}")

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.s3.delete_object, Bucket=self.bucket, Key=key)


async def create_bucket() -> ObjectStore:
    """Build the bucket selected by STORAGE_BACKEND."""
    backend = config.STORAGE_BACKEND
    if backend == "local":
        bucket = LocalBucket(Path(config.DATA_DIR), Path(config.TEMP_DIR))
        await bucket.initialize()
        return bucket
    elif backend == "r2":
        if not config.R2_BUCKET:
            raise ValueError("R2 storage backend requires the R2_BUCKET environment variable")
        return R2Bucket(
            bucket=config.R2_BUCKET,
            endpoint_url=config.R2_ENDPOINT_URL,
            region=config.R2_REGION,
            access_key_id=config.R2_ACCESS_KEY_ID,
            secret_access_key=config.R2_SECRET_ACCESS_KEY,
        )
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
