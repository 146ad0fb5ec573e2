"""
Blob storage for uploaded résumés and generated artifacts.

S3BlobStore is used in deployment; LocalBlobStore keeps files under
UPLOAD_DIR for local development.
"""
import asyncio
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from resume_engine.config import get_settings
from resume_engine.exceptions import StorageError
from resume_engine.services.gateway import ServiceGateway, get_gateway
from resume_engine.utils.logger import logger


class BlobStore(Protocol):
    async def put(self, data: bytes, filename: str, content_type: str, prefix: str = "resumes") -> str: ...

    async def get(self, key: str) -> bytes: ...

    async def signed_url(self, key: str, ttl: int = 3600) -> str: ...

    async def delete(self, key: str) -> bool: ...


def build_key(prefix: str, filename: str) -> str:
    """resumes/20240101T120000_<uuid>_<safe name>"""
    safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", filename or "file").strip("_") or "file"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{prefix}/{stamp}_{uuid4().hex[:12]}_{safe_name}"


class S3BlobStore:
    """Objects in one S3 bucket; boto3 calls run in a worker thread"""

    def __init__(self, bucket: str, region: str, access_key_id: str = "", secret_access_key: str = "",
                 gateway: Optional[ServiceGateway] = None):
        if not bucket:
            raise ValueError("AWS_S3_BUCKET not configured")
        self.bucket = bucket
        self.client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )
        self.gateway = gateway or get_gateway()

    async def _call(self, fn, **kwargs):
        async def run():
            return await asyncio.to_thread(fn, **kwargs)

        try:
            return await self.gateway.execute("blob_store", run)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 {fn.__name__} failed: {e}") from e

    async def put(self, data: bytes, filename: str, content_type: str, prefix: str = "resumes") -> str:
        key = build_key(prefix, filename)
        await self._call(self.client.put_object, Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        logger.info(f"Stored S3 object: {key}")
        return key

    async def get(self, key: str) -> bytes:
        response = await self._call(self.client.get_object, Bucket=self.bucket, Key=key)
        return await asyncio.to_thread(response["Body"].read)

    async def signed_url(self, key: str, ttl: int = 3600) -> str:
        return await self._call(
            self.client.generate_presigned_url,
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl,
        )

    async def delete(self, key: str) -> bool:
        try:
            await self._call(self.client.delete_object, Bucket=self.bucket, Key=key)
        except StorageError as e:
            logger.error(f"Failed to delete S3 object {key}: {e}")
            return False
        logger.info(f"Deleted S3 object: {key}")
        return True


class LocalBlobStore:
    """Files under a base directory; signed URLs are plain file URIs"""

    def __init__(self, base_dir: str = "./uploads"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise StorageError(f"Invalid blob key: {key}")
        return path

    async def put(self, data: bytes, filename: str, content_type: str, prefix: str = "resumes") -> str:
        key = build_key(prefix, filename)
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        return key

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise StorageError(f"Blob not found: {key}")
        return await asyncio.to_thread(path.read_bytes)

    async def signed_url(self, key: str, ttl: int = 3600) -> str:
        return self._path(key).as_uri()

    async def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink(missing_ok=True)
            return True
        except OSError:
            return False


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store is None:
        settings = get_settings()
        if settings.storage_backend == "s3":
            _blob_store = S3BlobStore(
                settings.aws_s3_bucket,
                settings.aws_s3_region,
                settings.aws_access_key_id,
                settings.aws_secret_access_key,
            )
        else:
            _blob_store = LocalBlobStore(settings.upload_dir)
    return _blob_store
