"""
Durable image storage.

`LocalBlobStore` writes under a directory that the app serves back as
static files; `S3BlobStore` puts objects into a public S3 bucket. Both
return the public URL of the stored object and raise on failure.
"""

import asyncio
import re
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import boto3

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._/-]+")


def safe_blob_key(key: str) -> str:
    """Keys keep letters, digits, '.', '_', '-', '/'; no traversal."""
    cleaned = _UNSAFE_KEY_CHARS.sub("-", key.replace("\\", "/"))
    parts = [part for part in cleaned.split("/") if part not in {"", ".", ".."}]
    if not parts:
        raise ValueError(f"Invalid blob key: {key!r}")
    return "/".join(parts)


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        ...


class LocalBlobStore:
    def __init__(self, root: Path, public_base_url: str = "/blobs") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        try:
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        finally:
            tmp_path.unlink(missing_ok=True)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        normalized = safe_blob_key(key)
        await asyncio.to_thread(self._write, self.root / normalized, data)
        return f"{self.public_base_url}/{quote(normalized)}"


class S3BlobStore:
    def __init__(self, bucket: str, region: str = "us-east-1", client=None) -> None:
        if not bucket:
            raise ValueError("BLOB_S3_BUCKET must be set when BLOB_BACKEND=s3")
        self.bucket = bucket
        self.region = region
        self._s3 = client if client is not None else boto3.client("s3", region_name=region)

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        normalized = safe_blob_key(key)
        await asyncio.to_thread(
            self._s3.put_object,
            Bucket=self.bucket,
            Key=normalized,
            Body=data,
            ContentType=content_type,
        )
        return self.public_url(normalized)


def build_blob_store(
    backend: str,
    *,
    root: str,
    public_base_url: str,
    bucket: str = "",
    region: str = "us-east-1",
) -> "LocalBlobStore | S3BlobStore":
    if backend == "s3":
        return S3BlobStore(bucket=bucket, region=region)
    if backend in {"", "local"}:
        return LocalBlobStore(Path(root), public_base_url=public_base_url)
    raise ValueError(f"Unknown BLOB_BACKEND: {backend!r}")


def guess_extension(filename: Optional[str], default: str = "jpg") -> str:
    suffix = Path(filename or "").suffix.lstrip(".").lower()
    if suffix and suffix.isalnum() and len(suffix) <= 5:
        return suffix
    return default
