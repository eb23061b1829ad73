"""
Blob storage for gallery metadata and image files.

S3 (or any S3-compatible store such as R2) when a bucket is configured, the
local filesystem otherwise. Both backends support ETag check-and-set writes so
metadata updates never silently overwrite each other.
"""
import hashlib
import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError

from config import Settings, get_blob_dir

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    pass

class StaleWriteError(BlobStoreError):
    """A conditional write lost against a concurrent writer."""
    pass


@dataclass
class BlobInfo:
    key: str
    url: str
    size: int = 0
    etag: Optional[str] = None


class BlobStore:
    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        if_match: Optional[str] = None,
        if_none_match: bool = False,
    ) -> BlobInfo:
        raise NotImplementedError

    def get(self, key: str) -> Optional[tuple[bytes, str]]:
        """Return (content, etag), or None when the key does not exist."""
        raise NotImplementedError

    def list(self, prefix: str, limit: Optional[int] = None) -> list[BlobInfo]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def url_for(self, key: str) -> str:
        raise NotImplementedError

    def put_json(self, key: str, payload: dict, **kwargs) -> BlobInfo:
        data = json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
        return self.put(key, data, content_type="application/json", **kwargs)

    def get_json(self, key: str) -> Optional[tuple[dict, str]]:
        found = self.get(key)
        if found is None:
            return None
        content, etag = found
        return json.loads(content.decode("utf-8")), etag


class LocalBlobStore(BlobStore):
    """Files under a root directory. ETag = MD5 of the content."""

    def __init__(self, root: Path, public_base_url: Optional[str] = None):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or "").rstrip("/")
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key or ".." in key.split("/"):
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        return path

    @staticmethod
    def _etag(content: bytes) -> str:
        return hashlib.md5(content).hexdigest()

    def put(self, key, data, content_type="application/octet-stream", if_match=None, if_none_match=False):
        path = self._path(key)
        with self._lock:
            exists = path.is_file()
            if if_none_match and exists:
                raise StaleWriteError(f"{key} already exists")
            if if_match is not None:
                if not exists or self._etag(path.read_bytes()) != if_match:
                    raise StaleWriteError(f"{key} changed since it was read")
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)
        return BlobInfo(key=key, url=self.url_for(key), size=len(data), etag=self._etag(data))

    def get(self, key):
        path = self._path(key)
        if not path.is_file():
            return None
        content = path.read_bytes()
        return content, self._etag(content)

    def list(self, prefix, limit=None):
        # Walk only the deepest directory the prefix names.
        directory = prefix.rpartition("/")[0]
        start = self._path(directory) if directory else self.root
        if not start.is_dir():
            return []
        blobs = []
        for path in sorted(start.rglob("*")):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self.root).as_posix()
            if not key.startswith(prefix):
                continue
            blobs.append(BlobInfo(key=key, url=self.url_for(key), size=path.stat().st_size))
            if limit is not None and len(blobs) >= limit:
                break
        return blobs

    def delete(self, key):
        self._path(key).unlink(missing_ok=True)

    def url_for(self, key):
        return f"{self.public_base_url}/blobs/{quote(key)}"

    def open_path(self, key: str) -> Optional[Path]:
        """Filesystem path for serving a stored file, or None."""
        try:
            path = self._path(key)
        except BlobStoreError:
            return None
        return path if path.is_file() else None


class S3BlobStore(BlobStore):
    """S3 / S3-compatible bucket via boto3."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ):
        self.bucket = bucket
        self.region = region
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
        )
        logger.info("S3 blob store initialized for bucket '%s'", bucket)

    def put(self, key, data, content_type="application/octet-stream", if_match=None, if_none_match=False):
        params = {"Bucket": self.bucket, "Key": key, "Body": data, "ContentType": content_type}
        if if_match is not None:
            params["IfMatch"] = if_match
        if if_none_match:
            params["IfNoneMatch"] = "*"
        try:
            resp = self.client.put_object(**params)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in ("PreconditionFailed", "ConditionalRequestConflict") or status in (409, 412):
                raise StaleWriteError(f"{key} changed since it was read") from e
            logger.error("S3 put failed for %s: %s", key, e)
            raise
        return BlobInfo(key=key, url=self.url_for(key), size=len(data), etag=resp.get("ETag"))

    def get(self, key):
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        return obj["Body"].read(), obj.get("ETag")

    def list(self, prefix, limit=None):
        blobs = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                blobs.append(
                    BlobInfo(
                        key=item["Key"],
                        url=self.url_for(item["Key"]),
                        size=item.get("Size", 0),
                        etag=item.get("ETag"),
                    )
                )
                if limit is not None and len(blobs) >= limit:
                    return blobs
        return blobs

    def delete(self, key):
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def url_for(self, key):
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_bucket:
        return S3BlobStore(
            bucket=settings.blob_bucket,
            region=settings.blob_region,
            endpoint_url=settings.blob_endpoint_url,
            access_key=settings.blob_access_key_id,
            secret_key=settings.blob_secret_access_key,
            public_base_url=settings.blob_public_base_url,
        )
    root = get_blob_dir(settings)
    logger.info("BLOB_BUCKET not set; using local blob store at %s", root)
    return LocalBlobStore(root, public_base_url=settings.public_base_url)
