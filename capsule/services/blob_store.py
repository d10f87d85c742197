# FILE: capsule/services/blob_store.py
"""
Blob store adapter for S3-compatible object storage (Cloudflare R2 by default)

Issues presigned PUT URLs so clients upload image bytes straight to the
bucket, and deletes objects in batches given their public locations.
Blocking boto3 calls run in a worker thread.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import unquote
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from capsule.config import Settings, get_settings
from capsule.services.errors import ConfigurationError, StorageError, ValidationError

logger = logging.getLogger(__name__)

STORE_NAME = "blob"
DEFAULT_EXTENSION = "jpg"
# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


@dataclass
class UploadGrant:
    """Short-lived permission to PUT one object"""
    upload_url: str
    public_url: str
    key: str
    expires_in: int


@dataclass
class BlobDeletionReport:
    """Per-location outcome of a batch delete"""
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def normalize_extension(filename: str) -> str:
    """Lowercased last extension with non-alphanumerics removed"""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return DEFAULT_EXTENSION
    ext = re.sub(r"[^a-z0-9]", "", name.rsplit(".", 1)[1].lower())
    return ext[:10] or DEFAULT_EXTENSION


class BlobStore:
    """S3-compatible blob storage adapter"""

    def __init__(
        self,
        bucket_name: Optional[str],
        public_url: Optional[str],
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        upload_ttl_seconds: int = 360,
        allowed_types: Optional[List[str]] = None,
        client: Any = None
    ):
        self.bucket_name = bucket_name
        self.public_base = public_url.rstrip("/") if public_url else None
        self.endpoint_url = endpoint_url
        self.region = region
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.upload_ttl_seconds = upload_ttl_seconds
        self.allowed_types = allowed_types if allowed_types is not None else ["image/"]
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "BlobStore":
        settings = settings or get_settings()
        return cls(
            bucket_name=settings.r2_bucket_name,
            public_url=settings.r2_public_url,
            endpoint_url=settings.resolved_s3_endpoint,
            region=settings.s3_region,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            upload_ttl_seconds=settings.upload_url_ttl_seconds,
            allowed_types=settings.allowed_upload_types,
        )

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                region_name=self.region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    def _require_bucket(self) -> str:
        if not self.bucket_name:
            raise ConfigurationError("Configuration error: R2_BUCKET_NAME is not set")
        return self.bucket_name

    def _require_public_base(self) -> str:
        if not self.public_base:
            raise ConfigurationError("Configuration error: R2_PUBLIC_URL is not set")
        return self.public_base

    def public_url_for(self, key: str) -> str:
        return f"{self._require_public_base()}/{key}"

    def key_for(self, location: str) -> Optional[str]:
        """
        Map a public location back to its object key.

        Only locations under the configured public base URL name objects in
        this bucket; anything else is treated as malformed and yields None.
        """
        if not isinstance(location, str) or not location.strip() or not self.public_base:
            return None

        location = location.strip()
        if not location.startswith(self.public_base + "/"):
            return None
        key = location[len(self.public_base) + 1:]
        key = unquote(key.split("?", 1)[0].split("#", 1)[0])
        return key or None

    def request_upload_grant(self, filename: str, content_type: str) -> UploadGrant:
        """Presign a PUT for a fresh key derived from the filename's extension"""
        bucket = self._require_bucket()
        self._require_public_base()

        if not filename or not content_type:
            raise ValidationError("Filename and contentType are required")
        if self.allowed_types and not any(content_type.startswith(t) for t in self.allowed_types):
            raise ValidationError(f"Unsupported content type: {content_type}")

        key = f"{uuid4()}.{normalize_extension(filename)}"
        try:
            upload_url = self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.upload_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to presign upload for {key}: {e}")
            raise StorageError(f"presign failed: {e}", store=STORE_NAME, key=key) from e

        logger.info(f"Issued upload grant for {key} (ttl={self.upload_ttl_seconds}s)")
        return UploadGrant(
            upload_url=upload_url,
            public_url=self.public_url_for(key),
            key=key,
            expires_in=self.upload_ttl_seconds,
        )

    async def exists(self, location: str) -> bool:
        """HEAD the object behind a public location"""
        key = self.key_for(location)
        if key is None:
            return False
        bucket = self._require_bucket()

        try:
            await asyncio.to_thread(self.client.head_object, Bucket=bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"head failed: {code or e}", store=STORE_NAME, key=key) from e
        except BotoCoreError as e:
            raise StorageError(f"head failed: {e}", store=STORE_NAME, key=key) from e
        return True

    async def delete_objects(self, locations: Iterable[str]) -> BlobDeletionReport:
        """
        Best-effort batch delete.

        Malformed locations are skipped with a warning. A failed request marks
        every location in that request as failed; per-key errors returned by
        the store are attributed to their locations.
        """
        report = BlobDeletionReport()
        by_key: Dict[str, List[str]] = {}

        for location in dict.fromkeys(locations):
            key = self.key_for(location)
            if key is None:
                logger.warning(f"Skipping malformed blob location: {location!r}")
                report.skipped.append(location)
                continue
            by_key.setdefault(key, []).append(location)

        if not by_key:
            return report

        bucket = self._require_bucket()
        keys = list(by_key)

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = await asyncio.to_thread(
                    self.client.delete_objects,
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Batch delete of {len(batch)} objects failed: {e}")
                for k in batch:
                    for location in by_key[k]:
                        report.failed[location] = str(e)
                continue

            errors = {
                err.get("Key"): f"{err.get('Code', 'Error')}: {err.get('Message', '')}".strip()
                for err in response.get("Errors", []) or []
            }
            for k in batch:
                for location in by_key[k]:
                    if k in errors:
                        report.failed[location] = errors[k]
                    else:
                        report.deleted.append(location)

        if report.failed:
            logger.error(f"Blob delete reported {len(report.failed)} failures: {report.failed}")
        else:
            logger.info(f"Deleted {len(report.deleted)} blob objects")
        return report


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Get or create the global blob store adapter"""
    global _blob_store
    if _blob_store is None:
        _blob_store = BlobStore.from_settings()
    return _blob_store
