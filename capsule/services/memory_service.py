# FILE: capsule/services/memory_service.py
"""
Memory record service: create, read, list, update and delete capsules

Keeps the metadata record and the blob objects it references consistent:
- create: an exclusive record write is the only write, after the code is allocated
- update: removed images are deleted before the merged record is written
- delete: all images are deleted before the record is removed

A blob deletion failure aborts the operation with the stored record left
untouched. Concurrent edits of one record are last-writer-wins.
"""
import asyncio
import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from capsule.config import get_settings
from capsule.models.memory import (
    CreatedMemory,
    MemoryCreateRequest,
    MemoryRecord,
    MemorySummary,
    MemoryUpdateRequest,
)
from capsule.services.blob_store import BlobDeletionReport, BlobStore, get_blob_store
from capsule.services.code_generator import CodeGenerator
from capsule.services.errors import (
    ExhaustionError,
    Forbidden,
    KeyExistsError,
    NotFound,
    StorageError,
    ValidationError,
)
from capsule.services.metadata_store import MetadataStore
from capsule.services.telemetry import record_event

logger = logging.getLogger(__name__)

_IMAGE_FIELDS = ("avatar_image", "cover_image")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_secret_key() -> str:
    return secrets.token_urlsafe(24)


class MemoryService:
    """Stateless orchestration over the metadata and blob stores"""

    def __init__(
        self,
        metadata_store: MetadataStore,
        blob_store: BlobStore,
        code_generator: Optional[CodeGenerator] = None,
        max_gallery_images: int = 5,
        max_list_codes: int = 100,
        verify_uploads: bool = False
    ):
        self.metadata_store = metadata_store
        self.blob_store = blob_store
        self.code_generator = code_generator or CodeGenerator(metadata_store.exists)
        self.max_gallery_images = max_gallery_images
        self.max_list_codes = max_list_codes
        self.verify_uploads = verify_uploads

    @classmethod
    def from_settings(cls) -> "MemoryService":
        settings = get_settings()
        metadata_store = MetadataStore(settings.metadata_dir)
        return cls(
            metadata_store=metadata_store,
            blob_store=get_blob_store(),
            code_generator=CodeGenerator(
                metadata_store.exists,
                length=settings.code_length,
                max_attempts=settings.code_max_attempts,
            ),
            max_gallery_images=settings.max_gallery_images,
            max_list_codes=settings.max_list_codes,
            verify_uploads=settings.verify_uploads,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, code: str) -> Optional[MemoryRecord]:
        document = await self.metadata_store.get(code)
        if document is None:
            return None
        try:
            return MemoryRecord.model_validate(document)
        except PydanticValidationError as e:
            logger.error(f"Stored record {code} is malformed: {e.error_count()} errors")
            raise StorageError("stored record is malformed", store="metadata", key=code) from e

    def _authorize(self, record: MemoryRecord, secret_key: Optional[str]):
        if not secret_key or not hmac.compare_digest(
            record.secret_key.encode("utf-8"), secret_key.encode("utf-8")
        ):
            logger.warning(f"Rejected edit key for {record.code}")
            raise Forbidden()

    def _check_gallery(self, gallery: List[str]):
        if len(gallery) > self.max_gallery_images:
            raise ValidationError(
                f"At most {self.max_gallery_images} gallery images are allowed, got {len(gallery)}"
            )
        if any(not isinstance(location, str) or not location.strip() for location in gallery):
            raise ValidationError("galleryImages entries must be non-empty strings")

    async def _verify_uploaded(self, locations: Sequence[str]):
        """Reject locations whose objects are not present in blob storage"""
        if not self.verify_uploads or not locations:
            return
        present = await asyncio.gather(*(self.blob_store.exists(loc) for loc in locations))
        missing = [loc for loc, ok in zip(locations, present) if not ok]
        if missing:
            raise ValidationError(f"Images not found in storage: {', '.join(missing)}")

    async def _delete_blobs(self, code: str, locations: List[str], operation: str) -> BlobDeletionReport:
        report = await self.blob_store.delete_objects(locations)
        if not report.ok:
            record_event(
                "blob_delete_failed",
                code=code,
                operation=operation,
                failed=len(report.failed),
            )
            details = "; ".join(f"{loc}: {reason}" for loc, reason in report.failed.items())
            raise StorageError(
                f"Failed to delete {len(report.failed)} image(s) from storage: {details}",
                store="blob",
                key=code,
            )
        return report

    @staticmethod
    def _removed_locations(old: MemoryRecord, merged: MemoryRecord, fields: set) -> List[str]:
        """Stored image locations dropped by the update and referenced nowhere in the result"""
        candidates: List[str] = []
        if "gallery_images" in fields:
            kept = set(merged.gallery_images)
            candidates.extend(loc for loc in old.gallery_images if loc not in kept)
        for name in _IMAGE_FIELDS:
            if name in fields:
                old_location = getattr(old, name)
                if old_location and old_location != getattr(merged, name):
                    candidates.append(old_location)

        still_referenced = set(merged.image_locations())
        return [loc for loc in dict.fromkeys(candidates) if loc not in still_referenced]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_memory(self, request: MemoryCreateRequest) -> CreatedMemory:
        """Validate, allocate a code, then write the record once"""
        if not request.title or not request.title.strip():
            raise ValidationError("Title is required")
        gallery = list(request.gallery_images)
        self._check_gallery(gallery)

        avatar_image = request.avatar_image or None
        cover_image = request.cover_image or None
        await self._verify_uploaded(
            list(dict.fromkeys(gallery + [loc for loc in (avatar_image, cover_image) if loc]))
        )

        secret_key = _generate_secret_key()
        created_at = _now_iso()

        # exists() during allocation can race another create; the exclusive
        # write is what actually claims the code
        for attempt in range(1, self.code_generator.max_attempts + 1):
            code = await self.code_generator.allocate()
            record = MemoryRecord(
                code=code,
                title=request.title,
                short_message=request.short_message or "",
                story=request.story or "",
                gallery_images=gallery,
                avatar_image=avatar_image,
                cover_image=cover_image,
                created_at=created_at,
                secret_key=secret_key,
            )
            try:
                await self.metadata_store.create(code, record.to_document())
                break
            except KeyExistsError:
                logger.warning(f"Code {code} was claimed by a concurrent create (attempt {attempt})")
        else:
            record_event("code_allocation_exhausted", attempts=self.code_generator.max_attempts)
            raise ExhaustionError(
                f"Could not claim a unique code after {self.code_generator.max_attempts} attempts"
            )

        logger.info(f"Created memory {code} with {len(record.image_locations())} images")
        record_event("memory_created", code=code, images=len(record.image_locations()))
        return CreatedMemory(code=code, secret_key=secret_key)

    async def get_memory(self, code: str) -> Dict[str, Any]:
        """Public view of a record"""
        record = await self._load(code)
        if record is None:
            raise NotFound(f"Memory {code} not found")
        return record.to_public()

    async def memory_exists(self, code: str) -> bool:
        return await self.metadata_store.exists(code)

    async def list_memory_summaries(self, codes: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Fetch summaries concurrently; codes that do not resolve are omitted.

        Omissions go to the telemetry channel with their reason rather than
        into the response.
        """
        if len(codes) > self.max_list_codes:
            raise ValidationError(f"At most {self.max_list_codes} codes may be listed at once")

        async def fetch(code: str) -> Optional[MemorySummary]:
            try:
                record = await self._load(code)
            except Exception as e:
                logger.warning(f"Omitting {code} from summaries: {e}")
                record_event("summary_omitted", code=code, reason=str(e))
                return None
            if record is None:
                record_event("summary_omitted", code=code, reason="not_found")
                return None
            return MemorySummary(code=record.code, title=record.title, created_at=record.created_at)

        results = await asyncio.gather(*(fetch(code) for code in codes))
        return [summary.model_dump(by_alias=True) for summary in results if summary is not None]

    async def update_memory(
        self,
        code: str,
        secret_key: Optional[str],
        changes: MemoryUpdateRequest
    ) -> Dict[str, Any]:
        """Apply a partial update after removing images the update drops"""
        record = await self._load(code)
        if record is None:
            raise NotFound(f"Memory {code} not found")
        self._authorize(record, secret_key)

        fields = set(changes.model_fields_set)
        updates: Dict[str, Any] = {}

        if "title" in fields:
            if not changes.title or not changes.title.strip():
                raise ValidationError("Title is required")
            updates["title"] = changes.title
        for name in ("short_message", "story"):
            if name in fields:
                updates[name] = getattr(changes, name) or ""
        if "gallery_images" in fields:
            gallery = list(changes.gallery_images or [])
            self._check_gallery(gallery)
            updates["gallery_images"] = gallery
        for name in _IMAGE_FIELDS:
            if name in fields:
                updates[name] = getattr(changes, name) or None

        merged = record.model_copy(update=updates)

        previous = set(record.image_locations())
        added = [loc for loc in merged.image_locations() if loc not in previous]
        await self._verify_uploaded(list(dict.fromkeys(added)))

        removed = self._removed_locations(record, merged, fields)
        if removed:
            await self._delete_blobs(code, removed, operation="update")

        await self.metadata_store.put(code, merged.to_document())

        logger.info(f"Updated memory {code} (fields={sorted(fields)}, removed_images={len(removed)})")
        record_event("memory_updated", code=code, fields=sorted(fields), removed_images=len(removed))
        return merged.to_public()

    async def delete_memory(self, code: str, secret_key: Optional[str]):
        """Delete every referenced image, then the record. Absent records count as deleted."""
        record = await self._load(code)
        if record is None:
            logger.info(f"Delete of {code}: already absent")
            return
        self._authorize(record, secret_key)

        locations = list(dict.fromkeys(record.image_locations()))
        if locations:
            await self._delete_blobs(code, locations, operation="delete")

        await self.metadata_store.delete(code)

        logger.info(f"Deleted memory {code} and {len(locations)} images")
        record_event("memory_deleted", code=code, images=len(locations))


_service: Optional[MemoryService] = None


def get_memory_service() -> MemoryService:
    """Get or create the global memory service"""
    global _service
    if _service is None:
        _service = MemoryService.from_settings()
    return _service
