# FILE: capsule/routes/uploads.py
"""
Upload grant endpoint
"""
import logging
from fastapi import APIRouter, Depends

from capsule.models.memory import UploadUrlRequest, UploadUrlResponse
from capsule.services.blob_store import BlobStore, get_blob_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/upload-url")
async def create_upload_url(
    request: UploadUrlRequest,
    blob_store: BlobStore = Depends(get_blob_store)
):
    """
    Presigned URL for a direct client-to-storage upload.

    The returned publicUrl is what the client later puts in a memory's
    galleryImages, avatarImage or coverImage.
    """
    grant = blob_store.request_upload_grant(request.filename, request.content_type)
    return UploadUrlResponse(
        upload_url=grant.upload_url,
        public_url=grant.public_url,
        expires_in=grant.expires_in
    ).model_dump(by_alias=True)
