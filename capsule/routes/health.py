# FILE: capsule/routes/health.py
"""
Health check endpoint
"""
import logging
from fastapi import APIRouter

from capsule import __version__
from capsule.config import get_settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Health check endpoint
    Reports whether blob storage is configured; uploads and deletes fail without it
    """
    settings = get_settings()
    blob_configured = bool(settings.r2_bucket_name and settings.r2_public_url)

    return {
        "status": "healthy" if blob_configured else "degraded",
        "version": __version__,
        "environment": settings.environment,
        "blob_storage_configured": blob_configured,
        "s3_endpoint": settings.resolved_s3_endpoint,
    }
