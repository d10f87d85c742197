# FILE: capsule/services/startup_verify.py
"""
Startup verification
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict

from capsule.config import get_settings

logger = logging.getLogger(__name__)


async def verify_startup() -> Dict[str, Any]:
    """Verify system startup requirements"""
    settings = get_settings()
    logger.info("Running startup verification")

    metadata_dir = Path(settings.metadata_dir)
    metadata_writable = metadata_dir.is_dir() and os.access(metadata_dir, os.W_OK)
    if not metadata_writable:
        logger.error(f"Metadata directory is not writable: {metadata_dir}")

    missing = [
        name for name, value in (
            ("R2_BUCKET_NAME", settings.r2_bucket_name),
            ("R2_PUBLIC_URL", settings.r2_public_url),
            ("S3_ENDPOINT_URL or R2_ACCOUNT_ID", settings.resolved_s3_endpoint),
        )
        if not value
    ]
    if missing:
        # Reads keep working; uploads, image deletion and deletes with images will fail
        logger.warning(f"Blob storage not fully configured, missing: {', '.join(missing)}")

    return {
        "metadata_writable": metadata_writable,
        "metadata_dir": str(metadata_dir),
        "blob_storage_configured": not missing,
        "missing_config": missing,
    }
