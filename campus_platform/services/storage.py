"""
Object storage client for uploaded files (Cloudinary SDK)
"""

from typing import Optional
import asyncio
import io
import logging

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

from campus_platform import config
from campus_platform.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(config.CLOUDINARY_CLOUD_NAME and config.CLOUDINARY_API_KEY and config.CLOUDINARY_API_SECRET)


def _configure():
    if not is_configured():
        raise UpstreamFailure("File storage is not configured")
    cloudinary.config(
        cloud_name=config.CLOUDINARY_CLOUD_NAME,
        api_key=config.CLOUDINARY_API_KEY,
        api_secret=config.CLOUDINARY_API_SECRET,
        secure=True
    )


async def upload_file(content: bytes, filename: str, folder: str) -> dict:
    """
    Upload one file and return {url, public_id, resource_type, size, filename}

    Raises:
        UpstreamFailure: storage not configured or the upload failed
    """
    _configure()

    try:
        body = await asyncio.to_thread(
            cloudinary.uploader.upload,
            io.BytesIO(content),
            folder=folder,
            resource_type="auto",
            use_filename=True,
            unique_filename=True,
            filename_override=filename,
            timeout=config.STORAGE_TIMEOUT_SECONDS
        )
    except cloudinary.exceptions.Error as e:
        logger.error("Upload of %s failed: %s", filename, e)
        raise UpstreamFailure(f"Failed to upload {filename}")

    return {
        "filename": filename,
        "url": body.get("secure_url") or body.get("url"),
        "public_id": body.get("public_id"),
        "resource_type": body.get("resource_type", "raw"),
        "size": body.get("bytes", len(content)),
    }


async def delete_file(public_id: str, resource_type: Optional[str] = "raw"):
    _configure()

    try:
        result = await asyncio.to_thread(
            cloudinary.uploader.destroy,
            public_id,
            resource_type=resource_type or "raw",
            invalidate=True,
            timeout=config.STORAGE_TIMEOUT_SECONDS
        )
    except cloudinary.exceptions.Error as e:
        logger.error("Delete of %s failed: %s", public_id, e)
        raise UpstreamFailure("Failed to delete stored file")

    if result.get("result") not in ("ok", "not found"):
        logger.error("Delete of %s returned %s", public_id, result)
        raise UpstreamFailure("Failed to delete stored file")
