import logging
import time
from typing import Optional
from urllib.parse import unquote, urlparse

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from config import STORAGE_BUCKET, MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

_bucket = None


class UploadValidationError(Exception):
    pass


class StorageError(Exception):
    pass


def get_bucket():
    global _bucket
    if _bucket is None:
        if not STORAGE_BUCKET:
            raise StorageError("Storage bucket not configured. Please contact support.")
        try:
            _bucket = storage.Client().bucket(STORAGE_BUCKET)
        except auth_exceptions.DefaultCredentialsError as e:
            logger.error("Failed to initialize storage client: %s", e)
            raise StorageError("Storage not available") from e
    return _bucket


def validate_upload(filename: Optional[str], content_type: Optional[str], size: int):
    if not filename or not filename.strip():
        raise UploadValidationError("File must have a valid name.")
    if size > MAX_UPLOAD_BYTES:
        raise UploadValidationError("File is too large. Please choose a file smaller than 10MB.")
    if not (content_type or "").startswith("image/"):
        raise UploadValidationError("Please select a valid image file (PNG, JPG, GIF, etc.).")


def object_path(folder: str, user_id: str, filename: str) -> str:
    return f"{folder}/{user_id}/{int(time.time() * 1000)}_{filename}"


def _upload(path: str, content: bytes, content_type: str) -> str:
    blob = get_bucket().blob(path)
    blob.upload_from_string(content, content_type=content_type)
    blob.make_public()
    return blob.public_url


async def upload_image(file: UploadFile, user_id: str, folder: str = "items") -> str:
    """Validate and store an uploaded image, returning its public URL.

    Raises UploadValidationError for bad input and StorageError when the
    bucket is missing or the upload fails.
    """
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    validate_upload(file.filename, file.content_type, len(content))
    path = object_path(folder, user_id, file.filename)
    logger.info("Uploading %s (%d bytes)", path, len(content))
    try:
        return await run_in_threadpool(_upload, path, content, file.content_type)
    except StorageError:
        raise
    except Exception as e:
        logger.error("Error uploading file %s: %s", path, e)
        raise StorageError("Upload failed. Please try again.") from e


def path_from_url(image_url: str) -> Optional[str]:
    parsed = urlparse(image_url)
    parts = parsed.path.lstrip("/").split("/", 1)
    if len(parts) != 2 or not STORAGE_BUCKET or parts[0] != STORAGE_BUCKET:
        return None
    return unquote(parts[1])


async def delete_image(image_url: str) -> bool:
    path = path_from_url(image_url)
    if not path:
        logger.warning("Not deleting image with unrecognised URL %s", image_url)
        return False
    try:
        await run_in_threadpool(lambda: get_bucket().blob(path).delete())
    except Exception as e:
        logger.error("Error deleting image %s: %s", path, e)
        return False
    return True
