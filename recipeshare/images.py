"""
Recipe image uploads.

Images are stored in the recipe image bucket under a random file name that
keeps the original extension, and are referenced from recipes by public URL.
"""

import logging
import uuid
from pathlib import PurePosixPath
from typing import Optional

from recipeshare.backends.base import BaseStorage, Session
from recipeshare.errors import InvalidInput, NotAuthenticated

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "recipe-images"

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}

MAX_IMAGE_BYTES = 5 * 1024 * 1024


def image_path(filename: str, bucket: str = DEFAULT_BUCKET) -> str:
    """
    Build the object path for an uploaded file, prefixed with the bucket name.

    Examples:
        >>> image_path("Cake.PNG").endswith(".png")
        True
    """
    extension = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise InvalidInput(
            f"Unsupported image type {extension or '(none)'!r}; allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    return f"{bucket}/{uuid.uuid4().hex}.{extension}"


async def upload_recipe_image(
    storage: BaseStorage,
    session: Optional[Session],
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
    bucket: str = DEFAULT_BUCKET,
) -> str:
    """
    Upload an image and return its public URL.

    Raises:
        NotAuthenticated: If there is no session
        InvalidInput: If the file is empty, too large or not an image type
        GatewayFailure: If the storage backend rejects the upload
    """
    if session is None:
        raise NotAuthenticated("User must be logged in to upload images")
    if not data:
        raise InvalidInput("Image file is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise InvalidInput(f"Image exceeds {MAX_IMAGE_BYTES // (1024 * 1024)} MB")

    path = image_path(filename, bucket)
    await storage.upload(bucket, path, data, content_type=content_type, session=session)
    url = await storage.public_url(bucket, path)
    logger.info("Uploaded image %s (%d bytes) for user %s", path, len(data), session.user_id)
    return url
