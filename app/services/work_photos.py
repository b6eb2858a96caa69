from __future__ import annotations

import base64
import binascii
import logging

from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.errors import InvalidInputError, UpstreamError
from app.schemas.works import PhotoPayload
from app.services.s3_storage import get_s3_storage

_LOG = logging.getLogger(__name__)


def decode_photo(photo: PhotoPayload) -> bytes:
    mime_type = str(photo.mime_type or "").strip().lower()
    if not mime_type.startswith("image/"):
        raise InvalidInputError("Photo must be an image")
    try:
        content = base64.b64decode(str(photo.content_base64 or ""), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("Photo content is not valid base64") from exc
    if not content:
        raise InvalidInputError("Photo is empty")
    if len(content) > int(settings.MAX_PHOTO_MB) * 1024 * 1024:
        raise InvalidInputError(f"Photo exceeds {settings.MAX_PHOTO_MB} MB")
    return content


def upload_work_photo(photo: PhotoPayload | None, *, folder: str) -> str | None:
    """Store the photo and return its public URL; runs before any row is touched."""
    if photo is None:
        return None
    content = decode_photo(photo)
    try:
        return get_s3_storage().upload(
            content,
            folder=folder,
            file_name=photo.file_name,
            mime_type=str(photo.mime_type).strip().lower(),
        )
    except (BotoCoreError, ClientError) as exc:
        _LOG.error("photo upload to %s failed: %s", folder, exc)
        raise UpstreamError("Photo upload failed") from exc
