"""
Attachment storage for chat messages.

Files go to the default storage backend (S3 via django-storages in
production, local/in-memory elsewhere).  The messaging services only ever
see the returned reference: {"url", "name", "mime_type"}.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import uuid

from django.conf import settings
from django.core.files.storage import default_storage
from django.utils.text import get_valid_filename
from rest_framework.exceptions import ValidationError

from common.exceptions import UploadFailed

logger = logging.getLogger(__name__)


def store_attachment(uploaded_file, user) -> dict:
    name = os.path.basename(uploaded_file.name or "upload")
    max_bytes = getattr(settings, "CHAT_MAX_UPLOAD_BYTES", 10 * 1024 * 1024)
    if uploaded_file.size and uploaded_file.size > max_bytes:
        raise ValidationError({"file": f"File exceeds the {max_bytes} byte limit."})

    mime = (
        getattr(uploaded_file, "content_type", None)
        or mimetypes.guess_type(name)[0]
        or "application/octet-stream"
    )
    key = f"chat_uploads/{user.pk}/{uuid.uuid4().hex[:12]}-{get_valid_filename(name)}"
    try:
        saved = default_storage.save(key, uploaded_file)
        url = default_storage.url(saved)
    except Exception as e:
        logger.exception("Attachment upload failed for user=%s name=%s", user.pk, name)
        raise UploadFailed(str(e) or None) from e

    logger.info("Stored attachment %s for user=%s (%s)", saved, user.pk, mime)
    return {"url": url, "name": name, "mime_type": mime}
