"""Local file storage for uploads.

Files land under ``Config.UPLOAD_DIR`` with a generated name and are served
by the HTTP API under ``Config.UPLOAD_URL_PREFIX``.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Iterable, Optional

import aiofiles
import aiofiles.os

from HiveChat.config import config
from HiveChat.core.server.errors import UpstreamError, ValidationError
from HiveChat.core.server.models import FileRef

logger = logging.getLogger(__name__)


class LocalBlobStore:

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        url_prefix: Optional[str] = None,
        max_bytes: Optional[int] = None,
        allowed_types: Optional[Iterable[str]] = None,
    ):
        self.upload_dir = upload_dir or config.UPLOAD_DIR
        self.url_prefix = (url_prefix or config.UPLOAD_URL_PREFIX).rstrip("/")
        self.max_bytes = max_bytes or config.UPLOAD_MAX_BYTES
        self.allowed_types = frozenset(allowed_types or config.UPLOAD_ALLOWED_TYPES)

    def _unique_name(self, filename: str) -> str:
        _, ext = os.path.splitext(os.path.basename(filename))
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}{ext.lower()}"

    async def store(self, filename: str, content_type: str, data: bytes) -> FileRef:
        """
        Persist an upload.

        Raises:
            ValidationError: disallowed type, empty or oversized file
            UpstreamError: the file could not be written
        """
        if content_type not in self.allowed_types:
            raise ValidationError(f"File type '{content_type}' is not allowed")
        if not data:
            raise ValidationError("Uploaded file is empty")
        if len(data) > self.max_bytes:
            raise ValidationError(f"File exceeds {self.max_bytes // (1024 * 1024)} MB")

        stored_name = self._unique_name(filename)
        path = os.path.join(self.upload_dir, stored_name)
        try:
            await aiofiles.os.makedirs(self.upload_dir, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Failed to store upload %s: %s", filename, e)
            raise UpstreamError(f"Could not store file: {e}")

        logger.info("Stored upload %s as %s (%d bytes)", filename, stored_name, len(data))
        return FileRef(
            url=f"{self.url_prefix}/{stored_name}",
            type=content_type,
            name=os.path.basename(filename) or stored_name,
            size=len(data),
        )
