from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from ..models.exceptions import StorageException
from . import storage_adapter
from .image_codec import extension_for_mime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishOutcome:
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def published(self) -> bool:
        return self.url is not None


class ResultPublisher:
    """Uploads generated images to the public bucket.

    Publishing is best effort: a storage failure is reported in the
    outcome instead of raised, so the caller can still hand the image back
    inline.
    """

    def __init__(self, storage: Any = storage_adapter):
        self._storage = storage

    async def publish(self, data: bytes, content_type: str = "image/png") -> PublishOutcome:
        key = f"{uuid.uuid4()}.{extension_for_mime(content_type)}"
        try:
            await asyncio.to_thread(self._storage.put_object, key, data, content_type)
            url = await asyncio.to_thread(self._storage.public_url, key)
        except StorageException as e:
            logger.error("Upload failed", extra={"key": key, "error": e.message, **e.details})
            reason = e.details.get("reason")
            return PublishOutcome(error=f"{e.message}: {reason}" if reason else e.message)
        except Exception as e:
            logger.error("Upload failed", extra={"key": key, "error": str(e)}, exc_info=True)
            return PublishOutcome(error=str(e) or type(e).__name__)
        logger.info("Generated image published", extra={"key": key, "size_bytes": len(data)})
        return PublishOutcome(url=url)
