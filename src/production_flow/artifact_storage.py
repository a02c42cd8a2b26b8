from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from google.cloud import storage

from .errors import PersistenceError
from .normalizer import to_data_url

logger = logging.getLogger(__name__)


class ArtifactStorage(Protocol):
    async def upload(self, data: bytes, *, path: str, content_type: str) -> str:
        """Store ``data`` and return a locator for it."""


class InlineArtifactStorage:
    """Keeps artifacts inline as data URLs; used in dev and tests."""

    async def upload(self, data: bytes, *, path: str, content_type: str) -> str:
        logger.debug("Inlined artifact", extra={"path": path, "size": len(data)})
        return to_data_url(data, content_type)


class GcsArtifactStorage:
    """Cloud Storage bucket holding composited artifacts."""

    def __init__(self, *, project_id: str, bucket_name: str | None = None) -> None:
        self._client = storage.Client(project=project_id)
        self._bucket = self._client.bucket(bucket_name or f"{project_id}-production-artifacts")

    async def upload(self, data: bytes, *, path: str, content_type: str) -> str:
        blob = self._bucket.blob(path)
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except Exception as exc:
            raise PersistenceError(f"Failed to upload artifact {path}: {exc}") from exc

        logger.info(
            "Uploaded artifact",
            extra={"bucket": self._bucket.name, "path": path, "size": len(data)},
        )
        return blob.public_url


__all__ = ["ArtifactStorage", "GcsArtifactStorage", "InlineArtifactStorage"]
