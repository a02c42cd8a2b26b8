"""Back ends that turn a :class:`ProviderRequest` into a provider-side prediction.

Remote back ends return a non-terminal handle that the engine polls. Inline
back ends do their work inside ``create`` and hand back a terminal handle, so
the engine runs them entirely inside the background task.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Protocol

import httpx

from ..artifact_storage import ArtifactStorage
from ..compositor import GridArtifact, GridCompositor
from ..errors import ProviderError
from ..models.job import TargetEntity
from ..settings import Settings
from ..snapshot_store import SnapshotStore
from .registry import ProviderRequest
from .replicate_client import Prediction, ReplicateClient
from .vertex_ai_client import VertexAIClient

logger = logging.getLogger(__name__)


class ProviderBackend(Protocol):
    inline: bool

    async def create(self, request: ProviderRequest, target: TargetEntity) -> Prediction:
        ...

    async def fetch(self, provider_job_id: str) -> Prediction:
        ...


class ReplicateBackend:
    inline = False

    def __init__(
        self,
        settings: Settings,
        *,
        client: ReplicateClient | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._http_client = http_client

    def _get_client(self) -> ReplicateClient:
        if self._client is None:
            self._client = ReplicateClient(
                api_token=self._settings.require_replicate_token(),
                base_url=self._settings.replicate_base_url,
                client=self._http_client,
            )
        return self._client

    async def create(self, request: ProviderRequest, target: TargetEntity) -> Prediction:
        return await self._get_client().create_prediction(request.model_path, request.payload)

    async def fetch(self, provider_job_id: str) -> Prediction:
        return await self._get_client().get_prediction(provider_job_id)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class _InlineBackend:
    inline = True

    async def fetch(self, provider_job_id: str) -> Prediction:
        raise ProviderError(f"{type(self).__name__} runs in-line and has nothing to poll")

    @staticmethod
    def _completed(output: Any) -> Prediction:
        return Prediction(id=uuid.uuid4().hex, status="succeeded", output=output)


class VertexBackend(_InlineBackend):
    """JSON documents from Gemini; the locator is the serialized document."""

    def __init__(self, settings: Settings, *, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = VertexAIClient(
                project_id=self._settings.require_project_id(),
                location=self._settings.vertex_location,
                model_name=self._settings.vertex_model,
            )
        return self._client

    async def create(self, request: ProviderRequest, target: TargetEntity) -> Prediction:
        payload = dict(request.payload)
        client = self._get_client()
        document = await asyncio.to_thread(
            client.generate_json,
            payload["prompt"],
            temperature=payload.get("temperature", 0.7),
            max_output_tokens=payload.get("max_output_tokens", 8192),
        )
        return self._completed(json.dumps(document, ensure_ascii=False))


class CompositorBackend(_InlineBackend):
    """Portrait grid assembled from the show's persisted portraits."""

    def __init__(
        self,
        snapshots: SnapshotStore,
        storage: ArtifactStorage,
        compositor: GridCompositor | None = None,
    ) -> None:
        self._snapshots = snapshots
        self._storage = storage
        self._compositor = compositor or GridCompositor()

    async def create(self, request: ProviderRequest, target: TargetEntity) -> Prediction:
        snapshot = await asyncio.to_thread(self._snapshots.read, target.show_id)
        entries = snapshot.portrait_entries()
        if not entries:
            raise ProviderError(f"No persisted portraits to assemble for show {target.show_id}")

        with_labels = request.payload.get("labels", True)
        artifacts = [GridArtifact(locator=url, label=seed.name if with_labels else "") for seed, url in entries]
        result = await self._compositor.compose(artifacts)
        if not result.populated_slots:
            raise ProviderError("None of the persisted portraits could be loaded")

        locator = await self._storage.upload(
            result.image,
            path=f"{target.show_id}/portrait-grid-{uuid.uuid4().hex[:8]}.png",
            content_type=result.content_type,
        )
        logger.info(
            "Assembled portrait grid",
            extra={
                "show_id": target.show_id,
                "populated_slots": len(result.populated_slots),
                "missing": result.missing,
            },
        )
        return self._completed({"url": locator})


__all__ = ["CompositorBackend", "ProviderBackend", "ReplicateBackend", "VertexBackend"]
