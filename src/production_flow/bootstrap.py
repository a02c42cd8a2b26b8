from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping

import httpx

from .artifact_storage import ArtifactStorage, GcsArtifactStorage, InlineArtifactStorage
from .completion import ShowCompletion, calculate_show_completion
from .compositor import GridCompositor
from .engine import CompletionPublisher, GenerationEngine, Sleep
from .firestore_snapshot_store import FirestoreSnapshotStore
from .job_store import TaskRegistry
from .models.pipeline import PipelineState
from .providers.backends import CompositorBackend, ProviderBackend, ReplicateBackend, VertexBackend
from .pubsub_client import PubSubClient
from .reconciler import reconcile_pipeline
from .retry import default_policies
from .settings import Settings
from .snapshot_store import InMemorySnapshotStore, SnapshotStore
from .supervisor import TaskSupervisor

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything one service process needs, built once at startup."""

    settings: Settings
    registry: TaskRegistry
    snapshots: SnapshotStore
    engine: GenerationEngine

    def pipeline(self, show_id: str) -> PipelineState:
        snapshot = self.snapshots.read(show_id)
        return reconcile_pipeline(snapshot, self.registry.list(show_id=show_id))

    def completion(self, show_id: str) -> ShowCompletion:
        return calculate_show_completion(self.snapshots.read(show_id))

    def expire_records(self) -> int:
        return self.registry.prune() + self.registry.sweep_stale()

    async def aclose(self) -> None:
        await self.engine.aclose()


def build_runtime(
    settings: Settings | None = None,
    *,
    snapshots: SnapshotStore | None = None,
    storage: ArtifactStorage | None = None,
    backends: Mapping[str, ProviderBackend] | None = None,
    publisher: CompletionPublisher | None = None,
    http_client: httpx.AsyncClient | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Runtime:
    """Wire stores, back ends and the engine for the configured environment.

    Dev keeps everything in memory; other environments use Firestore, Cloud
    Storage and Pub/Sub. Provider credentials are resolved lazily on first use.
    """
    settings = settings or Settings.from_env()

    if snapshots is None:
        if settings.is_dev:
            snapshots = InMemorySnapshotStore()
        else:
            snapshots = FirestoreSnapshotStore(project_id=settings.require_project_id())

    if storage is None:
        if settings.is_dev:
            storage = InlineArtifactStorage()
        else:
            storage = GcsArtifactStorage(project_id=settings.require_project_id(), bucket_name=settings.artifact_bucket)

    if backends is None:
        backends = {
            "replicate": ReplicateBackend(settings, http_client=http_client),
            "vertex": VertexBackend(settings),
            "compositor": CompositorBackend(snapshots, storage, GridCompositor(client=http_client)),
        }

    if publisher is None and not settings.is_dev and settings.project_id:
        publisher = PubSubClient(settings.project_id, completed_topic=settings.pubsub_topic_generation_completed)

    registry = TaskRegistry()
    engine = GenerationEngine(
        registry=registry,
        snapshots=snapshots,
        backends=backends,
        supervisor=TaskSupervisor(),
        retry_policies=default_policies(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
        ),
        poll_interval=settings.poll_interval_seconds,
        max_polls=settings.max_polls,
        publisher=publisher,
        sleep=sleep,
    )

    logger.info(
        "Runtime ready",
        extra={
            "environment": settings.environment,
            "snapshot_store": type(snapshots).__name__,
            "backends": sorted(backends),
        },
    )
    return Runtime(settings=settings, registry=registry, snapshots=snapshots, engine=engine)


__all__ = ["Runtime", "build_runtime"]
