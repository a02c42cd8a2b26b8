from __future__ import annotations

from typing import Any

import pytest
from helpers import FakeReplicate, RecordingSleep

from production_flow.engine import GenerationEngine
from production_flow.job_store import TaskRegistry
from production_flow.providers.backends import ReplicateBackend
from production_flow.settings import Settings
from production_flow.snapshot_store import InMemorySnapshotStore
from production_flow.supervisor import TaskSupervisor


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="dev", replicate_api_token="test-token", poll_interval_seconds=0.0, max_polls=5)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def build_engine(settings, recording_sleep):
    def build(
        fake: FakeReplicate | None = None,
        *,
        snapshots=None,
        backends: dict[str, Any] | None = None,
        policies=None,
        max_polls: int = 5,
        publisher=None,
        engine_settings: Settings | None = None,
        sleep=None,
    ) -> GenerationEngine:
        fake = fake or FakeReplicate()
        configured = dict(backends or {})
        configured.setdefault(
            "replicate", ReplicateBackend(engine_settings or settings, http_client=fake.client())
        )
        return GenerationEngine(
            registry=TaskRegistry(),
            snapshots=snapshots if snapshots is not None else InMemorySnapshotStore(),
            backends=configured,
            supervisor=TaskSupervisor(),
            retry_policies=policies,
            poll_interval=0.0,
            max_polls=max_polls,
            publisher=publisher,
            sleep=sleep or recording_sleep,
        )

    return build
