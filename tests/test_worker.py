import base64
import json

import pytest
from fastapi.testclient import TestClient
from helpers import png_data_url

from production_flow.bootstrap import build_runtime
from production_flow.models.snapshot import CharacterSeed, PersistedCompletionSnapshot
from services.worker.main import create_app


def push_message(**payload) -> dict:
    data = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
    return {"message": {"data": data, "messageId": "1"}, "subscription": "projects/p/subscriptions/generation-completed"}


def seeded_snapshot(portraits: dict) -> PersistedCompletionSnapshot:
    return PersistedCompletionSnapshot(
        show_id="show-1",
        character_seeds=[CharacterSeed(id="c1", name="Ada"), CharacterSeed(id="c2", name="Grace")],
        character_portraits=portraits,
    )


@pytest.fixture
def runtime(settings):
    return build_runtime(settings)


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def test_last_portrait_triggers_grid_assembly(client, runtime):
    runtime.snapshots.save(
        seeded_snapshot({"c1": png_data_url((200, 0, 0)), "c2": png_data_url((0, 200, 0))})
    )

    response = client.post(
        "/v1/worker/generation-completed",
        json=push_message(job_id="pred-9", kind="portrait", show_id="show-1", status="succeeded"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "succeeded"
    assert body["grid_job_id"].startswith("portrait-grid_")
    assert runtime.snapshots.read("show-1").portrait_grid_url.startswith("data:image/png;base64,")


def test_grid_is_deferred_until_every_portrait_exists(client, runtime):
    runtime.snapshots.save(seeded_snapshot({"c1": png_data_url((200, 0, 0))}))

    response = client.post(
        "/v1/worker/generation-completed",
        json=push_message(job_id="pred-9", kind="portrait", show_id="show-1"),
    )

    assert response.json() == {"status": "skipped", "job_id": "pred-9"}
    assert runtime.snapshots.read("show-1").portrait_grid_url is None


def test_existing_grid_is_not_rebuilt(client, runtime):
    snapshot = seeded_snapshot({"c1": png_data_url((200, 0, 0)), "c2": png_data_url((0, 200, 0))})
    snapshot.portrait_grid_url = "https://cdn.example/grid.png"
    runtime.snapshots.save(snapshot)

    response = client.post(
        "/v1/worker/generation-completed",
        json=push_message(job_id="pred-9", kind="portrait", show_id="show-1"),
    )

    assert response.json()["status"] == "skipped"
    assert runtime.snapshots.read("show-1").portrait_grid_url == "https://cdn.example/grid.png"


def test_other_kinds_are_ignored(client):
    response = client.post(
        "/v1/worker/generation-completed",
        json=push_message(job_id="pred-1", kind="trailer", show_id="show-1"),
    )

    assert response.json() == {"status": "ignored", "job_id": "pred-1"}


def test_malformed_messages_are_rejected(client):
    empty = {"message": {}, "subscription": "projects/p/subscriptions/s"}
    garbage = {"message": {"data": "!!!not-base64!!!"}, "subscription": "projects/p/subscriptions/s"}
    missing_fields = push_message(job_id="pred-1")

    assert client.post("/v1/worker/generation-completed", json=empty).status_code == 400
    assert client.post("/v1/worker/generation-completed", json=garbage).status_code == 400
    assert client.post("/v1/worker/generation-completed", json=missing_fields).status_code == 400


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
