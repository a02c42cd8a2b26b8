from __future__ import annotations

import asyncio
import base64
import io
import json
from typing import Any

import httpx
from PIL import Image


class FakeReplicate:
    """Scripted predictions API.

    Each create consumes the next script: either a list of successive GET
    states for the new prediction, or an int status code to reject the create.
    The last state of a script repeats forever.
    """

    def __init__(self, scripts: list[Any] | None = None) -> None:
        self.scripts = list(scripts or [])
        self.states: dict[str, list[dict[str, Any]]] = {}
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.headers: list[httpx.Headers] = []
        self.polls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.headers.append(request.headers)
        path = request.url.path
        if request.method == "POST" and path.endswith("/predictions"):
            if not self.scripts:
                return httpx.Response(500, json={"detail": "no scripted prediction left"})
            script = self.scripts.pop(0)
            if isinstance(script, int):
                return httpx.Response(script, json={"detail": "rejected by fake"})
            prediction_id = f"pred-{len(self.created) + 1}"
            model_path = path[len("/v1/models/") : -len("/predictions")]
            self.created.append((model_path, json.loads(request.content)["input"]))
            self.states[prediction_id] = list(script)
            return httpx.Response(201, json={"id": prediction_id, "status": "starting"})

        if request.method == "GET" and "/predictions/" in path:
            prediction_id = path.rsplit("/", 1)[-1]
            states = self.states[prediction_id]
            state = states.pop(0) if len(states) > 1 else states[0]
            self.polls += 1
            return httpx.Response(200, json={"id": prediction_id, **state})

        return httpx.Response(404, json={"detail": f"unexpected {request.method} {path}"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def succeeded(output: Any) -> list[dict[str, Any]]:
    return [{"status": "processing"}, {"status": "succeeded", "output": output}]


def failed(error: str) -> list[dict[str, Any]]:
    return [{"status": "failed", "error": error}]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class RecordingPublisher:
    def __init__(self) -> None:
        self.jobs = []

    def publish_generation_completed(self, job) -> str:
        self.jobs.append(job)
        return f"msg-{len(self.jobs)}"


def png_data_url(color: tuple[int, int, int], size: tuple[int, int] = (64, 64)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
