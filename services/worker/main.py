from __future__ import annotations

import base64
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from production_flow.bootstrap import Runtime, build_runtime
from production_flow.errors import GenerationError
from production_flow.logging_config import set_trace_id, setup_logging
from production_flow.models.job import GenerationJob, JobKind, SubmissionRequest, TargetEntity
from production_flow.models.pipeline import StepStatus
from production_flow.settings import Settings

logger = logging.getLogger(__name__)


class PubSubMessage(BaseModel):
    """Pub/Sub push message format."""

    message: dict[str, Any]
    subscription: str


async def assemble_grid_if_ready(runtime: Runtime, show_id: str) -> GenerationJob | None:
    """Build the portrait grid once every portrait is in and no grid exists yet."""
    state = runtime.pipeline(show_id)
    portraits = state.step(JobKind.portrait)
    grid = state.step(JobKind.portrait_grid)

    if portraits is None or portraits.status is not StepStatus.succeeded:
        logger.info("Portraits not complete; grid deferred", extra={"show_id": show_id})
        return None
    if grid is not None and grid.status in (StepStatus.succeeded, StepStatus.starting, StepStatus.processing):
        logger.info(
            "Portrait grid already present or running",
            extra={"show_id": show_id, "grid_status": grid.status.value},
        )
        return None

    job = await runtime.engine.submit(
        SubmissionRequest(kind=JobKind.portrait_grid, target=TargetEntity(show_id=show_id))
    )
    return await runtime.engine.wait_for(job.id)


def create_app(runtime: Runtime | None = None, *, settings: Settings | None = None) -> FastAPI:
    settings = settings or (runtime.settings if runtime else Settings.from_env())
    runtime = runtime or build_runtime(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await runtime.aclose()

    app = FastAPI(title="Production Flow Worker", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime

    @app.post("/v1/worker/generation-completed")
    async def handle_generation_completed(request: Request) -> JSONResponse:
        """Consume a ``generation-completed`` event from a Pub/Sub push subscription."""
        trace_id = str(uuid.uuid4())
        set_trace_id(trace_id)

        body = await request.json()
        pubsub_message = PubSubMessage.model_validate(body)

        message_data = pubsub_message.message.get("data", "")
        if not message_data:
            raise HTTPException(status_code=400, detail="No message data")
        try:
            payload = json.loads(base64.b64decode(message_data).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise HTTPException(status_code=400, detail=f"Malformed message data: {exc}") from exc

        job_id = payload.get("job_id")
        kind = payload.get("kind")
        show_id = payload.get("show_id")
        if not job_id or not kind or not show_id:
            raise HTTPException(status_code=400, detail="Missing required fields: job_id, kind, show_id")

        logger.info(
            "Processing generation-completed event",
            extra={"job_id": job_id, "kind": kind, "show_id": show_id, "trace_id": trace_id},
        )

        if kind != JobKind.portrait.value:
            return JSONResponse({"status": "ignored", "job_id": job_id})

        try:
            grid_job = await assemble_grid_if_ready(runtime, show_id)
        except GenerationError as exc:
            logger.error(
                "Failed to assemble portrait grid",
                exc_info=True,
                extra={"show_id": show_id, "trace_id": trace_id, "error": str(exc)},
            )
            raise HTTPException(status_code=500, detail=str(exc)) from exc

        if grid_job is None:
            return JSONResponse({"status": "skipped", "job_id": job_id})
        return JSONResponse(
            {
                "status": grid_job.status.value,
                "job_id": job_id,
                "grid_job_id": grid_job.id,
                "error": grid_job.error,
            }
        )

    @app.get("/health")
    async def healthcheck() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse({"status": "ok"})

    return app


_settings = Settings.from_env()
setup_logging(environment=_settings.environment, project_id=_settings.project_id)

app = create_app(settings=_settings)
