from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from production_flow import errors
from production_flow.bootstrap import Runtime, build_runtime
from production_flow.completion import ShowCompletion
from production_flow.logging_config import setup_logging
from production_flow.models.job import ErrorKind, GenerationJob, JobKind, JobStatus, SubmissionRequest
from production_flow.models.pipeline import PipelineState
from production_flow.models.snapshot import PersistedCompletionSnapshot
from production_flow.settings import Settings

logger = logging.getLogger(__name__)


class SubmitJobResponse(BaseModel):
    job_id: str
    status: JobStatus


class BatchSubmitRequest(BaseModel):
    requests: list[SubmissionRequest] = Field(min_length=1)


class JobResponse(BaseModel):
    id: str
    kind: JobKind
    show_id: str
    character_id: str | None
    section_label: str | None
    status: JobStatus
    attempts: int
    adapter_id: str | None
    provider_status: str | None
    error: str | None
    error_kind: ErrorKind | None
    result_locator: str | None
    needs_persistence_retry: bool
    started_at: datetime
    last_updated_at: datetime
    completed_at: datetime | None

    @staticmethod
    def from_record(record: GenerationJob) -> "JobResponse":
        return JobResponse(
            id=record.id,
            kind=record.kind,
            show_id=record.target.show_id,
            character_id=record.target.character_id,
            section_label=record.target.section_label,
            status=record.status,
            attempts=record.attempts,
            adapter_id=record.adapter_id,
            provider_status=record.provider_status,
            error=record.error,
            error_kind=record.error_kind,
            result_locator=record.result_locator,
            needs_persistence_retry=record.needs_persistence_retry,
            started_at=record.started_at,
            last_updated_at=record.last_updated_at,
            completed_at=record.completed_at,
        )


class BatchSubmitResponse(BaseModel):
    jobs: list[SubmitJobResponse]
    failures: list[dict[str, str]] = Field(default_factory=list)


_STATUS_CODES: dict[type[Exception], int] = {
    errors.ValidationError: 400,
    errors.JobStateError: 409,
    errors.ConfigurationError: 500,
    errors.ProviderError: 502,
    errors.PersistenceError: 503,
    errors.GenerationError: 500,
}


def create_app(runtime: Runtime | None = None, *, settings: Settings | None = None) -> FastAPI:
    settings = settings or (runtime.settings if runtime else Settings.from_env())
    runtime = runtime or build_runtime(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await runtime.aclose()

    app = FastAPI(title="Production Flow API", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime
    engine = runtime.engine

    @app.exception_handler(errors.GenerationError)
    async def generation_error_handler(_: Request, exc: errors.GenerationError) -> JSONResponse:
        status_code = next(
            (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
            500,
        )
        if status_code >= 500:
            logger.error("Request failed", extra={"error": str(exc), "error_kind": exc.kind.value})
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "error_kind": exc.kind.value})

    @app.exception_handler(errors.JobNotFoundError)
    async def job_not_found_handler(_: Request, exc: errors.JobNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": f"Job not found: {exc}"})

    @app.post("/v1/jobs", response_model=SubmitJobResponse)
    async def submit_job(request: SubmissionRequest) -> SubmitJobResponse:
        job = await engine.submit(request)
        return SubmitJobResponse(job_id=job.id, status=job.status)

    @app.post("/v1/jobs:batch", response_model=BatchSubmitResponse)
    async def submit_batch(request: BatchSubmitRequest) -> JSONResponse | BatchSubmitResponse:
        try:
            jobs = await engine.submit_batch(request.requests)
        except errors.PartialFailure as exc:
            accepted = [engine.get_job(job_id) for job_id in exc.succeeded]
            body = BatchSubmitResponse(
                jobs=[SubmitJobResponse(job_id=job.id, status=job.status) for job in accepted if job is not None],
                failures=[{"target": target, "error": message} for target, message in exc.failures],
            )
            return JSONResponse(status_code=207, content=body.model_dump(mode="json"))
        return BatchSubmitResponse(jobs=[SubmitJobResponse(job_id=job.id, status=job.status) for job in jobs])

    @app.get("/v1/jobs/{job_id}", response_model=JobResponse)
    async def get_job(job_id: str) -> JobResponse:
        record = engine.get_job(job_id)
        if not record:
            raise HTTPException(status_code=404, detail="Job not found")
        return JobResponse.from_record(record)

    @app.post("/v1/jobs/{job_id}:persist", response_model=JobResponse)
    async def retry_persistence(job_id: str) -> JobResponse:
        return JobResponse.from_record(await engine.retry_persistence(job_id))

    @app.delete("/v1/jobs/{job_id}", status_code=204)
    async def dismiss_job(job_id: str) -> None:
        engine.dismiss(job_id)

    @app.get("/v1/shows/{show_id}/tasks", response_model=list[JobResponse])
    async def list_tasks(show_id: str, active_only: bool = False) -> list[JobResponse]:
        runtime.expire_records()
        records = runtime.registry.list(show_id=show_id, active_only=active_only)
        return [JobResponse.from_record(record) for record in records]

    @app.get("/v1/shows/{show_id}/snapshot", response_model=PersistedCompletionSnapshot)
    async def get_snapshot(show_id: str) -> PersistedCompletionSnapshot:
        return runtime.snapshots.read(show_id)

    @app.get("/v1/shows/{show_id}/pipeline", response_model=PipelineState)
    async def get_pipeline(show_id: str) -> PipelineState:
        runtime.expire_records()
        return runtime.pipeline(show_id)

    @app.get("/v1/shows/{show_id}/completion", response_model=ShowCompletion)
    async def get_completion(show_id: str) -> ShowCompletion:
        return runtime.completion(show_id)

    @app.get("/health")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "active_tasks": engine.supervisor.active_count})

    return app


_settings = Settings.from_env()
setup_logging(environment=_settings.environment, project_id=_settings.project_id)

app = create_app(settings=_settings)
