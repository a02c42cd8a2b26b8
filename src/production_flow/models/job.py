from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, NamedTuple

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    show_blueprint = "show-blueprint"
    character_seed_set = "character-seed-set"
    character_dossier = "character-dossier"
    portrait = "portrait"
    video = "video"
    poster = "poster"
    library_poster = "library-poster"
    portrait_grid = "portrait-grid"
    trailer = "trailer"


FAN_OUT_KINDS = frozenset({JobKind.character_dossier, JobKind.portrait, JobKind.video})


class JobStatus(str, Enum):
    queued = "queued"
    starting = "starting"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.starting, JobStatus.processing)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.succeeded, JobStatus.failed)


class ErrorKind(str, Enum):
    validation = "validation"
    configuration = "configuration"
    provider = "provider"
    result_format = "result_format"
    persistence = "persistence"
    timeout = "timeout"


class TargetEntity(BaseModel):
    show_id: str
    character_id: str | None = None
    section_label: str | None = None


class TaskKey(NamedTuple):
    show_id: str
    kind: JobKind
    character_id: str | None = None
    section_label: str | None = None


class GenerationParameters(BaseModel):
    """Caller-supplied knobs; each adapter keeps only what it understands."""

    prompt: str | None = None
    model_id: str | None = None
    reference_urls: list[str] = Field(default_factory=list)
    duration: int | None = None
    aspect_ratio: str | None = None
    resolution: str | None = None
    extra: Mapping[str, Any] = Field(default_factory=dict)


class SubmissionRequest(BaseModel):
    kind: JobKind
    target: TargetEntity
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)

    @property
    def key(self) -> TaskKey:
        return TaskKey(
            self.target.show_id,
            self.kind,
            self.target.character_id,
            self.target.section_label,
        )


class GenerationJob(BaseModel):
    id: str
    kind: JobKind
    target: TargetEntity
    status: JobStatus = JobStatus.queued
    attempts: int = 0
    adapter_id: str | None = None
    provider_job_id: str | None = None
    provider_status: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    result_locator: str | None = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    last_updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    @property
    def key(self) -> TaskKey:
        return TaskKey(
            self.target.show_id,
            self.kind,
            self.target.character_id,
            self.target.section_label,
        )

    @property
    def needs_persistence_retry(self) -> bool:
        return (
            self.status is JobStatus.failed
            and self.error_kind is ErrorKind.persistence
            and self.result_locator is not None
        )


__all__ = [
    "ErrorKind",
    "FAN_OUT_KINDS",
    "GenerationJob",
    "GenerationParameters",
    "JobKind",
    "JobStatus",
    "SubmissionRequest",
    "TargetEntity",
    "TaskKey",
]
