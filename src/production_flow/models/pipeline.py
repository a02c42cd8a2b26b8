from __future__ import annotations

from enum import Enum
from typing import Sequence

from pydantic import BaseModel, Field

from .job import GenerationJob, JobKind


class StepStatus(str, Enum):
    pending = "pending"
    starting = "starting"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"


class PipelineStepDefinition(BaseModel):
    id: str
    kind: JobKind
    label: str
    order: int
    fan_out: bool = False


PIPELINE_STEPS: tuple[PipelineStepDefinition, ...] = (
    PipelineStepDefinition(id="show-gen", kind=JobKind.show_blueprint, label="Show Blueprint", order=1),
    PipelineStepDefinition(id="char-seeds", kind=JobKind.character_seed_set, label="Character Seeds", order=2),
    PipelineStepDefinition(
        id="dossiers", kind=JobKind.character_dossier, label="Character Dossiers", order=3, fan_out=True
    ),
    PipelineStepDefinition(id="portraits", kind=JobKind.portrait, label="Portraits", order=4, fan_out=True),
    PipelineStepDefinition(id="videos", kind=JobKind.video, label="Character Videos", order=5, fan_out=True),
    PipelineStepDefinition(id="grid", kind=JobKind.portrait_grid, label="Portrait Grid", order=6),
    PipelineStepDefinition(id="poster", kind=JobKind.library_poster, label="Show Poster", order=7),
    PipelineStepDefinition(id="hero-poster", kind=JobKind.poster, label="Hero Poster", order=8),
    PipelineStepDefinition(id="trailer", kind=JobKind.trailer, label="Trailer", order=9),
)


class StepState(BaseModel):
    step: PipelineStepDefinition
    status: StepStatus
    total: int
    completed: int
    active: int
    failed: int
    pending: int
    partial_failure: bool = False
    tasks: Sequence[GenerationJob] = Field(default_factory=list)


class PipelineState(BaseModel):
    show_id: str
    steps: Sequence[StepState]

    def step(self, kind: JobKind) -> StepState | None:
        for state in self.steps:
            if state.step.kind is kind:
                return state
        return None


__all__ = ["PIPELINE_STEPS", "PipelineState", "PipelineStepDefinition", "StepState", "StepStatus"]
