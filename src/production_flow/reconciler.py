"""Status reconciliation between the ephemeral registry and the persisted snapshot.

The snapshot is authoritative for completion. Ephemeral records only fill in
what persistence cannot know yet: work that is in flight or has failed.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .models.job import GenerationJob, JobKind, JobStatus
from .models.pipeline import PIPELINE_STEPS, PipelineState, PipelineStepDefinition, StepState, StepStatus
from .models.snapshot import PersistedCompletionSnapshot

_ACTIVE_STEP_STATUS = {
    JobStatus.queued: StepStatus.starting,
    JobStatus.starting: StepStatus.starting,
    JobStatus.processing: StepStatus.processing,
}


def _latest(records: Iterable[GenerationJob]) -> GenerationJob | None:
    return max(records, key=lambda record: record.started_at, default=None)


def _latest_per_character(records: Iterable[GenerationJob]) -> dict[str, GenerationJob]:
    latest: dict[str, GenerationJob] = {}
    for record in records:
        character_id = record.target.character_id
        if character_id is None:
            continue
        current = latest.get(character_id)
        if current is None or record.started_at >= current.started_at:
            latest[character_id] = record
    return latest


def reconcile_single(
    step: PipelineStepDefinition,
    snapshot: PersistedCompletionSnapshot,
    records: Sequence[GenerationJob],
) -> StepState:
    record = _latest(records)
    if snapshot.has_artifact(step.kind):
        status = StepStatus.succeeded
    elif record is None:
        status = StepStatus.pending
    elif record.status is JobStatus.failed:
        status = StepStatus.failed
    elif record.status is JobStatus.succeeded:
        status = StepStatus.succeeded
    else:
        status = _ACTIVE_STEP_STATUS[record.status]

    return StepState(
        step=step,
        status=status,
        total=1,
        completed=int(status is StepStatus.succeeded),
        active=int(status in (StepStatus.starting, StepStatus.processing)),
        failed=int(status is StepStatus.failed),
        pending=int(status is StepStatus.pending),
        tasks=list(records),
    )


def reconcile_fan_out(
    step: PipelineStepDefinition,
    snapshot: PersistedCompletionSnapshot,
    records: Sequence[GenerationJob],
) -> StepState:
    total = snapshot.seed_count
    done = snapshot.completed_characters(step.kind)
    seed_ids = set(snapshot.seed_ids)

    active = failed = 0
    for character_id, record in _latest_per_character(records).items():
        if character_id in done or (seed_ids and character_id not in seed_ids):
            continue
        if record.status.is_active or record.status is JobStatus.queued:
            active += 1
        elif record.status is JobStatus.failed:
            failed += 1

    completed = len(done)
    if total > 0 and completed >= total:
        status = StepStatus.succeeded
    elif active > 0:
        status = StepStatus.processing
    elif failed > 0:
        status = StepStatus.failed
    else:
        status = StepStatus.pending

    if total == 0:
        # Nothing to count against without seeds; only the status carries the ephemeral signal.
        completed = active = failed = 0

    return StepState(
        step=step,
        status=status,
        total=total,
        completed=completed,
        active=active,
        failed=failed,
        pending=max(0, total - completed - active - failed),
        partial_failure=failed > 0 and completed > 0,
        tasks=list(records),
    )


def reconcile_step(
    step: PipelineStepDefinition,
    snapshot: PersistedCompletionSnapshot,
    records: Iterable[GenerationJob],
) -> StepState:
    relevant = [
        record
        for record in records
        if record.kind is step.kind and record.target.show_id == snapshot.show_id
    ]
    if step.fan_out:
        return reconcile_fan_out(step, snapshot, relevant)
    return reconcile_single(step, snapshot, relevant)


def reconcile_pipeline(
    snapshot: PersistedCompletionSnapshot,
    records: Iterable[GenerationJob],
    steps: Sequence[PipelineStepDefinition] = PIPELINE_STEPS,
) -> PipelineState:
    records = list(records)
    ordered = sorted(steps, key=lambda step: step.order)
    return PipelineState(
        show_id=snapshot.show_id,
        steps=[reconcile_step(step, snapshot, records) for step in ordered],
    )


def step_status(
    kind: JobKind,
    snapshot: PersistedCompletionSnapshot,
    records: Iterable[GenerationJob],
) -> StepStatus:
    for step in PIPELINE_STEPS:
        if step.kind is kind:
            return reconcile_step(step, snapshot, records).status
    raise KeyError(kind)


__all__ = [
    "reconcile_fan_out",
    "reconcile_pipeline",
    "reconcile_single",
    "reconcile_step",
    "step_status",
]
