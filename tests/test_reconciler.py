from datetime import datetime, timedelta

from production_flow.models.job import GenerationJob, JobKind, JobStatus, TargetEntity
from production_flow.models.pipeline import PIPELINE_STEPS, StepStatus
from production_flow.models.snapshot import CharacterSeed, PersistedCompletionSnapshot
from production_flow.reconciler import reconcile_pipeline, step_status

SHOW = "show-1"


def seeds(count: int) -> list[CharacterSeed]:
    return [CharacterSeed(id=f"c{i}", name=f"Character {i}") for i in range(1, count + 1)]


def record(kind: JobKind, status: JobStatus, character_id: str | None = None, *, age: int = 0) -> GenerationJob:
    return GenerationJob(
        id=f"{kind.value}-{character_id}-{status.value}-{age}",
        kind=kind,
        target=TargetEntity(show_id=SHOW, character_id=character_id),
        status=status,
        started_at=datetime.utcnow() - timedelta(seconds=age),
    )


def test_snapshot_presence_overrides_stale_ephemeral_status():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW, poster_url="https://cdn/poster.png")

    for status in (JobStatus.failed, JobStatus.processing, JobStatus.starting):
        assert step_status(JobKind.poster, snapshot, [record(JobKind.poster, status)]) is StepStatus.succeeded


def test_singleton_falls_back_to_ephemeral_signal():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW)

    assert step_status(JobKind.trailer, snapshot, []) is StepStatus.pending
    assert step_status(JobKind.trailer, snapshot, [record(JobKind.trailer, JobStatus.starting)]) is StepStatus.starting
    assert (
        step_status(JobKind.trailer, snapshot, [record(JobKind.trailer, JobStatus.processing)])
        is StepStatus.processing
    )
    assert step_status(JobKind.trailer, snapshot, [record(JobKind.trailer, JobStatus.failed)]) is StepStatus.failed
    assert (
        step_status(JobKind.trailer, snapshot, [record(JobKind.trailer, JobStatus.succeeded)])
        is StepStatus.succeeded
    )


def test_singleton_uses_latest_record():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW)
    records = [
        record(JobKind.trailer, JobStatus.failed, age=60),
        record(JobKind.trailer, JobStatus.processing, age=1),
    ]
    assert step_status(JobKind.trailer, snapshot, records) is StepStatus.processing


def test_fan_out_complete_snapshot_ignores_stale_failures():
    snapshot = PersistedCompletionSnapshot(
        show_id=SHOW,
        character_seeds=seeds(6),
        character_portraits={f"c{i}": f"https://cdn/c{i}.png" for i in range(1, 7)},
    )
    records = [record(JobKind.portrait, JobStatus.failed, "c1"), record(JobKind.portrait, JobStatus.failed, "c2")]

    state = reconcile_pipeline(snapshot, records).step(JobKind.portrait)

    assert state.status is StepStatus.succeeded
    assert (state.total, state.completed, state.active, state.failed, state.pending) == (6, 6, 0, 0, 0)
    assert state.partial_failure is False


def test_fan_out_in_progress_counts_only_incomplete_characters():
    snapshot = PersistedCompletionSnapshot(
        show_id=SHOW,
        character_seeds=seeds(6),
        character_portraits={"c1": "u1", "c2": "u2", "c3": "u3", "c4": "u4", "c6": None},
    )
    records = [
        record(JobKind.portrait, JobStatus.failed, "c1"),
        record(JobKind.portrait, JobStatus.processing, "c5"),
        record(JobKind.portrait, JobStatus.failed, "c6"),
    ]

    state = reconcile_pipeline(snapshot, records).step(JobKind.portrait)

    assert state.status is StepStatus.processing
    assert (state.total, state.completed, state.active, state.failed, state.pending) == (6, 4, 1, 1, 0)
    assert state.partial_failure is True


def test_fan_out_failure_without_active_work_is_failed_but_keeps_completed():
    snapshot = PersistedCompletionSnapshot(
        show_id=SHOW,
        character_seeds=seeds(3),
        character_videos={"c1": ["https://cdn/c1.mp4"]},
    )
    records = [record(JobKind.video, JobStatus.failed, "c2")]

    state = reconcile_pipeline(snapshot, records).step(JobKind.video)

    assert state.status is StepStatus.failed
    assert (state.completed, state.failed, state.pending) == (1, 1, 1)
    assert state.partial_failure is True


def test_fan_out_uses_latest_record_per_character():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW, character_seeds=seeds(2))
    records = [
        record(JobKind.character_dossier, JobStatus.failed, "c1", age=30),
        record(JobKind.character_dossier, JobStatus.starting, "c1", age=1),
    ]

    state = reconcile_pipeline(snapshot, records).step(JobKind.character_dossier)

    assert state.status is StepStatus.processing
    assert (state.active, state.failed) == (1, 0)


def test_unpersisted_ephemeral_success_counts_as_pending():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW, character_seeds=seeds(2))
    records = [record(JobKind.portrait, JobStatus.succeeded, "c1")]

    state = reconcile_pipeline(snapshot, records).step(JobKind.portrait)

    assert state.status is StepStatus.pending
    assert (state.completed, state.pending) == (0, 2)


def test_zero_seed_fan_out_is_never_succeeded():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW)

    assert step_status(JobKind.portrait, snapshot, []) is StepStatus.pending
    assert (
        step_status(JobKind.portrait, snapshot, [record(JobKind.portrait, JobStatus.processing, "c1")])
        is StepStatus.processing
    )


def test_zero_seed_fan_out_counts_stay_consistent():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW, character_portraits={"c9": "https://cdn/c9.png"})
    records = [
        record(JobKind.portrait, JobStatus.processing, "c1"),
        record(JobKind.portrait, JobStatus.failed, "c2"),
    ]

    state = reconcile_pipeline(snapshot, records).step(JobKind.portrait)

    assert state.status is StepStatus.processing
    assert (state.total, state.completed, state.active, state.failed, state.pending) == (0, 0, 0, 0, 0)
    assert not state.partial_failure


def test_pipeline_lists_every_step_in_order_and_ignores_other_shows():
    snapshot = PersistedCompletionSnapshot(show_id=SHOW, blueprint={"title": "Night Shift"})
    foreign = GenerationJob(
        id="elsewhere",
        kind=JobKind.trailer,
        target=TargetEntity(show_id="show-2"),
        status=JobStatus.processing,
    )

    state = reconcile_pipeline(snapshot, [foreign])

    assert [step.step.id for step in state.steps] == [step.id for step in PIPELINE_STEPS]
    assert state.step(JobKind.show_blueprint).status is StepStatus.succeeded
    assert state.step(JobKind.trailer).status is StepStatus.pending
