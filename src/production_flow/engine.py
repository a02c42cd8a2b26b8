"""Job submission and polling engine.

``submit`` validates a request, creates the first provider job, records it as
``starting`` and hands the rest of the job's life to a supervised background
task. That task polls until a terminal provider status, applies the kind's
outer retry policy, normalizes the output and persists it. Only after the
durable write succeeds is the job marked ``succeeded``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from .errors import (
    GenerationError,
    JobNotFoundError,
    JobStateError,
    PartialFailure,
    PersistenceError,
    ProviderError,
    ProviderTimeoutError,
    ValidationError,
)
from .job_store import TaskRegistry
from .logging_config import job_fields
from .models.job import (
    FAN_OUT_KINDS,
    ErrorKind,
    GenerationJob,
    JobKind,
    JobStatus,
    SubmissionRequest,
    TargetEntity,
)
from .normalizer import require_locator
from .providers.backends import ProviderBackend
from .providers.registry import ProviderAdapter, adapter_chain
from .providers.replicate_client import Prediction
from .retry import SINGLE_ATTEMPT, RetryPolicy
from .snapshot_store import SnapshotStore
from .supervisor import TaskSupervisor

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class CompletionPublisher(Protocol):
    def publish_generation_completed(self, job: GenerationJob) -> Any:
        ...


class _Superseded(Exception):
    """The job was replaced or dismissed while its task was still running."""


class GenerationEngine:
    def __init__(
        self,
        *,
        registry: TaskRegistry,
        snapshots: SnapshotStore,
        backends: Mapping[str, ProviderBackend],
        supervisor: TaskSupervisor | None = None,
        retry_policies: Mapping[JobKind, RetryPolicy] | None = None,
        poll_interval: float = 2.0,
        max_polls: int = 150,
        publisher: CompletionPublisher | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.snapshots = snapshots
        self.supervisor = supervisor or TaskSupervisor()
        self._backends = dict(backends)
        self._policies = dict(retry_policies or {})
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._publisher = publisher
        self._sleep = sleep

    # Submission -----------------------------------------------------------------

    def validate(self, request: SubmissionRequest) -> tuple[ProviderAdapter, ...]:
        """Check a request and return the adapters its attempts will use."""
        kind = request.kind
        target = request.target
        params = request.parameters

        if not target.show_id or not target.show_id.strip():
            raise ValidationError("show_id is required.")
        if kind in FAN_OUT_KINDS and not target.character_id:
            raise ValidationError(f"{kind.value} jobs require a character_id.")
        if kind not in FAN_OUT_KINDS and target.character_id:
            raise ValidationError(f"{kind.value} jobs are per show and take no character_id.")

        chain = adapter_chain(kind, params.model_id)

        if kind is not JobKind.portrait_grid and not (params.prompt and params.prompt.strip()):
            raise ValidationError(f"A prompt is required for {kind.value} jobs.")
        if chain[0].requires_reference and not params.reference_urls:
            raise ValidationError(f"{chain[0].id} needs a reference image URL for {kind.value} jobs.")
        for adapter in chain:
            if adapter.backend not in self._backends:
                raise ValidationError(f"No back end configured for {adapter.id}.")
        return chain

    async def submit(self, request: SubmissionRequest) -> GenerationJob:
        """Start a job and return as soon as it has an id; never waits for completion."""
        chain = self.validate(request)
        adapter = chain[0]
        backend = self._backends[adapter.backend]

        prediction: Prediction | None = None
        if backend.inline:
            job_id = TaskRegistry.new_correlation_id(request.kind.value)
        else:
            prediction = await backend.create(adapter.build_request(request.parameters), request.target)
            job_id = prediction.id

        job = GenerationJob(
            id=job_id,
            kind=request.kind,
            target=request.target,
            status=JobStatus.starting,
            attempts=1,
            adapter_id=adapter.id,
            provider_job_id=prediction.id if prediction else None,
            provider_status=prediction.status if prediction else None,
        )
        self.registry.upsert(job)
        logger.info("Submitted generation job", extra={**job_fields(job), "adapter_id": adapter.id})

        self.supervisor.spawn(self._run(job, request, chain, prediction), name=job.id)
        return job

    async def submit_batch(self, requests: Sequence[SubmissionRequest]) -> list[GenerationJob]:
        """Submit fan-out requests concurrently.

        Raises :class:`PartialFailure` when some submissions went through and
        others did not; the accepted jobs keep running either way.
        """
        results = await asyncio.gather(*(self.submit(request) for request in requests), return_exceptions=True)

        jobs: list[GenerationJob] = []
        failures: list[tuple[str, str]] = []
        errors: list[GenerationError] = []
        for request, result in zip(requests, results):
            if isinstance(result, GenerationError):
                errors.append(result)
                failures.append((_describe(request), str(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                jobs.append(result)

        if errors and not jobs:
            raise errors[0]
        if failures:
            raise PartialFailure(
                f"{len(failures)} of {len(requests)} submissions failed",
                succeeded=[job.id for job in jobs],
                failures=failures,
            )
        return jobs

    # Observation ----------------------------------------------------------------

    def get_job(self, job_id: str) -> GenerationJob | None:
        return self.registry.get_job(job_id)

    async def wait_for(self, job_id: str, timeout: float | None = None) -> GenerationJob:
        await self.supervisor.wait(job_id, timeout=timeout)
        job = self.registry.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def dismiss(self, job_id: str) -> None:
        try:
            removed = self.registry.dismiss(job_id)
        except ValueError as exc:
            raise JobStateError(str(exc)) from exc
        if not removed:
            raise JobNotFoundError(job_id)

    async def retry_persistence(self, job_id: str) -> GenerationJob:
        """Re-run the durable write for a job whose artifact was produced but not recorded."""
        job = self.registry.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not job.needs_persistence_retry:
            raise JobStateError(f"Job {job_id} has no pending artifact write.")

        await self._record(job.target, job.kind, job.result_locator)

        now = datetime.utcnow()
        replacement = job.model_copy(
            update={
                "status": JobStatus.succeeded,
                "error": None,
                "error_kind": None,
                "last_updated_at": now,
                "completed_at": now,
            }
        )
        if self.registry.replace_if_current(job_id, replacement) is None:
            current = self.registry.get(job.key)
            logger.warning(
                "Artifact write recovered for a superseded job",
                extra={**job_fields(job), "replaced_by": current.id if current else None},
            )
            raise JobStateError(f"Job {job_id} was superseded while its artifact write was retried.")
        logger.info("Recovered artifact write", extra=job_fields(replacement))
        await self._publish(replacement)
        return replacement

    async def aclose(self) -> None:
        await self.supervisor.shutdown()
        for backend in self._backends.values():
            close = getattr(backend, "aclose", None)
            if close is not None:
                await close()

    # Background task ------------------------------------------------------------

    async def _run(
        self,
        job: GenerationJob,
        request: SubmissionRequest,
        chain: tuple[ProviderAdapter, ...],
        prediction: Prediction | None,
    ) -> None:
        policy = self._policies.get(job.kind, SINGLE_ATTEMPT)
        attempt = 1
        try:
            while True:
                adapter = chain[min(attempt - 1, len(chain) - 1)]
                backend = self._backends[adapter.backend]
                try:
                    if prediction is None:
                        if backend.inline:
                            self._transition(job.id, status=JobStatus.processing, adapter_id=adapter.id)
                        prediction = await backend.create(adapter.build_request(request.parameters), job.target)
                        self._transition(
                            job.id,
                            adapter_id=adapter.id,
                            provider_job_id=prediction.id,
                            provider_status=prediction.status,
                        )
                    locator = await self._poll(job.id, backend, prediction)
                    break
                except GenerationError as exc:
                    if not policy.should_retry(attempt, exc):
                        self._fail(job.id, exc)
                        return
                    delay = policy.delay_for(attempt)
                    attempt += 1
                    self._transition(job.id, attempts=attempt)
                    logger.warning(
                        "Retrying generation job",
                        extra={"job_id": job.id, "attempts": attempt, "delay": round(delay, 2), "error": str(exc)},
                    )
                    await self._sleep(delay)
                    prediction = None

            await self._persist(job.id, job.target, job.kind, locator)
        except _Superseded:
            logger.warning("Dropped updates from superseded job", extra={"job_id": job.id, "kind": job.kind.value})
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Generation task crashed", exc_info=True, extra={"job_id": job.id})
            self._fail(job.id, ProviderError(f"Unexpected error: {exc}"), quiet=True)

    async def _poll(self, job_id: str, backend: ProviderBackend, prediction: Prediction) -> str:
        polls = 0
        while not prediction.is_terminal:
            if polls >= self._max_polls:
                raise ProviderTimeoutError(f"Generation timed out after {polls} status checks")
            await self._sleep(self._poll_interval)
            polls += 1
            prediction = await backend.fetch(prediction.id)
            changes: dict[str, Any] = {"provider_status": prediction.status}
            if polls == 1:
                changes["status"] = JobStatus.processing
            self._transition(job_id, **changes)

        if not prediction.succeeded:
            raise ProviderError(prediction.error or f"Prediction {prediction.id} {prediction.status}")
        return await require_locator(prediction.output)

    async def _persist(self, job_id: str, target: TargetEntity, kind: JobKind, locator: str) -> None:
        if self.registry.get_job(job_id) is None:
            raise _Superseded(job_id)
        try:
            await self._record(target, kind, locator)
        except PersistenceError as exc:
            self._transition(
                job_id,
                status=JobStatus.failed,
                error=str(exc),
                error_kind=ErrorKind.persistence,
                result_locator=locator,
            )
            logger.error(
                "Artifact produced but not recorded",
                extra={"job_id": job_id, "kind": kind.value, "show_id": target.show_id, "error": str(exc)},
            )
            return
        except GenerationError as exc:
            self._fail(job_id, exc)
            return

        job = self._transition(
            job_id,
            status=JobStatus.succeeded,
            result_locator=locator,
            error=None,
            error_kind=None,
        )
        await self._publish(job)

    async def _record(self, target: TargetEntity, kind: JobKind, locator: str | None) -> None:
        try:
            await asyncio.to_thread(self.snapshots.record, target, kind, locator)
        except GenerationError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Snapshot write failed: {exc}") from exc

    async def _publish(self, job: GenerationJob) -> None:
        if self._publisher is None:
            return
        try:
            await asyncio.to_thread(self._publisher.publish_generation_completed, job)
        except Exception as exc:
            logger.warning(
                "Failed to publish completion event (non-fatal)",
                exc_info=True,
                extra={"job_id": job.id, "error": str(exc)},
            )

    def _transition(self, job_id: str, **changes: Any) -> GenerationJob:
        try:
            job = self.registry.update(job_id, **changes)
        except ValueError as exc:
            raise _Superseded(job_id) from exc
        if job is None:
            raise _Superseded(job_id)
        if "status" in changes:
            logger.info("Job status changed", extra=job_fields(job))
        return job

    def _fail(self, job_id: str, exc: GenerationError, *, quiet: bool = False) -> None:
        try:
            job = self._transition(job_id, status=JobStatus.failed, error=str(exc), error_kind=exc.kind)
        except _Superseded:
            return
        if not quiet:
            logger.warning("Generation job failed", extra={**job_fields(job), "error": str(exc)})


def _describe(request: SubmissionRequest) -> str:
    parts = [request.target.show_id, request.kind.value]
    if request.target.character_id:
        parts.append(request.target.character_id)
    if request.target.section_label:
        parts.append(request.target.section_label)
    return "/".join(parts)


__all__ = ["CompletionPublisher", "GenerationEngine"]
