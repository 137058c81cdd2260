"""Batch orchestration of image prompt jobs.

Every image in a batch runs as its own task. Each attempt goes through the
shared RateLimitedQueue, and the retry layer wraps the enqueue so a job that is
backing off does not hold up the queue for the others. All job state changes go
through `transition`, which enforces the lifecycle table below.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .config import DEFAULT_POLICY
from .errors import InvalidTransitionError
from .models import (
    Job,
    JobEvent,
    JobState,
    ProgressSnapshot,
    ProviderName,
    RateLimitPolicy,
)
from .providers import PromptProvider, get_provider
from .queue import RateLimitedQueue
from .retry import run_with_retry

logger = logging.getLogger(__name__)

TRANSITIONS = {
    (JobState.PENDING, JobEvent.DISPATCHED): JobState.GENERATING,
    (JobState.GENERATING, JobEvent.RETRYING): JobState.RETRYING,
    (JobState.RETRYING, JobEvent.RETRYING): JobState.RETRYING,
    (JobState.GENERATING, JobEvent.SUCCEEDED): JobState.COMPLETED,
    (JobState.RETRYING, JobEvent.SUCCEEDED): JobState.COMPLETED,
    (JobState.PENDING, JobEvent.FAILED): JobState.FAILED,
    (JobState.GENERATING, JobEvent.FAILED): JobState.FAILED,
    (JobState.RETRYING, JobEvent.FAILED): JobState.FAILED,
}


def transition(job: Job, event: JobEvent, detail: Optional[str] = None) -> Job:
    """Apply an event to a job and return the updated copy.

    Args:
        job: Current job
        event: Event to apply
        detail: Prompt text for SUCCEEDED, message for RETRYING and FAILED

    Returns:
        New Job in the target state

    Raises:
        InvalidTransitionError: If the event is not allowed in the job's state
    """
    new_state = TRANSITIONS.get((job.state, event))
    if new_state is None:
        raise InvalidTransitionError(
            f"Cannot apply {event.value} to job in state {job.state.value}: {job.reference}"
        )

    if new_state == JobState.COMPLETED:
        update = {"result": detail or "", "failure_reason": None}
    elif new_state == JobState.FAILED:
        update = {"result": None, "failure_reason": detail}
    elif new_state == JobState.RETRYING:
        update = {"result": None, "failure_reason": detail}
    else:
        update = {"result": None, "failure_reason": None}

    update["state"] = new_state
    return job.model_copy(update=update)


class _Batch:
    """References of one run_batch call and the observer for its snapshots."""

    def __init__(
        self,
        references: list[str],
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
    ):
        self.references = references
        self.on_progress = on_progress


class PromptJobOrchestrator:
    """Runs batches of image jobs through queue, retry and provider adapter.

    Progress is tracked per run_batch call, so overlapping batches each see
    snapshots over their own references. The queue is shared: its spacing
    follows the policy of the most recently started batch.
    """

    def __init__(
        self,
        policy: RateLimitPolicy = DEFAULT_POLICY,
        providers: Optional[dict[ProviderName, PromptProvider]] = None,
        queue: Optional[RateLimitedQueue] = None,
        on_job_update: Optional[Callable[[Job], None]] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
    ):
        self.policy = policy
        self.queue = queue or RateLimitedQueue(min_spacing_ms=policy.min_spacing_ms)
        self.on_job_update = on_job_update
        self.on_progress = on_progress
        self._providers: dict[ProviderName, PromptProvider] = dict(providers or {})
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._active_batches: list[_Batch] = []
        self._progress = ProgressSnapshot()

    @property
    def jobs(self) -> Mapping[str, Job]:
        return MappingProxyType(self._jobs)

    @property
    def progress(self) -> ProgressSnapshot:
        """Most recently published snapshot, from whichever batch published it."""
        return self._progress

    def get_provider(self, name: ProviderName) -> PromptProvider:
        name = ProviderName(name)
        if name not in self._providers:
            self._providers[name] = get_provider(name)
        return self._providers[name]

    async def run_batch(
        self,
        references: Iterable[str],
        credential: str,
        model: str,
        provider: ProviderName = ProviderName.GEMINI,
        policy: Optional[RateLimitPolicy] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
    ) -> dict[str, Job]:
        """Generate prompts for every reference and wait until all finish.

        References already completed are not requested again. Failures are
        recorded on the job; this method does not raise for them.

        Args:
            on_progress: Receives only this batch's snapshots, in addition to
                the orchestrator-wide observer

        Returns:
            Map of reference to its final Job, in batch order
        """
        policy = policy or self.policy
        adapter = self.get_provider(provider)
        self.queue.min_spacing_ms = policy.min_spacing_ms

        batch = _Batch(list(dict.fromkeys(references)), on_progress)

        waiting = []
        skipped = 0
        for reference in batch.references:
            existing = self._jobs.get(reference)
            if existing is not None and existing.state == JobState.COMPLETED:
                skipped += 1
                continue

            running = self._tasks.get(reference)
            if running is not None and not running.done():
                waiting.append(running)
                continue

            self._set_job(Job(reference=reference))
            task = asyncio.create_task(
                self._run_job(reference, adapter, credential, model, policy)
            )
            self._tasks[reference] = task
            waiting.append(task)

        logger.info(
            f"Starting batch of {len(batch.references)} images with {adapter.label} "
            f"model {model} ({skipped} already completed)"
        )
        self._active_batches.append(batch)
        self._publish_progress(batch)

        try:
            if waiting:
                await asyncio.gather(*waiting, return_exceptions=True)
        finally:
            self._active_batches = [b for b in self._active_batches if b is not batch]

        results = {
            reference: self._jobs[reference]
            for reference in batch.references
            if reference in self._jobs
        }
        failed = sum(1 for job in results.values() if job.state == JobState.FAILED)
        logger.info(f"Batch finished: {len(results) - failed} completed, {failed} failed")
        return results

    def cancel_pending_requests(self) -> int:
        """Drop every request that has not been dispatched yet.

        Jobs waiting on those requests fail with "Queue cleared". Requests
        already in flight are not interrupted.
        """
        return self.queue.cancel_all()

    def remove(self, reference: str) -> Optional[Job]:
        """Forget a job. A task still running for it stops reporting."""
        self._tasks.pop(reference, None)
        return self._jobs.pop(reference, None)

    def clear(self):
        """Forget every job."""
        self._tasks.clear()
        self._jobs.clear()
        self._progress = ProgressSnapshot()

    async def _run_job(
        self,
        reference: str,
        adapter: PromptProvider,
        credential: str,
        model: str,
        policy: RateLimitPolicy,
    ):
        owner = asyncio.current_task()
        self._apply(owner, reference, JobEvent.DISPATCHED)

        def on_retry(attempt: int, backoff_ms: float):
            self._apply(
                owner,
                reference,
                JobEvent.RETRYING,
                f"Rate limit hit, retrying in {backoff_ms / 1000:g}s "
                f"(attempt {attempt}/{policy.max_retries})",
            )

        def attempt():
            return self.queue.enqueue(
                lambda: adapter.generate(reference, credential, model)
            )

        try:
            text = await run_with_retry(attempt, policy, on_retry=on_retry)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning(f"Prompt generation failed for {reference}: {message}")
            self._apply(owner, reference, JobEvent.FAILED, message)
        else:
            self._apply(owner, reference, JobEvent.SUCCEEDED, text)

    def _apply(
        self,
        owner: Optional[asyncio.Task],
        reference: str,
        event: JobEvent,
        detail: Optional[str] = None,
    ):
        # Job was removed or resubmitted; this task no longer owns it
        if self._tasks.get(reference) is not owner:
            return

        job = transition(self._jobs[reference], event, detail)
        self._set_job(job)

        if job.state.is_terminal:
            for batch in list(self._active_batches):
                if reference in batch.references:
                    self._publish_progress(batch)

    def _set_job(self, job: Job):
        self._jobs[job.reference] = job
        if self.on_job_update is not None:
            try:
                self.on_job_update(job)
            except Exception as e:
                logger.error(f"Job update observer failed: {e}", exc_info=True)

    def _publish_progress(self, batch: _Batch):
        completed = sum(
            1
            for reference in batch.references
            if reference in self._jobs and self._jobs[reference].state.is_terminal
        )
        self._progress = ProgressSnapshot.compute(completed, len(batch.references))

        for observer in (batch.on_progress, self.on_progress):
            if observer is None:
                continue
            try:
                observer(self._progress)
            except Exception as e:
                logger.error(f"Progress observer failed: {e}", exc_info=True)
