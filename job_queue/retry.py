"""
Retry Manager — bounded attempts with exponential backoff.

    delay(attempt) = min(base * 2 ** (attempt - 1), cap)      attempt is 1-indexed

After attempt ``n`` fails:
  n < max_attempts  → re-enqueue as attempt n+1, delayed by delay(n)
  otherwise         → failed_terminal, recorded in the store's failed list

Errors explicitly marked non-retryable (malformed payloads) skip straight
to terminal without spending the remaining budget.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from core.errors import SchedulingError, TerminalStageFailure, is_retryable
from job_queue.message_queue import JobState, JobStore, QueueJob

logger = structlog.get_logger()


@dataclass(frozen=True)
class BackoffPolicy:
    base_ms: int = 5000
    cap_ms: int = 300000

    def delay(self, attempt: int) -> int:
        if attempt < 1:
            raise ValueError(f"attempt is 1-indexed, got {attempt}")
        return min(self.base_ms * 2 ** (attempt - 1), self.cap_ms)

    def schedule(self, max_attempts: int) -> list[int]:
        """Delays actually used between attempts for a given budget."""
        return [self.delay(n) for n in range(1, max_attempts)]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: BackoffPolicy = BackoffPolicy()

    @classmethod
    def single_attempt(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    def apply(self, job: QueueJob) -> QueueJob:
        job.max_attempts = self.max_attempts
        job.backoff_ms = self.backoff.base_ms
        job.backoff_cap_ms = self.backoff.cap_ms
        return job


@dataclass
class RetryDecision:
    retried: bool
    delay_ms: int = 0
    failure: Optional[TerminalStageFailure] = None


class RetryManager:
    """Turns a failed attempt into either a delayed retry or a terminal record."""

    def __init__(self, store: JobStore):
        self.store = store

    async def handle_failure(self, queue: str, job: QueueJob, error: BaseException) -> RetryDecision:
        message = str(error) or type(error).__name__

        if is_retryable(error) and not job.exhausted:
            delay = BackoffPolicy(job.backoff_ms, job.backoff_cap_ms).delay(job.attempt)
            retry_job = job.next_attempt(message)
            try:
                await self.store.enqueue(queue, retry_job, delay_ms=delay, dedupe=False)
            except Exception as e:
                raise SchedulingError(f"retry enqueue failed: {e}", queue=queue) from e
            logger.info("job_scheduled_for_retry",
                        queue=queue,
                        job_id=job.job_id,
                        attempt=retry_job.attempt,
                        delay_ms=delay,
                        error=message)
            return RetryDecision(retried=True, delay_ms=delay)

        job.state = JobState.FAILED_TERMINAL.value
        job.last_error = message
        await self.store.record_failure(queue, job)
        failure = TerminalStageFailure(job.job_id, job.stage, message)
        logger.error("job_failed_terminal",
                     queue=queue,
                     job_id=job.job_id,
                     stage=job.stage,
                     attempts=job.attempt,
                     retryable=is_retryable(error),
                     error=message)
        return RetryDecision(retried=False, failure=failure)
