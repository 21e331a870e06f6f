"""
Stage Workers — one per pipeline stage, each bound to its own queue.

    FetchWorker     email-fetch     list unread → fetch detail → schedule analysis per email
    AnalysisWorker  email-analysis  analyze → schedule response (high priority only)
    ResponseWorker  email-response  generate → send → mark read

Every worker decodes its tagged payload exhaustively, runs the stage and
hands any failure to the RetryManager. Nothing a stage raises reaches the
caller of process(); the outcome is returned and broadcast to listeners.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import structlog
from pydantic import BaseModel

from core.errors import MailClientError
from job_queue.message_queue import JobState, QueueJob, Queues, Stage
from job_queue.payloads import AnalysisPayload, FetchPayload, ResponsePayload, decode_payload
from job_queue.retry import RetryManager

if TYPE_CHECKING:
    from core.pipeline import PipelineCoordinator

logger = structlog.get_logger()


@dataclass
class JobOutcome:
    """Result of one processing attempt, reported to outcome listeners."""
    job_id: str
    stage: str
    state: JobState
    attempt: int
    result: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    retry_delay_ms: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.state in (JobState.FAILED_RETRYABLE, JobState.FAILED_TERMINAL)


class StageWorker(ABC):
    """Base class: decode → run → complete, or hand the failure to the retry manager."""

    stage: Stage
    queue: str
    payload_type: type[BaseModel]

    def __init__(self, coordinator: PipelineCoordinator, retry_manager: RetryManager):
        self.coordinator = coordinator
        self.retry_manager = retry_manager

    @abstractmethod
    async def run(self, payload: Any, job: QueueJob) -> dict[str, Any]:
        """Execute the stage for one decoded payload; raise to fail the attempt."""
        ...

    async def process(self, job: QueueJob) -> JobOutcome:
        job.state = JobState.ACTIVE.value
        logger.debug("processing_job",
                     stage=self.stage.value,
                     job_id=job.job_id,
                     attempt=job.attempt,
                     max_attempts=job.max_attempts)

        try:
            payload = decode_payload(job.payload, self.payload_type)
            result = await self.run(payload, job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.state = JobState.FAILED_RETRYABLE.value
            logger.warning("job_attempt_failed",
                           stage=self.stage.value,
                           job_id=job.job_id,
                           attempt=job.attempt,
                           error=str(e))
            decision = await self.retry_manager.handle_failure(self.queue, job, e)
            outcome = JobOutcome(
                job_id=job.job_id,
                stage=self.stage.value,
                state=JobState.FAILED_RETRYABLE if decision.retried else JobState.FAILED_TERMINAL,
                attempt=job.attempt,
                error=str(e),
                retry_delay_ms=decision.delay_ms if decision.retried else None,
            )
            self.coordinator.notify(outcome)
            return outcome

        job.state = JobState.COMPLETED.value
        logger.info("job_completed",
                    stage=self.stage.value,
                    job_id=job.job_id,
                    attempt=job.attempt)
        outcome = JobOutcome(
            job_id=job.job_id,
            stage=self.stage.value,
            state=JobState.COMPLETED,
            attempt=job.attempt,
            result=result,
        )
        self.coordinator.notify(outcome)
        return outcome


class FetchWorker(StageWorker):
    stage = Stage.FETCH
    queue = Queues.FETCH
    payload_type = FetchPayload

    async def run(self, payload: FetchPayload, job: QueueJob) -> dict[str, Any]:
        user = payload.user
        config = self.coordinator.config
        refs = await self.coordinator.mail.list_unread(user, max_results=config.fetch_max_results)

        processed = scheduled = 0
        for ref in refs:
            try:
                email = await self.coordinator.mail.fetch_detail(user, ref)
            except MailClientError as e:
                logger.warning("email_detail_skipped",
                               user_id=user.id,
                               email_id=ref.id,
                               error=str(e))
                continue
            processed += 1
            if await self.coordinator.schedule_analysis(email, user, source_job_id=job.job_id):
                scheduled += 1

        if not refs:
            logger.info("no_unread_emails", user_id=user.id)
        return {"emails_processed": processed, "analyses_scheduled": scheduled}


class AnalysisWorker(StageWorker):
    stage = Stage.ANALYSIS
    queue = Queues.ANALYSIS
    payload_type = AnalysisPayload

    async def run(self, payload: AnalysisPayload, job: QueueJob) -> dict[str, Any]:
        analysis = await self.coordinator.inference.analyze(payload.email)
        response_job = await self.coordinator.schedule_response(
            payload.email, analysis, payload.user, source_job_id=job.job_id,
        )
        return {
            "email_id": payload.email.id,
            "analysis": analysis.model_dump(mode="json"),
            "response_job_id": response_job,
        }


class ResponseWorker(StageWorker):
    stage = Stage.RESPONSE
    queue = Queues.RESPONSE
    payload_type = ResponsePayload

    async def run(self, payload: ResponsePayload, job: QueueJob) -> dict[str, Any]:
        user, email = payload.user, payload.email
        mail = self.coordinator.mail

        reply = await self.coordinator.inference.generate(email, payload.analysis)
        # A retry after a successful send re-sends the reply; at-least-once
        await mail.send_reply(user, email, reply)
        await mail.mark_read(user, email.id)
        return {"email_id": email.id, "replied": True}
