"""
Pipeline Coordinator — the per-user fetch → analyze → respond workflow.

Architecture:
  Login trigger:  schedule_fetch(user) → one repeat registration per user
  Repeat tick:    Scheduler fires a fetch job → FetchWorker
                  → schedule_analysis() once per fetched email
  Analysis:       AnalysisWorker → schedule_response() iff priority is high
  Response:       ResponseWorker → generate, send, mark read
  Logout:         cancel_user(user_id) removes the repeat registration;
                  queued analysis/response jobs for the user still drain

The coordinator is built once at startup with its collaborators injected
(job store, mail client, inference client) and has an explicit
start()/stop() lifecycle. Scheduling entry points never raise to the
caller: the login or logout that triggered them succeeds regardless.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional

import structlog

from config.settings import PipelineConfig, QueueConfig
from core.engine import InferenceClient
from core.errors import SchedulingError
from core.workers import AnalysisWorker, FetchWorker, JobOutcome, ResponseWorker, StageWorker
from job_queue.consumer import Scheduler, StageConsumer
from job_queue.message_queue import JobStore, QueueJob, Queues, Stage
from job_queue.payloads import AnalysisPayload, ResponsePayload, encode_payload
from job_queue.registry import CancellationRegistry
from job_queue.retry import BackoffPolicy, RetryManager, RetryPolicy
from mail.base import MailClient
from models.schemas import AnalysisResult, Email, User

logger = structlog.get_logger()

OutcomeListener = Callable[[JobOutcome], None]


class PipelineCoordinator:
    """
    Composes the three stage workers with their scheduling entry and exit
    points. Coordination happens only through the job store; no in-process
    locks are held across collaborator calls.
    """

    def __init__(
        self,
        store: JobStore,
        mail: MailClient,
        inference: InferenceClient,
        config: PipelineConfig = None,
        queue_config: QueueConfig = None,
    ):
        self.store = store
        self.mail = mail
        self.inference = inference
        self.config = config or PipelineConfig()
        self.config.validate()
        self.queue_config = queue_config or QueueConfig()

        self.registry = CancellationRegistry(store)
        self.retry_manager = RetryManager(store)
        self.stage_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            backoff=BackoffPolicy(self.config.backoff_base_ms, self.config.backoff_cap_ms),
        )

        self.workers: dict[str, StageWorker] = {
            Queues.FETCH: FetchWorker(self, self.retry_manager),
            Queues.ANALYSIS: AnalysisWorker(self, self.retry_manager),
            Queues.RESPONSE: ResponseWorker(self, self.retry_manager),
        }
        self._listeners: list[OutcomeListener] = []
        self._consumers: list[StageConsumer] = []
        self._scheduler: Optional[Scheduler] = None

    # ══════════════════════════════════════════════════════════
    #  Lifecycle
    # ══════════════════════════════════════════════════════════

    async def start(self, stages: Iterable[Stage | str] = tuple(Stage),
                    run_scheduler: bool = True):
        await self.store.connect()

        for stage in stages:
            worker = self.workers[Queues.for_stage(stage)]
            consumer = StageConsumer(
                worker, self.store,
                consumer_group=self.queue_config.consumer_group,
                concurrency=self.queue_config.consumer_concurrency,
            )
            await consumer.start_background()
            self._consumers.append(consumer)

        if run_scheduler:
            self._scheduler = Scheduler(
                self.store, interval_seconds=self.queue_config.scheduler_interval,
            )
            await self._scheduler.start_background()

        logger.info("pipeline_started",
                    stages=[c.worker.stage.value for c in self._consumers],
                    scheduler=run_scheduler,
                    store=type(self.store).__name__)

    async def stop(self):
        for consumer in self._consumers:
            await consumer.stop()
        self._consumers.clear()
        if self._scheduler:
            await self._scheduler.stop()
            self._scheduler = None
        await self.store.close()
        await self.mail.close()
        logger.info("pipeline_stopped")

    # ══════════════════════════════════════════════════════════
    #  Entry / exit points (called by the request layer)
    # ══════════════════════════════════════════════════════════

    async def schedule_fetch(self, user: User) -> bool:
        """Register the recurring fetch for a user. Idempotent; never raises."""
        try:
            created = await self.registry.register(
                user, self.config.fetch_interval_ms, immediately=self.config.fetch_on_register,
            )
        except Exception as e:
            logger.error("schedule_fetch_failed", user_id=user.id, error=str(e))
            return False

        if created:
            logger.info("email_fetch_scheduled",
                        user_id=user.id,
                        every_ms=self.config.fetch_interval_ms)
        else:
            logger.info("email_fetch_already_scheduled", user_id=user.id)
        return True

    async def cancel_user(self, user_id: str) -> bool:
        """Stop producing new work for a user. Zero registrations is a no-op."""
        try:
            removed = await self.registry.cancel(user_id)
        except Exception as e:
            logger.error("cancel_user_failed", user_id=user_id, error=str(e))
            return False

        logger.info("user_jobs_removed", user_id=user_id, removed=removed)
        return True

    # ══════════════════════════════════════════════════════════
    #  Stage scheduling (called by the workers)
    # ══════════════════════════════════════════════════════════

    async def schedule_analysis(self, email: Email, user: User,
                                source_job_id: Optional[str] = None) -> Optional[str]:
        job = self.stage_policy.apply(QueueJob(
            stage=Stage.ANALYSIS.value,
            payload=encode_payload(AnalysisPayload(user=user, email=email)),
            metadata={"user_id": user.id, "email_id": email.id},
        ))
        if source_job_id:
            job.job_id = f"analysis:{user.id}:{email.id}:{source_job_id}"
        return await self._enqueue(Queues.ANALYSIS, job)

    async def schedule_response(self, email: Email, analysis: AnalysisResult, user: User,
                                source_job_id: Optional[str] = None) -> Optional[str]:
        if not analysis.needs_response:
            logger.debug("response_skipped",
                         email_id=email.id,
                         priority=analysis.priority.value)
            return None

        job = self.stage_policy.apply(QueueJob(
            stage=Stage.RESPONSE.value,
            payload=encode_payload(ResponsePayload(user=user, email=email, analysis=analysis)),
            metadata={"user_id": user.id, "email_id": email.id},
        ))
        if source_job_id:
            job.job_id = f"response:{user.id}:{email.id}:{source_job_id}"
        return await self._enqueue(Queues.RESPONSE, job)

    async def _enqueue(self, queue: str, job: QueueJob) -> Optional[str]:
        try:
            job_id = await self.store.enqueue(queue, job)
        except Exception as e:
            raise SchedulingError(f"enqueue to {queue} failed: {e}", queue=queue) from e
        if job_id:
            logger.info("stage_job_scheduled",
                        queue=queue,
                        job_id=job_id,
                        email_id=job.metadata.get("email_id"))
        return job_id

    # ══════════════════════════════════════════════════════════
    #  Processing / observability
    # ══════════════════════════════════════════════════════════

    async def process(self, queue: str, job: QueueJob) -> JobOutcome:
        return await self.workers[queue].process(job)

    def add_listener(self, listener: OutcomeListener):
        self._listeners.append(listener)

    def notify(self, outcome: JobOutcome):
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception as e:
                logger.error("outcome_listener_error", job_id=outcome.job_id, error=str(e))

    async def queue_depths(self) -> dict[str, int]:
        return {queue: await self.store.queue_length(queue) for queue in Queues.ALL}

    async def failed_jobs(self, stage: Stage | str, count: int = 50) -> list[QueueJob]:
        return await self.store.failed_jobs(Queues.for_stage(stage), count)
