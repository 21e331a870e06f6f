"""
Queue Consumers — Pull stage jobs from the store and drive the workers.

Runs as async tasks inside the worker process. For horizontal scaling,
deploy multiple processes with the same consumer_group; Redis Streams
delivers each job to exactly one consumer in the group.

Topology:
  ┌──────────────┐  repeat tick  ┌──────────────┐      ┌──────────────┐
  │  Scheduler   │──────────────▶│ email-fetch  │─────▶│ FetchWorker  │
  └──────┬───────┘               └──────────────┘      └──────┬───────┘
         │ promote                ┌──────────────┐            │ per email
         │                        │email-analysis│◀───────────┘
         │                        └──────┬───────┘
         │                               ▼
         │                        ┌──────────────┐  high   ┌──────────────┐
         │                        │AnalysisWorker│────────▶│email-response│──▶ ResponseWorker
         │                        └──────────────┘         └──────────────┘
         │
  ┌──────┴───────┐
  │   delayed    │◀── retry (any worker, with backoff)
  │ (sorted set) │
  └──────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import TYPE_CHECKING, Optional

from job_queue.message_queue import JobStore

if TYPE_CHECKING:
    from core.workers import StageWorker

logger = structlog.get_logger()


class StageConsumer:
    """
    Consumes one stage queue with ``concurrency`` parallel consumers.

    Usage:
        consumer = StageConsumer(worker, store)
        await consumer.start_background()
        await consumer.stop()
    """

    def __init__(
        self,
        worker: StageWorker,
        store: JobStore,
        consumer_group: str = "triage-workers",
        consumer_name: str = "",
        concurrency: int = 5,
    ):
        self.worker = worker
        self.store = store
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name or f"{worker.stage.value}-consumer"
        self.concurrency = max(1, concurrency)
        self._tasks: list[asyncio.Task] = []

    async def start_background(self) -> list[asyncio.Task]:
        logger.info("stage_consumer_starting",
                    queue=self.worker.queue,
                    group=self.consumer_group,
                    concurrency=self.concurrency)
        for i in range(self.concurrency):
            task = asyncio.create_task(self.store.consume(
                queue=self.worker.queue,
                handler=self.worker.process,
                consumer_group=self.consumer_group,
                consumer_name=f"{self.consumer_name}-{i}",
            ))
            self._tasks.append(task)
        return self._tasks

    async def stop(self):
        """Cancel all consumer tasks. Unacked deliveries are reclaimed later."""
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("stage_consumer_stopped", queue=self.worker.queue)


# ──────────────────────────────────────────────────────────────
#  Scheduler
# ──────────────────────────────────────────────────────────────

class Scheduler:
    """
    Background task that fires due repeat registrations and moves
    delayed/retry jobs whose ready time has arrived onto their queues.
    """

    def __init__(self, store: JobStore, interval_seconds: float = 1.0):
        self.store = store
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def tick(self) -> tuple[int, int]:
        """One scheduling pass. Returns (repeat jobs fired, delayed jobs promoted)."""
        fired = await self.store.fire_repeating()
        promoted = await self.store.promote_delayed()
        if fired:
            logger.info("repeat_jobs_fired", count=fired)
        return fired, promoted

    async def _run(self):
        logger.info("scheduler_started", interval=self.interval)
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("scheduler_error", error=str(e))
            await asyncio.sleep(self.interval)
