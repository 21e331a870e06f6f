"""Tests for the background stage consumers and the scheduler."""
import asyncio
import pytest

from job_queue.consumer import Scheduler, StageConsumer
from job_queue.message_queue import JobState, QueueJob, Queues
from job_queue.registry import CancellationRegistry
from models.schemas import Priority
from tests.fakes import make_email


class TestScheduler:
    @pytest.mark.asyncio
    async def test_tick_fires_due_registrations(self, store, user):
        await CancellationRegistry(store).register(user, 60000, immediately=True)

        fired, promoted = await Scheduler(store).tick()

        assert (fired, promoted) == (1, 0)
        assert await store.queue_length(Queues.FETCH) == 1

    @pytest.mark.asyncio
    async def test_tick_promotes_due_retries(self, store):
        await store.enqueue(Queues.ANALYSIS, QueueJob(stage="analysis"), delay_ms=1)
        await asyncio.sleep(0.01)

        fired, promoted = await Scheduler(store).tick()

        assert (fired, promoted) == (0, 1)
        assert await store.queue_length(Queues.ANALYSIS) == 1

    @pytest.mark.asyncio
    async def test_background_loop_survives_errors(self, store):
        calls = []

        async def flaky(now=None):
            calls.append(now)
            if len(calls) == 1:
                raise ConnectionError("redis down")
            return 0

        store.promote_delayed = flaky
        scheduler = Scheduler(store, interval_seconds=0.01)
        await scheduler.start_background()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert len(calls) >= 2


class TestStageConsumer:
    @pytest.mark.asyncio
    async def test_processes_queued_jobs(self, coordinator, store, inference, user):
        inference.priorities["e1"] = Priority.HIGH
        done = asyncio.Event()
        outcomes = []

        def on_outcome(outcome):
            outcomes.append(outcome)
            if len(outcomes) == 2:
                done.set()

        coordinator.add_listener(on_outcome)
        await store.connect()
        await coordinator.schedule_analysis(make_email("e1"), user)
        await coordinator.schedule_analysis(make_email("e2"), user)

        consumer = StageConsumer(coordinator.workers[Queues.ANALYSIS], store, concurrency=2)
        await consumer.start_background()
        await asyncio.wait_for(done.wait(), timeout=5)
        await consumer.stop()
        await store.close()

        assert {o.state for o in outcomes} == {JobState.COMPLETED}
        assert await store.queue_length(Queues.ANALYSIS) == 0
        assert await store.queue_length(Queues.RESPONSE) == 1
        assert store._inflight == {}
