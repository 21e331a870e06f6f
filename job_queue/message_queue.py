"""
Job Store — Abstract interface with Redis Streams and in-memory backends.

Queue Topology (one stream per pipeline stage):
  email-fetch      — Fetch ticks produced by repeat registrations
  email-analysis   — One job per fetched email
  email-response   — One job per high-priority analysis

Auxiliary structures (Redis, under the configured key prefix):
  {prefix}:delayed                  — sorted set of retry/delayed jobs, score = ready time (ms)
  {prefix}:repeat:{queue}           — hash of repeat registrations, field = repeat key
  {prefix}:repeat-schedule:{queue}  — sorted set, member = repeat key, score = next run (ms)
  {prefix}:failed:{queue}           — list of terminally failed jobs, newest first
  {prefix}:job-id:{job_id}          — dedup marker with TTL

Message Schema (stream fields, all strings):
  {
      "job_id":        unique job identifier (stable across retries),
      "stage":         fetch|analysis|response,
      "payload":       JSON-encoded tagged payload,
      "attempt":       current attempt number, 1-indexed,
      "max_attempts":  ceiling before terminal failure,
      "backoff_ms":    exponential backoff base,
      "backoff_cap_ms": upper bound for a single delay,
      "repeat_key":    registration that produced this job (fetch only),
      "state":         pending|active|completed|failed_retryable|failed_terminal,
      "created_at":    ISO timestamp when the job was first enqueued,
      "last_error":    message of the most recent failure,
      "metadata":      JSON-encoded extra data,
  }
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

logger = structlog.get_logger()


def now_ms() -> int:
    return int(time.time() * 1000)


def next_boundary_ms(every_ms: int, now: int) -> int:
    """First multiple of ``every_ms`` strictly after ``now``."""
    return (now // every_ms + 1) * every_ms


# ──────────────────────────────────────────────────────────────
#  Queue Names / Stages
# ──────────────────────────────────────────────────────────────

class Stage(str, Enum):
    FETCH = "fetch"
    ANALYSIS = "analysis"
    RESPONSE = "response"


class Queues:
    FETCH = "email-fetch"
    ANALYSIS = "email-analysis"
    RESPONSE = "email-response"
    ALL = (FETCH, ANALYSIS, RESPONSE)

    @staticmethod
    def for_stage(stage: Stage | str) -> str:
        return {
            Stage.FETCH.value: Queues.FETCH,
            Stage.ANALYSIS.value: Queues.ANALYSIS,
            Stage.RESPONSE.value: Queues.RESPONSE,
        }[Stage(stage).value]


class JobState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

@dataclass
class QueueJob:
    """A unit of work on the queue."""
    stage: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempt: int = 1
    max_attempts: int = 3
    backoff_ms: int = 5000
    backoff_cap_ms: int = 300000
    repeat_key: str = ""
    state: str = JobState.PENDING.value
    created_at: str = ""
    last_error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    job_id: str = ""

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, str]:
        d = asdict(self)
        d["payload"] = json.dumps(d["payload"])
        d["metadata"] = json.dumps(d["metadata"])
        for key in ("attempt", "max_attempts", "backoff_ms", "backoff_cap_ms"):
            d[key] = str(d[key])
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueJob:
        data = dict(data)  # copy
        if isinstance(data.get("payload"), str):
            data["payload"] = json.loads(data["payload"])
        if isinstance(data.get("metadata"), str):
            data["metadata"] = json.loads(data["metadata"])
        data["attempt"] = int(data.get("attempt", 1))
        data["max_attempts"] = int(data.get("max_attempts", 3))
        data["backoff_ms"] = int(data.get("backoff_ms", 5000))
        data["backoff_cap_ms"] = int(data.get("backoff_cap_ms", 300000))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_attempt(self, error: str) -> QueueJob:
        """Copy with incremented attempt; same job_id across retries for tracing."""
        return QueueJob(
            stage=self.stage,
            payload=self.payload,
            attempt=self.attempt + 1,
            max_attempts=self.max_attempts,
            backoff_ms=self.backoff_ms,
            backoff_cap_ms=self.backoff_cap_ms,
            repeat_key=self.repeat_key,
            state=JobState.PENDING.value,
            created_at=self.created_at,
            last_error=error,
            metadata={**self.metadata, "last_failure_at": datetime.now(timezone.utc).isoformat()},
            job_id=self.job_id,
        )


@dataclass
class RepeatRegistration:
    """Durable binding that re-enqueues a job every ``every_ms``."""
    key: str
    name: str
    user_id: str
    every_ms: int
    payload: dict[str, Any] = field(default_factory=dict)
    next_run_ms: int = 0

    @property
    def id(self) -> str:
        return self.user_id

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> RepeatRegistration:
        data = json.loads(raw)
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def tick_job(self, tick_ms: int) -> QueueJob:
        return QueueJob(
            stage=self.name,
            payload=self.payload,
            max_attempts=1,
            repeat_key=self.key,
            metadata={"tick_ms": tick_ms},
            job_id=f"repeat:{self.key}:{tick_ms}",
        )


@dataclass
class Delivery:
    """A job handed to one consumer; must be acked once processed."""
    queue: str
    delivery_id: str
    job: QueueJob


JobHandler = Callable[[QueueJob], Awaitable[Any]]


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class JobStore(ABC):
    """Abstract job store interface."""

    def __init__(self, dedup_ttl_ms: int = 86400000, failed_retention: int = 1000,
                 claim_idle_ms: int = 60000):
        self.dedup_ttl_ms = dedup_ttl_ms
        self.failed_retention = failed_retention
        self.claim_idle_ms = claim_idle_ms
        self._running = False

    @abstractmethod
    async def connect(self):
        """Establish connection to the store backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def enqueue(self, queue: str, job: QueueJob, delay_ms: int = 0,
                      dedupe: bool = True) -> Optional[str]:
        """
        Add a job to a queue, optionally delayed.
        Returns the job id, or None when a job with the same id was already
        enqueued within the dedup window.
        """
        ...

    @abstractmethod
    async def add_repeating(self, queue: str, registration: RepeatRegistration) -> bool:
        """Insert a repeat registration. Returns False if the key already exists."""
        ...

    @abstractmethod
    async def refresh_repeating(self, queue: str, registration: RepeatRegistration) -> bool:
        """Replace the payload of an existing registration, keeping its schedule."""
        ...

    @abstractmethod
    async def list_repeating(self, queue: str) -> list[RepeatRegistration]:
        ...

    @abstractmethod
    async def cancel_repeating(self, queue: str, key: str) -> bool:
        """Remove a repeat registration. Returns False if the key was unknown."""
        ...

    @abstractmethod
    async def dequeue(self, queue: str, consumer_group: str = "default",
                      consumer_name: str = "", block_ms: int = 2000) -> Optional[Delivery]:
        """Take the next job for this consumer, or None after ``block_ms``."""
        ...

    @abstractmethod
    async def ack(self, delivery: Delivery, consumer_group: str = "default"):
        """Acknowledge successful processing of a delivery."""
        ...

    @abstractmethod
    async def record_failure(self, queue: str, job: QueueJob):
        """Keep a terminally failed job for operator inspection."""
        ...

    @abstractmethod
    async def failed_jobs(self, queue: str, count: int = 50) -> list[QueueJob]:
        ...

    @abstractmethod
    async def queue_length(self, queue: str) -> int:
        """Return the number of pending jobs in a queue."""
        ...

    @abstractmethod
    async def peek(self, queue: str, count: int = 10) -> list[QueueJob]:
        """Peek at jobs without consuming them."""
        ...

    @abstractmethod
    async def promote_delayed(self, now: Optional[int] = None) -> int:
        """Move delayed jobs whose ready time has arrived onto their queues."""
        ...

    @abstractmethod
    async def fire_repeating(self, now: Optional[int] = None,
                             queues: Iterable[str] = Queues.ALL) -> int:
        """Enqueue one job for every repeat registration that is due."""
        ...

    async def consume(
        self,
        queue: str,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
        block_ms: int = 2000,
    ):
        """
        Consume from a queue until close() or task cancellation.

        A delivery is acked only after ``handler`` returns. If the handler
        raises, the delivery stays unacked and is reclaimed by another
        consumer once it has been idle for ``claim_idle_ms``.
        """
        if not consumer_name:
            consumer_name = f"worker_{uuid.uuid4().hex[:8]}"

        logger.info("consumer_started",
                    queue=queue,
                    group=consumer_group,
                    consumer=consumer_name)

        while self._running:
            try:
                delivery = await self.dequeue(queue, consumer_group, consumer_name, block_ms)
                if delivery is None:
                    continue
                try:
                    await handler(delivery.job)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("job_handler_error",
                                 queue=queue,
                                 job_id=delivery.job.job_id,
                                 error=str(e))
                    continue
                await self.ack(delivery, consumer_group)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("consumer_error", queue=queue, error=str(e))
                await asyncio.sleep(1)


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

class RedisJobStore(JobStore):
    """
    Production store backed by Redis Streams + Sorted Sets.

    - Stage queues use Redis Streams with consumer groups
    - Unacked deliveries are reclaimed with XAUTOCLAIM after claim_idle_ms
    - Delayed queue uses a Redis Sorted Set (ZRANGEBYSCORE for promotion)
    - Repeat registrations live in a hash plus a schedule sorted set
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", key_prefix: str = "triage",
                 client=None, **kwargs):
        super().__init__(**kwargs)
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._redis = client
        self._groups: set[tuple[str, str]] = set()

    # ── keys ──────────────────────────────────────────────────

    def _stream(self, queue: str) -> str:
        return f"{self._prefix}:{queue}"

    def _delayed_key(self) -> str:
        return f"{self._prefix}:delayed"

    def _repeat_key(self, queue: str) -> str:
        return f"{self._prefix}:repeat:{queue}"

    def _schedule_key(self, queue: str) -> str:
        return f"{self._prefix}:repeat-schedule:{queue}"

    def _failed_key(self, queue: str) -> str:
        return f"{self._prefix}:failed:{queue}"

    def _job_id_key(self, job_id: str) -> str:
        return f"{self._prefix}:job-id:{job_id}"

    # ── lifecycle ─────────────────────────────────────────────

    async def connect(self):
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                max_connections=20,
            )
        await self._ping()
        self._running = True
        logger.info("redis_store_connected", url=self._redis_url)

    @retry(stop=stop_after_attempt(5), wait=wait_exponential(multiplier=0.5, max=5), reraise=True)
    async def _ping(self):
        await self._redis.ping()

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.aclose()

    async def _ensure_group(self, queue: str, group: str):
        """Create consumer group if it doesn't exist."""
        if (queue, group) in self._groups:
            return
        from redis.exceptions import ResponseError
        try:
            await self._redis.xgroup_create(self._stream(queue), group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._groups.add((queue, group))

    # ── enqueue ───────────────────────────────────────────────

    async def enqueue(self, queue: str, job: QueueJob, delay_ms: int = 0,
                      dedupe: bool = True) -> Optional[str]:
        if not dedupe:
            await self._publish(queue, job, delay_ms)
            return job.job_id

        marker = self._job_id_key(job.job_id)
        fresh = await self._redis.set(marker, "1", nx=True, px=self.dedup_ttl_ms)
        if not fresh:
            logger.debug("job_deduplicated", queue=queue, job_id=job.job_id)
            return None
        try:
            await self._publish(queue, job, delay_ms)
        except Exception:
            # The marker must not outlive a job that was never stored
            await self._redis.delete(marker)
            raise
        return job.job_id

    async def _publish(self, queue: str, job: QueueJob, delay_ms: int):
        if delay_ms > 0:
            payload = json.dumps({"queue": queue, "job": job.to_dict()})
            await self._redis.zadd(self._delayed_key(), {payload: now_ms() + delay_ms})
            logger.info("delayed_job_published",
                        queue=queue,
                        job_id=job.job_id,
                        delay_ms=delay_ms)
        else:
            await self._redis.xadd(self._stream(queue), job.to_dict())
            logger.info("job_published",
                        queue=queue,
                        job_id=job.job_id,
                        stage=job.stage,
                        attempt=job.attempt)

    # ── repeat registrations ──────────────────────────────────

    async def add_repeating(self, queue: str, registration: RepeatRegistration) -> bool:
        added = await self._redis.hsetnx(
            self._repeat_key(queue), registration.key, registration.to_json(),
        )
        if not added:
            return False
        await self._redis.zadd(
            self._schedule_key(queue), {registration.key: registration.next_run_ms}, nx=True,
        )
        return True

    async def refresh_repeating(self, queue: str, registration: RepeatRegistration) -> bool:
        # HEXISTS + HSET in one script so a concurrent cancel is never undone
        script = (
            "if redis.call('HEXISTS', KEYS[1], ARGV[1]) == 1 then "
            "redis.call('HSET', KEYS[1], ARGV[1], ARGV[2]) return 1 end return 0"
        )
        updated = await self._redis.eval(
            script, 1, self._repeat_key(queue), registration.key, registration.to_json(),
        )
        return bool(updated)

    async def list_repeating(self, queue: str) -> list[RepeatRegistration]:
        raw = await self._redis.hvals(self._repeat_key(queue))
        return [RepeatRegistration.from_json(r) for r in raw]

    async def cancel_repeating(self, queue: str, key: str) -> bool:
        pipe = self._redis.pipeline()
        pipe.hdel(self._repeat_key(queue), key)
        pipe.zrem(self._schedule_key(queue), key)
        removed, _ = await pipe.execute()
        return bool(removed)

    async def fire_repeating(self, now: Optional[int] = None,
                             queues: Iterable[str] = Queues.ALL) -> int:
        now = now if now is not None else now_ms()
        fired = 0
        for queue in queues:
            due = await self._redis.zrangebyscore(
                self._schedule_key(queue), "-inf", now, withscores=True,
            )
            for key, score in due:
                raw = await self._redis.hget(self._repeat_key(queue), key)
                if raw is None:
                    await self._redis.zrem(self._schedule_key(queue), key)
                    continue
                registration = RepeatRegistration.from_json(raw)
                if await self.enqueue(queue, registration.tick_job(int(score))):
                    fired += 1
                # XX: never resurrect a registration cancelled meanwhile
                await self._redis.zadd(
                    self._schedule_key(queue),
                    {key: next_boundary_ms(registration.every_ms, now)},
                    xx=True,
                )
        return fired

    # ── consume ───────────────────────────────────────────────

    async def dequeue(self, queue: str, consumer_group: str = "default",
                      consumer_name: str = "", block_ms: int = 2000) -> Optional[Delivery]:
        consumer_name = consumer_name or f"worker_{uuid.uuid4().hex[:8]}"
        await self._ensure_group(queue, consumer_group)
        stream = self._stream(queue)

        claimed = await self._redis.xautoclaim(
            stream, consumer_group, consumer_name,
            min_idle_time=self.claim_idle_ms, start_id="0-0", count=1,
        )
        for message_id, fields in claimed[1]:
            if fields:
                logger.warning("job_reclaimed", queue=queue, message_id=message_id)
                return Delivery(queue, message_id, QueueJob.from_dict(fields))

        messages = await self._redis.xreadgroup(
            groupname=consumer_group,
            consumername=consumer_name,
            streams={stream: ">"},
            count=1,
            block=block_ms,
        )
        for _, stream_messages in messages or []:
            for message_id, fields in stream_messages:
                return Delivery(queue, message_id, QueueJob.from_dict(fields))
        return None

    async def ack(self, delivery: Delivery, consumer_group: str = "default"):
        stream = self._stream(delivery.queue)
        pipe = self._redis.pipeline()
        pipe.xack(stream, consumer_group, delivery.delivery_id)
        pipe.xdel(stream, delivery.delivery_id)
        await pipe.execute()
        logger.debug("job_acked",
                     job_id=delivery.job.job_id,
                     message_id=delivery.delivery_id)

    # ── failures / inspection ─────────────────────────────────

    async def record_failure(self, queue: str, job: QueueJob):
        pipe = self._redis.pipeline()
        pipe.lpush(self._failed_key(queue), json.dumps(job.to_dict()))
        pipe.ltrim(self._failed_key(queue), 0, self.failed_retention - 1)
        await pipe.execute()

    async def failed_jobs(self, queue: str, count: int = 50) -> list[QueueJob]:
        raw = await self._redis.lrange(self._failed_key(queue), 0, count - 1)
        return [QueueJob.from_dict(json.loads(r)) for r in raw]

    async def queue_length(self, queue: str) -> int:
        return await self._redis.xlen(self._stream(queue))

    async def peek(self, queue: str, count: int = 10) -> list[QueueJob]:
        messages = await self._redis.xrange(self._stream(queue), count=count)
        return [QueueJob.from_dict(fields) for _, fields in messages]

    async def promote_delayed(self, now: Optional[int] = None) -> int:
        """Move jobs whose ready time <= now from the sorted set to their streams."""
        now = now if now is not None else now_ms()
        ready = await self._redis.zrangebyscore(
            self._delayed_key(), "-inf", now, withscores=True,
        )

        promoted = 0
        for payload, ready_ms in ready:
            # ZREM decides which scheduler owns the promotion
            if not await self._redis.zrem(self._delayed_key(), payload):
                continue
            entry = json.loads(payload)
            try:
                await self._redis.xadd(self._stream(entry["queue"]), entry["job"])
            except Exception:
                await self._redis.zadd(self._delayed_key(), {payload: ready_ms})
                raise
            promoted += 1

        if promoted:
            logger.info("delayed_jobs_promoted", count=promoted)
        return promoted


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryJobStore(JobStore):
    """
    Development/test store backed by asyncio primitives.
    Single-process only — consumer groups are ignored, nothing persists.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._queues: dict[str, deque[QueueJob]] = {}
        self._conditions: dict[str, asyncio.Condition] = {}
        self._delayed: list[tuple[int, str, QueueJob]] = []  # (ready_ms, queue, job)
        self._repeat: dict[str, dict[str, RepeatRegistration]] = {}
        self._failed: dict[str, list[QueueJob]] = {}
        self._seen_ids: dict[str, int] = {}                  # job_id → expiry ms
        self._inflight: dict[str, tuple[str, QueueJob, int]] = {}

    def _get_queue(self, name: str) -> deque[QueueJob]:
        if name not in self._queues:
            self._queues[name] = deque()
            self._conditions[name] = asyncio.Condition()
        return self._queues[name]

    async def connect(self):
        self._running = True
        logger.info("inmemory_store_connected")

    async def close(self):
        self._running = False

    async def _push(self, queue: str, job: QueueJob):
        q = self._get_queue(queue)
        async with self._conditions[queue]:
            q.append(job)
            self._conditions[queue].notify()

    async def enqueue(self, queue: str, job: QueueJob, delay_ms: int = 0,
                      dedupe: bool = True) -> Optional[str]:
        now = now_ms()
        if dedupe:
            if len(self._seen_ids) > 10000:
                self._seen_ids = {k: exp for k, exp in self._seen_ids.items() if exp > now}
            expiry = self._seen_ids.get(job.job_id)
            if expiry is not None and expiry > now:
                logger.debug("job_deduplicated", queue=queue, job_id=job.job_id)
                return None
            self._seen_ids[job.job_id] = now + self.dedup_ttl_ms

        if delay_ms > 0:
            self._delayed.append((now + delay_ms, queue, job))
            self._delayed.sort(key=lambda x: x[0])
            logger.info("delayed_job_published",
                        queue=queue,
                        job_id=job.job_id,
                        delay_ms=delay_ms)
        else:
            await self._push(queue, job)
            logger.info("job_published",
                        queue=queue,
                        job_id=job.job_id,
                        stage=job.stage,
                        attempt=job.attempt)
        return job.job_id

    async def add_repeating(self, queue: str, registration: RepeatRegistration) -> bool:
        registrations = self._repeat.setdefault(queue, {})
        if registration.key in registrations:
            return False
        registrations[registration.key] = registration
        return True

    async def refresh_repeating(self, queue: str, registration: RepeatRegistration) -> bool:
        existing = self._repeat.get(queue, {}).get(registration.key)
        if existing is None:
            return False
        existing.payload = registration.payload
        return True

    async def list_repeating(self, queue: str) -> list[RepeatRegistration]:
        return list(self._repeat.get(queue, {}).values())

    async def cancel_repeating(self, queue: str, key: str) -> bool:
        return self._repeat.get(queue, {}).pop(key, None) is not None

    async def fire_repeating(self, now: Optional[int] = None,
                             queues: Iterable[str] = Queues.ALL) -> int:
        now = now if now is not None else now_ms()
        fired = 0
        for queue in queues:
            for registration in list(self._repeat.get(queue, {}).values()):
                if registration.next_run_ms > now:
                    continue
                if await self.enqueue(queue, registration.tick_job(registration.next_run_ms)):
                    fired += 1
                registration.next_run_ms = next_boundary_ms(registration.every_ms, now)
        return fired

    def _reclaim_stale(self, queue: str) -> Optional[QueueJob]:
        cutoff = now_ms() - self.claim_idle_ms
        for delivery_id, (q, job, delivered_at) in list(self._inflight.items()):
            if q == queue and delivered_at <= cutoff:
                del self._inflight[delivery_id]
                logger.warning("job_reclaimed", queue=queue, job_id=job.job_id)
                return job
        return None

    async def dequeue(self, queue: str, consumer_group: str = "default",
                      consumer_name: str = "", block_ms: int = 2000) -> Optional[Delivery]:
        q = self._get_queue(queue)
        job = self._reclaim_stale(queue)
        if job is None:
            condition = self._conditions[queue]
            async with condition:
                if not q:
                    try:
                        await asyncio.wait_for(condition.wait_for(lambda: bool(q)),
                                               timeout=block_ms / 1000)
                    except asyncio.TimeoutError:
                        return None
                job = q.popleft()

        delivery_id = uuid.uuid4().hex
        self._inflight[delivery_id] = (queue, job, now_ms())
        return Delivery(queue, delivery_id, job)

    async def ack(self, delivery: Delivery, consumer_group: str = "default"):
        self._inflight.pop(delivery.delivery_id, None)

    async def record_failure(self, queue: str, job: QueueJob):
        failed = self._failed.setdefault(queue, [])
        failed.insert(0, job)
        del failed[self.failed_retention:]

    async def failed_jobs(self, queue: str, count: int = 50) -> list[QueueJob]:
        return self._failed.get(queue, [])[:count]

    async def queue_length(self, queue: str) -> int:
        return len(self._get_queue(queue))

    async def delayed_jobs(self) -> list[tuple[int, str, QueueJob]]:
        return list(self._delayed)

    async def peek(self, queue: str, count: int = 10) -> list[QueueJob]:
        return list(self._get_queue(queue))[:count]

    async def promote_delayed(self, now: Optional[int] = None) -> int:
        now = now if now is not None else now_ms()
        ready = [(ts, q, job) for ts, q, job in self._delayed if ts <= now]
        self._delayed = [(ts, q, job) for ts, q, job in self._delayed if ts > now]

        for _, queue, job in ready:
            await self._push(queue, job)

        if ready:
            logger.info("delayed_jobs_promoted", count=len(ready))
        return len(ready)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_job_store(queue_config: dict[str, Any] = None) -> JobStore:
    """Factory: create the appropriate store backend."""
    config = queue_config or {}
    backend = config.get("backend", "memory")
    options = {
        "dedup_ttl_ms": config.get("dedup_ttl_ms", 86400000),
        "failed_retention": config.get("failed_retention", 1000),
        "claim_idle_ms": config.get("claim_idle_ms", 60000),
    }

    if backend == "redis":
        return RedisJobStore(
            redis_url=config.get("redis_url", "redis://localhost:6379"),
            key_prefix=config.get("key_prefix", "triage"),
            **options,
        )
    return InMemoryJobStore(**options)
