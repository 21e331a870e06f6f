"""Shared test fixtures for the inbox triage pipeline."""
import fakeredis
import pytest

from config.settings import PipelineConfig, QueueConfig
from core.pipeline import PipelineCoordinator
from job_queue.message_queue import InMemoryJobStore, RedisJobStore
from models.schemas import User
from tests.fakes import FakeInference, FakeMailClient


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def user() -> User:
    return User(id="u1", email="u1@example.com", displayName="User One", accessToken="token-u1")


@pytest.fixture
def other_user() -> User:
    return User(id="u10", email="u10@example.com", accessToken="token-u10")


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def redis_store() -> RedisJobStore:
    """RedisJobStore over a private in-process fake server."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return RedisJobStore(key_prefix="test", client=client)


@pytest.fixture
def mail() -> FakeMailClient:
    return FakeMailClient()


@pytest.fixture
def inference() -> FakeInference:
    return FakeInference()


@pytest.fixture
def coordinator(store, mail, inference) -> PipelineCoordinator:
    return PipelineCoordinator(
        store, mail, inference,
        config=PipelineConfig(),
        queue_config=QueueConfig(consumer_concurrency=1, scheduler_interval=0.01),
    )


@pytest.fixture
def outcomes(coordinator) -> list:
    recorded = []
    coordinator.add_listener(recorded.append)
    return recorded

