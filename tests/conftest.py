"""Shared test fixtures for the follow-event worker."""
import pytest
from typing import Any
from unittest.mock import AsyncMock

from backend.connector import InMemoryFollowBackend
from config.settings import QueueConfig, Settings, SupabaseConfig
from job_queue.consumer import FollowEventProcessor
from job_queue.message_queue import InMemoryMessageQueue, MessageQueue, QueueMessage


def follow_payload(action: str = "follow", follower_id: str = "A", following_id: str = "B") -> dict[str, Any]:
    return {"action": action, "data": {"follower_id": follower_id, "following_id": following_id}}


@pytest.fixture
def memory_queue() -> InMemoryMessageQueue:
    return InMemoryMessageQueue()


@pytest.fixture
def memory_backend() -> InMemoryFollowBackend:
    return InMemoryFollowBackend()


@pytest.fixture
def processor(memory_queue, memory_backend) -> FollowEventProcessor:
    return FollowEventProcessor(memory_queue, memory_backend, queue_name="profile_events")


@pytest.fixture
def mock_queue() -> AsyncMock:
    """Queue double: set pop.return_value per test; archive succeeds by default."""
    queue = AsyncMock(spec=MessageQueue)
    queue.pop.return_value = []
    queue.archive.return_value = True
    return queue


@pytest.fixture
def mock_backend() -> AsyncMock:
    backend = AsyncMock()
    backend.handle_follow_action.return_value = {"ok": True}
    return backend


@pytest.fixture
def sample_batch() -> list[QueueMessage]:
    return [
        QueueMessage(id=1, payload=follow_payload("follow", "A", "B")),
        QueueMessage(id=2, payload={}),
    ]


@pytest.fixture
def memory_settings() -> Settings:
    return Settings(
        supabase=SupabaseConfig(),
        queue=QueueConfig(backend="memory", name="profile_events", batch_size=10),
    )
