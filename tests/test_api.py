"""
Tests — HTTP trigger (FastAPI)

Run:
  pytest tests/test_api.py -v
"""
import asyncio
import pytest

from dataclasses import replace
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from api.main import create_app
from job_queue.message_queue import QueueError
from job_queue.worker import Worker, build_worker


@pytest.fixture
def worker(memory_settings) -> Worker:
    return build_worker(memory_settings)


@pytest.fixture
def client(memory_settings, worker) -> TestClient:
    return TestClient(create_app(memory_settings, worker))


def _enqueue(client, action="follow", follower_id="A", following_id="B"):
    resp = client.post("/api/v1/queue/events", json={
        "action": action, "follower_id": follower_id, "following_id": following_id,
    })
    assert resp.status_code == 200
    return resp.json()


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["queue"] == "profile_events"
        assert body["queue_backend"] == "memory"
        assert body["scheduler_running"] is False


class TestDrainEndpoint:

    def test_empty_queue(self, client):
        resp = client.post("/")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Processed 0 messages"}

    def test_processes_enqueued_events(self, client, worker):
        _enqueue(client, "follow", "A", "B")
        _enqueue(client, "follow", "C", "B")

        resp = client.post("/", headers={"x-scheduled": "true"})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Processed 2 messages"}
        assert worker.backend.followers_of("B") == ["A", "C"]

    def test_versioned_path_and_batch_size(self, client):
        for i in range(3):
            _enqueue(client, "follow", f"p{i}", "B")

        resp = client.post("/api/v1/queue/drain", params={"batch_size": 2})
        assert resp.json()["message"] == "Processed 2 messages"

        resp = client.post("/api/v1/queue/drain")
        assert resp.json()["message"] == "Processed 1 messages"

    def test_batch_size_bounds(self, client):
        assert client.post("/", params={"batch_size": 0}).status_code == 422
        assert client.post("/", params={"batch_size": 101}).status_code == 422

    def test_malformed_message_skipped(self, client, worker):
        asyncio.run(worker.queue.send("profile_events", {"action": "follow"}))
        _enqueue(client, "follow", "A", "B")

        resp = client.post("/")
        assert resp.json() == {"success": True, "message": "Processed 1 messages"}

    def test_unhandled_error_returns_500(self, memory_settings, worker):
        processor = AsyncMock()
        processor.drain.side_effect = RuntimeError("database exploded")
        broken = Worker(queue=worker.queue, backend=worker.backend, processor=processor)
        client = TestClient(create_app(memory_settings, broken))

        resp = client.post("/")

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "database exploded"}


class TestEnqueueEndpoint:

    def test_enqueue_returns_message_id(self, client, worker):
        assert _enqueue(client) == {"status": "enqueued", "message_id": 1}
        assert _enqueue(client, "unfollow") == {"status": "enqueued", "message_id": 2}

    def test_unknown_action_rejected(self, client):
        resp = client.post("/api/v1/queue/events", json={
            "action": "block", "follower_id": "A", "following_id": "B",
        })
        assert resp.status_code == 422

    def test_queue_error_is_bad_gateway(self, memory_settings, worker):
        queue = AsyncMock()
        queue.send.side_effect = QueueError("send to profile_events failed")
        broken = Worker(queue=queue, backend=worker.backend, processor=worker.processor)
        client = TestClient(create_app(memory_settings, broken))

        resp = client.post("/api/v1/queue/events", json={
            "action": "follow", "follower_id": "A", "following_id": "B",
        })
        assert resp.status_code == 502


class TestLifespan:

    def test_scheduler_runs_inside_lifespan(self, memory_settings, worker):
        settings = replace(memory_settings, queue=replace(memory_settings.queue, scheduler_enabled=True))
        app = create_app(settings, worker)

        with TestClient(app) as client:
            assert client.get("/health").json()["scheduler_running"] is True

        assert app.state.scheduler.running is False
