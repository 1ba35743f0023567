"""
Message Queue — Abstract interface with pgmq (Supabase) and in-memory backends.

Queue Topology:
  profile_events          — follow/unfollow events written when a profile
                            follows or unfollows another
  profile_events archive  — pgmq archive table; archived messages are never
                            redelivered

Message Schema (pgmq row returned by pgmq_public.pop):
  {
      "msg_id":      bigint message id,
      "read_ct":     how many times the message has been read,
      "enqueued_at": ISO timestamp when the message was sent,
      "vt":          visibility timeout,
      "message":     {"action": "follow", "data": {"follower_id", "following_id"}},
  }
"""
from __future__ import annotations

import itertools
import structlog
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from backend.supabase_client import SupabaseRequestError, SupabaseRestClient

logger = structlog.get_logger()

DEFAULT_QUEUE = "profile_events"


class QueueError(Exception):
    """Raised when the queue backend cannot be reached or rejects a call."""
    pass


# ──────────────────────────────────────────────────────────────
#  Message Model
# ──────────────────────────────────────────────────────────────

@dataclass
class QueueMessage:
    """A unit of work popped from the queue."""
    id: int
    payload: Any = None
    read_count: int = 0
    enqueued_at: str = ""

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueueMessage:
        """Build from a pgmq row ({msg_id, message, ...}) or a plain {id, message} entry."""
        msg_id = row.get("msg_id", row.get("id"))
        if msg_id is None:
            raise ValueError("queue row has no message id")
        return cls(
            id=int(msg_id),
            payload=row.get("message"),
            read_count=int(row.get("read_ct", 0) or 0),
            enqueued_at=str(row.get("enqueued_at", "") or ""),
        )


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract message queue interface."""

    @abstractmethod
    async def pop(self, queue: str, count: int = 10) -> list[QueueMessage]:
        """Remove and return up to `count` pending messages, oldest first."""
        ...

    @abstractmethod
    async def archive(self, queue: str, message_id: int) -> bool:
        """Mark a message as done so it is not redelivered."""
        ...

    @abstractmethod
    async def send(self, queue: str, payload: dict[str, Any]) -> int:
        """Enqueue a payload. Returns the new message id."""
        ...

    async def close(self):
        """Gracefully shut down."""
        pass


# ──────────────────────────────────────────────────────────────
#  pgmq via Supabase RPC
# ──────────────────────────────────────────────────────────────

class SupabaseMessageQueue(MessageQueue):
    """
    Production queue backed by pgmq, reached through the pgmq_public
    RPC schema that Supabase exposes over PostgREST.
    """

    def __init__(self, client: SupabaseRestClient, schema: str = "pgmq_public"):
        self.client = client
        self.schema = schema

    async def pop(self, queue: str, count: int = 10) -> list[QueueMessage]:
        try:
            rows = await self.client.rpc(
                "pop", {"queue_name": queue, "count": count}, schema=self.schema,
            )
        except SupabaseRequestError as e:
            raise QueueError(f"pop from {queue} failed: {e.message}") from e

        if rows is None:
            return []
        if isinstance(rows, dict):
            rows = [rows]

        messages = []
        for row in rows:
            try:
                messages.append(QueueMessage.from_row(row))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("queue_row_unreadable", queue=queue, row=row, error=str(e))
        return messages

    async def archive(self, queue: str, message_id: int) -> bool:
        try:
            result = await self.client.rpc(
                "archive", {"queue_name": queue, "message_id": message_id}, schema=self.schema,
            )
        except SupabaseRequestError as e:
            raise QueueError(f"archive of {message_id} in {queue} failed: {e.message}") from e
        return bool(result) if result is not None else True

    async def send(self, queue: str, payload: dict[str, Any]) -> int:
        try:
            result = await self.client.rpc(
                "send", {"queue_name": queue, "message": payload}, schema=self.schema,
            )
        except SupabaseRequestError as e:
            raise QueueError(f"send to {queue} failed: {e.message}") from e

        # pgmq_public.send returns SETOF bigint
        if isinstance(result, list):
            result = result[0] if result else None
        if result is None:
            raise QueueError(f"send to {queue} returned no message id")
        msg_id = int(result)
        logger.info("queue_message_sent", queue=queue, message_id=msg_id)
        return msg_id


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

@dataclass
class _StoredQueue:
    pending: deque = field(default_factory=deque)
    in_flight: dict[int, QueueMessage] = field(default_factory=dict)
    archived: dict[int, QueueMessage] = field(default_factory=dict)


class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue backed by in-process deques.
    Single-process only, no persistence. Popped messages stay in flight
    until archived; requeue_unarchived() puts them back like an expired
    visibility timeout would.
    """

    def __init__(self):
        self._queues: dict[str, _StoredQueue] = {}
        self._ids = itertools.count(1)

    def _get_queue(self, name: str) -> _StoredQueue:
        if name not in self._queues:
            self._queues[name] = _StoredQueue()
        return self._queues[name]

    async def pop(self, queue: str, count: int = 10) -> list[QueueMessage]:
        q = self._get_queue(queue)
        popped = []
        while q.pending and len(popped) < count:
            msg = q.pending.popleft()
            msg.read_count += 1
            q.in_flight[msg.id] = msg
            popped.append(msg)
        return popped

    async def archive(self, queue: str, message_id: int) -> bool:
        q = self._get_queue(queue)
        msg = q.in_flight.pop(message_id, None)
        if msg is None:
            return False
        q.archived[message_id] = msg
        return True

    async def send(self, queue: str, payload: dict[str, Any]) -> int:
        msg = QueueMessage(
            id=next(self._ids),
            payload=payload,
            enqueued_at=datetime.now(timezone.utc).isoformat(),
        )
        self._get_queue(queue).pending.append(msg)
        logger.info("queue_message_sent", queue=queue, message_id=msg.id)
        return msg.id

    async def queue_length(self, queue: str) -> int:
        return len(self._get_queue(queue).pending)

    def archived_ids(self, queue: str) -> list[int]:
        return list(self._get_queue(queue).archived)

    def in_flight_ids(self, queue: str) -> list[int]:
        return list(self._get_queue(queue).in_flight)

    def requeue_unarchived(self, queue: str) -> int:
        """Return in-flight messages to the front of the queue, oldest first."""
        q = self._get_queue(queue)
        stale = sorted(q.in_flight.values(), key=lambda m: m.id)
        q.in_flight.clear()
        q.pending.extendleft(reversed(stale))
        return len(stale)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_message_queue(
    backend: str = "memory",
    client: Optional[SupabaseRestClient] = None,
    schema: str = "pgmq_public",
) -> MessageQueue:
    """Factory: create the appropriate queue backend."""
    if backend == "supabase":
        if client is None:
            raise ValueError("supabase queue backend needs a SupabaseRestClient")
        logger.info("queue_created", backend="supabase", schema=schema)
        return SupabaseMessageQueue(client, schema=schema)

    logger.info("queue_created", backend="memory")
    return InMemoryMessageQueue()
