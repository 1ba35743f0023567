"""
Follow Event Processor — drains profile events and applies them.

One invocation is a single linear pass over a bounded batch:

  ┌──────────────┐  pop(n)  ┌──────────────────┐  handle_follow_action  ┌─────────────┐
  │ profile_     │─────────▶│ FollowEvent      │───────────────────────▶│ Follow      │
  │ events queue │          │ Processor        │                        │ backend     │
  └──────▲───────┘          └────────┬─────────┘                        └─────────────┘
         │         archive(id)       │
         └───────────────────────────┘

Delivery is at-least-once: a message whose transition succeeded but whose
archive failed will be seen again on a later run, so the transition itself
has to tolerate duplicates.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from backend.connector import FollowBackend, TransitionError
from job_queue.message_queue import DEFAULT_QUEUE, MessageQueue, QueueError, QueueMessage
from models.schemas import (
    BatchReport, FollowEvent, InvalidEventError, MessageOutcome, MessageResult,
)

logger = structlog.get_logger()


class FollowEventProcessor:
    """
    Pops a batch of follow events, dispatches each one to the follow backend
    and archives it on success.

    Usage:
        processor = FollowEventProcessor(queue, backend)
        report = await processor.drain()
        report.processed_count
    """

    def __init__(
        self,
        queue: MessageQueue,
        backend: FollowBackend,
        queue_name: str = DEFAULT_QUEUE,
        batch_size: int = 10,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.queue = queue
        self.backend = backend
        self.queue_name = queue_name
        self.batch_size = batch_size
        self._lock = asyncio.Lock()

    async def drain(self, batch_size: Optional[int] = None) -> BatchReport:
        """
        Run one batch. Never raises for queue or per-message failures.
        Drains in one process are serialized, whoever triggers them.
        """
        count = self.batch_size if batch_size is None else batch_size
        if count < 1:
            raise ValueError(f"batch_size must be at least 1, got {count}")

        async with self._lock:
            return await self._drain(count)

    async def _drain(self, count: int) -> BatchReport:
        report = BatchReport(queue=self.queue_name)

        try:
            messages = await self.read_batch(count)
        except QueueError as e:
            logger.error("queue_read_failed", queue=self.queue_name, error=str(e))
            report.read_failed = True
            return report

        if not messages:
            logger.info("queue_empty", queue=self.queue_name)
            return report

        for message in messages:
            report.results.append(await self.process_message(message))

        logger.info("batch_processed", queue=self.queue_name, **report.stats())
        return report

    async def read_batch(self, count: int) -> list[QueueMessage]:
        return await self.queue.pop(self.queue_name, count)

    async def process_message(self, message: QueueMessage) -> MessageResult:
        """Validate → dispatch → archive for a single message."""
        try:
            event = FollowEvent.from_payload(message.payload)
        except InvalidEventError as e:
            logger.warning("invalid_message_skipped",
                           message_id=message.id,
                           reason=str(e))
            return MessageResult(
                message_id=message.id,
                outcome=MessageOutcome.SKIPPED,
                error=str(e),
            )

        try:
            await self.dispatch(event)
        except TransitionError as e:
            logger.error("follow_transition_failed",
                         message_id=message.id,
                         action=event.action,
                         error=str(e))
            return MessageResult(
                message_id=message.id,
                outcome=MessageOutcome.FAILED,
                action=event.action,
                error=str(e),
            )
        except Exception as e:
            logger.error("follow_event_error",
                         message_id=message.id,
                         action=event.action,
                         error=str(e),
                         exc_info=True)
            return MessageResult(
                message_id=message.id,
                outcome=MessageOutcome.FAILED,
                action=event.action,
                error=str(e),
            )

        archived = await self.acknowledge(message)
        return MessageResult(
            message_id=message.id,
            outcome=MessageOutcome.PROCESSED,
            archived=archived,
            action=event.action,
        )

    async def dispatch(self, event: FollowEvent):
        logger.info("dispatching_follow_event",
                    action=event.action,
                    follower_id=event.follower_id,
                    following_id=event.following_id)
        return await self.backend.handle_follow_action(
            event.action, event.follower_id, event.following_id,
        )

    async def acknowledge(self, message: QueueMessage) -> bool:
        """Archive a processed message. Failures are logged, not raised."""
        try:
            archived = await self.queue.archive(self.queue_name, message.id)
        except QueueError as e:
            logger.error("message_archive_failed", message_id=message.id, error=str(e))
            return False
        except Exception as e:
            logger.error("message_archive_error",
                         message_id=message.id,
                         error=str(e),
                         exc_info=True)
            return False
        if not archived:
            logger.warning("message_not_archived", message_id=message.id)
        return archived


# ──────────────────────────────────────────────────────────────
#  Drain Scheduler
# ──────────────────────────────────────────────────────────────

class DrainScheduler:
    """
    Background task that runs a drain every `interval_seconds`.
    Used when no external cron triggers the HTTP endpoint.
    """

    def __init__(self, processor: FollowEventProcessor, interval_seconds: int = 60):
        self.processor = processor
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run(), name="follow_drain_scheduler")
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("drain_scheduler_stopped")

    async def _run(self):
        logger.info("drain_scheduler_started", interval=self.interval)
        while True:
            try:
                await self.processor.drain()
                self.runs += 1
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("scheduled_drain_error", error=str(e))
            await asyncio.sleep(self.interval)
