"""
Worker wiring — builds the Supabase client, queue, follow backend and
processor from Settings. Used by the API app and the CLI script.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

from backend.connector import FollowBackend, create_follow_backend
from backend.supabase_client import SupabaseRestClient
from config.settings import Settings
from job_queue.consumer import FollowEventProcessor
from job_queue.message_queue import MessageQueue, create_message_queue

logger = structlog.get_logger()


@dataclass
class Worker:
    queue: MessageQueue
    backend: FollowBackend
    processor: FollowEventProcessor
    client: Optional[SupabaseRestClient] = None

    async def close(self):
        await self.queue.close()
        if self.client:
            await self.client.close()


def build_worker(settings: Settings, client: Optional[SupabaseRestClient] = None) -> Worker:
    queue_backend = settings.queue_backend
    follow_backend = settings.follow_backend

    if client is None and "supabase" in (queue_backend, follow_backend):
        client = SupabaseRestClient(settings.supabase)

    queue = create_message_queue(
        queue_backend, client=client, schema=settings.supabase.queue_schema,
    )
    backend = create_follow_backend(
        follow_backend, client=client, procedure=settings.backend.procedure,
    )
    processor = FollowEventProcessor(
        queue, backend,
        queue_name=settings.queue.name,
        batch_size=settings.queue.batch_size,
    )
    logger.info("worker_built",
                queue_backend=queue_backend,
                follow_backend=follow_backend,
                queue=settings.queue.name)
    return Worker(queue=queue, backend=backend, processor=processor, client=client)
