"""
FastAPI Application — HTTP trigger for the follow-event drain job.

Provides:
- POST /                      one drain (what the platform scheduler calls)
- POST /api/v1/queue/drain    same, under a versioned path
- POST /api/v1/queue/events   enqueue a follow/unfollow event
- GET  /health                liveness and queue configuration
- Optional in-process scheduler for deployments without an external cron
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.settings import Settings, get_settings
from job_queue.consumer import DrainScheduler
from job_queue.message_queue import QueueError
from job_queue.worker import Worker, build_worker
from models.schemas import FollowAction, FollowEvent

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class EnqueueEventRequest(BaseModel):
    action: FollowAction
    follower_id: str
    following_id: str


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(settings: Settings = None, worker: Worker = None) -> FastAPI:
    settings = settings or get_settings()
    worker = worker or build_worker(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        if settings.queue.scheduler_enabled:
            scheduler = DrainScheduler(
                worker.processor,
                interval_seconds=settings.queue.poll_interval_seconds,
            )
            await scheduler.start_background()
        app.state.scheduler = scheduler

        logger.info("follow_worker_started",
                     queue=settings.queue.name,
                     queue_backend=type(worker.queue).__name__,
                     scheduler=bool(scheduler))
        yield

        if scheduler:
            await scheduler.stop()
        await worker.close()
        logger.info("follow_worker_stopped")

    app = FastAPI(
        title="Knitted Follow Worker",
        description="Drains follow/unfollow events and applies them to profile relationships",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.worker = worker
    app.state.scheduler = None

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/", drain_queue, methods=["POST"])
    app.add_api_route("/api/v1/queue/drain", drain_queue, methods=["POST"])
    app.add_api_route("/api/v1/queue/events", enqueue_event, methods=["POST"])
    return app


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

async def health(request: Request):
    settings: Settings = request.app.state.settings
    scheduler: Optional[DrainScheduler] = request.app.state.scheduler
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": settings.queue.name,
        "queue_backend": settings.queue_backend,
        "follow_backend": settings.follow_backend,
        "scheduler_running": bool(scheduler and scheduler.running),
    }


# ══════════════════════════════════════════════════════════════
#  QUEUE
# ══════════════════════════════════════════════════════════════

async def drain_queue(
    request: Request,
    batch_size: Optional[int] = Query(None, ge=1, le=100),
    x_scheduled: Optional[str] = Header(None),
):
    worker: Worker = request.app.state.worker
    is_scheduled = x_scheduled == "true"

    try:
        report = await worker.processor.drain(batch_size)
    except Exception as e:
        logger.error("queue_processing_error", scheduled=is_scheduled, error=str(e), exc_info=True)
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    logger.info("drain_completed", scheduled=is_scheduled, **report.stats())
    return JSONResponse(report.to_response())


async def enqueue_event(request: Request, req: EnqueueEventRequest):
    worker: Worker = request.app.state.worker
    settings: Settings = request.app.state.settings
    event = FollowEvent(
        action=req.action.value,
        follower_id=req.follower_id,
        following_id=req.following_id,
    )
    try:
        message_id = await worker.queue.send(settings.queue.name, event.to_payload())
    except QueueError as e:
        raise HTTPException(502, str(e))
    return {"status": "enqueued", "message_id": message_id}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
