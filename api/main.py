"""
FastAPI Application — trigger surface for the triage pipeline.

Provides:
- Health check
- "User authenticated" trigger that registers the recurring fetch
- Logout teardown of a user's recurring work
- Queue depth and terminal-failure inspection for operators

The lifespan builds one PipelineCoordinator and runs its stage consumers
and scheduler in-process. Use scripts/run_worker.py to scale workers out
separately.
"""
from __future__ import annotations

import structlog
from dataclasses import asdict
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Any

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Query

from config.settings import Settings, get_settings
from core.engine import InferenceEngine
from core.pipeline import PipelineCoordinator
from job_queue.message_queue import Queues, Stage, create_job_store
from mail.gmail_client import GmailClient
from models.schemas import User
from utils.logging import configure_logging

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

def build_coordinator(settings: Settings = None) -> PipelineCoordinator:
    settings = settings or get_settings()
    return PipelineCoordinator(
        store=create_job_store(asdict(settings.queue)),
        mail=GmailClient(settings.mail),
        inference=InferenceEngine(settings.llm),
        config=settings.pipeline,
        queue_config=settings.queue,
    )


def create_app(coordinator: PipelineCoordinator = None, run_workers: bool = True) -> FastAPI:
    settings = get_settings()
    coordinator = coordinator or build_coordinator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.debug)
        if run_workers:
            await coordinator.start()
        else:
            await coordinator.store.connect()

        logger.info("triage_api_started",
                    app=settings.app_name,
                    store=type(coordinator.store).__name__,
                    workers=run_workers)
        yield

        await coordinator.stop()
        logger.info("triage_api_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Per-user email triage pipeline",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store": type(coordinator.store).__name__,
        }

    # ══════════════════════════════════════════════════════════
    #  USER LIFECYCLE
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/users/schedule")
    async def schedule_user(user: User):
        """Called after a user authenticates. Never fails the login."""
        scheduled = await coordinator.schedule_fetch(user)
        return {"user_id": user.id, "scheduled": scheduled}

    @app.delete("/api/v1/users/{user_id}/jobs")
    async def remove_user_jobs(user_id: str):
        """Called on logout. A user with nothing scheduled is a no-op."""
        cancelled = await coordinator.cancel_user(user_id)
        return {"user_id": user_id, "cancelled": cancelled}

    # ══════════════════════════════════════════════════════════
    #  QUEUES
    # ══════════════════════════════════════════════════════════

    @app.get("/api/v1/queues")
    async def queue_stats():
        depths = await coordinator.queue_depths()
        registrations = await coordinator.store.list_repeating(Queues.FETCH)
        return {
            "queues": depths,
            "repeating_fetches": len(registrations),
        }

    @app.get("/api/v1/queues/{stage}/failed")
    async def failed_jobs(stage: str, limit: int = Query(50, ge=1, le=1000)):
        try:
            stage = Stage(stage)
        except ValueError:
            raise HTTPException(404, f"Unknown stage: {stage}")
        jobs = await coordinator.failed_jobs(stage, limit)
        return {"stage": stage.value, "jobs": [_job_summary(j) for j in jobs]}

    return app


def _job_summary(job) -> dict[str, Any]:
    return {
        "job_id": job.job_id,
        "stage": job.stage,
        "attempt": job.attempt,
        "max_attempts": job.max_attempts,
        "state": job.state,
        "last_error": job.last_error,
        "created_at": job.created_at,
        "metadata": job.metadata,
    }


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
