"""FastAPI application for the Shopify compliance webhook service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response

from .config import settings
from .security import WebhookRejected
from .worker import job_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables for SQLite (local dev); PostgreSQL uses Alembic migrations
    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    job_worker.start()
    try:
        yield
    finally:
        await job_worker.stop()


app = FastAPI(title=settings.app_title, lifespan=lifespan)


@app.exception_handler(WebhookRejected)
async def webhook_rejected_handler(request: Request, exc: WebhookRejected) -> Response:
    logger.info("Webhook %s rejected with %d (%s)", request.url.path, exc.status_code, exc.reason)
    return Response(status_code=exc.status_code)


from .routers import health, webhooks  # noqa: E402

app.include_router(health.router)
app.include_router(webhooks.router)
