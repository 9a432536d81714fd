"""Shopify mandatory compliance webhook receivers."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..jobs.policies import JOB_CUSTOMERS_DATA_REQUEST, JOB_CUSTOMERS_REDACT, JOB_SHOP_REDACT
from ..security import SIGNATURE_HEADER, PayloadValidator, SignatureVerifier, WebhookRejected
from ..services.job_svc import enqueue_job
from ..shopify.topics import CUSTOMERS_DATA_REQUEST, CUSTOMERS_REDACT, SHOP_REDACT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def accept_webhook(request: Request, topic: str) -> dict:
    """Run every synchronous check; raises WebhookRejected on the first failure."""
    validator = PayloadValidator()
    validator.check_envelope(
        request.headers.get("content-type"), request.headers.get("content-length")
    )
    raw_body = await request.body()
    validator.check_body_size(raw_body)

    started = time.perf_counter()
    verified = SignatureVerifier().verify(raw_body, request.headers.get(SIGNATURE_HEADER))
    duration_ms = (time.perf_counter() - started) * 1000
    if not verified:
        logger.warning(
            "Webhook signature rejected topic=%s shop=%s verification_duration_ms=%.2f",
            topic,
            request.headers.get("x-shopify-shop-domain", ""),
            duration_ms,
        )
        raise WebhookRejected(401, "unauthorized")
    logger.debug("Webhook verified topic=%s verification_duration_ms=%.2f", topic, duration_ms)

    return validator.parse(topic, raw_body)


async def _enqueue(db: AsyncSession, job_type: str, payload: dict) -> Response:
    try:
        await enqueue_job(db, job_type, payload)
    except Exception:
        # Accepted webhooks always get a 200, even when the enqueue fails.
        logger.exception(
            "Failed to enqueue %s job for shop %s", job_type, payload.get("shop_domain")
        )
    return Response(status_code=200)


@router.post("/customers_data_request")
async def customers_data_request(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await accept_webhook(request, CUSTOMERS_DATA_REQUEST)
    return await _enqueue(db, JOB_CUSTOMERS_DATA_REQUEST, payload)


@router.post("/customers_redact")
async def customers_redact(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await accept_webhook(request, CUSTOMERS_REDACT)
    return await _enqueue(db, JOB_CUSTOMERS_REDACT, payload)


@router.post("/shop_redact")
async def shop_redact(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await accept_webhook(request, SHOP_REDACT)
    return await _enqueue(db, JOB_SHOP_REDACT, payload)
