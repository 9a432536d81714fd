"""Background job handlers for the three compliance topics and subscription retries."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..redaction.engine import RedactionEngine
from ..services.account_resolver import AccountResolver
from ..services.data_export_svc import DataExportCollector, find_customer_contact
from ..services.mailer_svc import DataRequestDelivery
from ..shopify.retry import SubscriptionRetryCoordinator
from .policies import (
    JOB_CUSTOMERS_DATA_REQUEST,
    JOB_CUSTOMERS_REDACT,
    JOB_SHOP_REDACT,
    JOB_SUBSCRIPTION_RETRY,
    PayloadDecodeError,
)

logger = logging.getLogger(__name__)

JobHandler = Callable[[AsyncSession, dict[str, Any]], Awaitable[Any]]


def _shop_domain(payload: dict[str, Any]) -> str:
    shop_domain = payload.get("shop_domain")
    if not isinstance(shop_domain, str) or not shop_domain.strip():
        raise PayloadDecodeError("payload is missing shop_domain")
    return shop_domain.strip()


def _customer(payload: dict[str, Any]) -> dict[str, Any]:
    customer = payload.get("customer")
    if not isinstance(customer, dict):
        raise PayloadDecodeError("payload is missing customer")
    return customer


async def handle_customers_data_request(db: AsyncSession, payload: dict[str, Any]) -> None:
    shop_domain = _shop_domain(payload)
    customer = _customer(payload)
    data_request_id = (payload.get("data_request") or {}).get("id")

    account = await AccountResolver(db).resolve(shop_domain)
    if account is None:
        logger.info("Data request %s: no account for shop %s", data_request_id, shop_domain)
        return

    export = await DataExportCollector(db).collect(account, customer, data_request_id)
    await DataRequestDelivery(db).deliver(
        account, export, shop_domain=shop_domain, customer_email=customer.get("email")
    )


async def handle_customers_redact(db: AsyncSession, payload: dict[str, Any]) -> None:
    shop_domain = _shop_domain(payload)
    customer = _customer(payload)

    account = await AccountResolver(db).resolve(shop_domain)
    if account is None:
        logger.info("Customer redact: no account for shop %s", shop_domain)
        return

    contact = await find_customer_contact(db, account, customer)
    if contact is None:
        logger.info(
            "Customer redact: no contact for Shopify customer %s in account %s",
            customer.get("id"),
            account.id,
        )
        return

    customer_id = customer.get("id")
    result = await RedactionEngine(db).redact_customer(
        contact,
        shop_domain=shop_domain,
        shopify_customer_id=str(customer_id) if customer_id is not None else None,
    )
    logger.info("Customer redact for contact %s finished: %s", result.contact_id, result.status)


async def handle_shop_redact(db: AsyncSession, payload: dict[str, Any]) -> None:
    shop_domain = _shop_domain(payload)

    account = await AccountResolver(db).resolve(shop_domain)
    if account is None:
        logger.info("Shop redact: no active account for shop %s", shop_domain)
        return

    await RedactionEngine(db).redact_shop(account, shop_domain, shop_id=payload.get("shop_id"))


async def handle_subscription_retry(db: AsyncSession, payload: dict[str, Any]) -> None:
    try:
        hook_id = int(payload["hook_id"])
        retry_count = int(payload.get("retry_count") or 1)
        max_retries = payload.get("max_retries")
        max_retries = int(max_retries) if max_retries is not None else None
    except (KeyError, TypeError, ValueError) as exc:
        raise PayloadDecodeError(f"invalid subscription retry payload: {exc}") from exc

    previous_failure = payload.get("previous_failure")
    if previous_failure is not None and not isinstance(previous_failure, dict):
        raise PayloadDecodeError("previous_failure must be an object")

    await SubscriptionRetryCoordinator(db).run(
        hook_id,
        previous_failure,
        retry_count=retry_count,
        max_retries=max_retries,
    )


HANDLERS: dict[str, JobHandler] = {
    JOB_CUSTOMERS_DATA_REQUEST: handle_customers_data_request,
    JOB_CUSTOMERS_REDACT: handle_customers_redact,
    JOB_SHOP_REDACT: handle_shop_redact,
    JOB_SUBSCRIPTION_RETRY: handle_subscription_retry,
}
