"""Shopify installation - persist the hook and subscribe compliance topics."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import ComplianceSettings, settings as default_settings
from ..models.account import Account
from ..models.integration_hook import SHOPIFY_APP_ID, IntegrationHook
from ..schemas.hook_settings import (
    SHOP_REDACTION_KEYS,
    SUBSCRIPTION_FAILURE_KEYS,
    cleared,
    update_hook_settings,
)
from ..shopify.retry import SubscriptionRetryCoordinator
from ..shopify.subscriptions import (
    SubscriptionConfigError,
    SubscriptionResult,
    WebhookSubscriptionService,
)

logger = logging.getLogger(__name__)


class InstallationError(Exception):
    """Installation aborted because compliance webhooks could not be subscribed."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def upsert_shopify_hook(
    db: AsyncSession,
    account: Account,
    *,
    shop_domain: str,
    access_token: str,
    scope: str | None = None,
    config: ComplianceSettings | None = None,
) -> IntegrationHook:
    """Create the hook, or rotate its token on re-install.

    Settings are merged, but markers left by an earlier subscription failure
    or shop redaction are cleared so the re-enabled hook starts fresh.
    """
    config = config or default_settings
    stmt = select(IntegrationHook).where(
        IntegrationHook.account_id == account.id,
        IntegrationHook.app_id == SHOPIFY_APP_ID,
        IntegrationHook.reference_id == shop_domain,
    )
    hook = (await db.execute(stmt)).scalar_one_or_none()
    now = _utcnow().isoformat()
    if hook is None:
        hook = IntegrationHook(
            account_id=account.id,
            app_id=SHOPIFY_APP_ID,
            reference_id=shop_domain,
            settings={},
        )
        db.add(hook)
        update_hook_settings(hook, installation_date=now)

    hook.access_token = access_token
    hook.status = "enabled"
    update_hook_settings(
        hook,
        scope=scope,
        shop_domain=shop_domain,
        oauth_completed_at=now,
        api_version=config.shopify_api_version,
        compliance_webhooks_pending=True,
        compliance_webhooks_subscribed=None,
        compliance_webhooks_subscribed_at=None,
        webhook_subscription_success=None,
        **cleared(SHOP_REDACTION_KEYS, SUBSCRIPTION_FAILURE_KEYS),
    )
    await db.commit()
    await db.refresh(hook)
    return hook


async def install_shop(
    db: AsyncSession,
    account: Account,
    *,
    shop_domain: str,
    access_token: str,
    scope: str | None = None,
    config: ComplianceSettings | None = None,
    service_factory: Callable[..., WebhookSubscriptionService] = WebhookSubscriptionService,
    log: logging.Logger | None = None,
) -> IntegrationHook:
    """Complete an installation after the OAuth token exchange.

    A subscription failure either aborts the installation (when configured)
    or queues the first subscription retry.
    """
    config = config or default_settings
    log = log or logger
    hook = await upsert_shopify_hook(
        db, account, shop_domain=shop_domain, access_token=access_token, scope=scope, config=config
    )

    if not config.compliance_webhooks_enabled:
        log.info("Compliance webhook subscription disabled; hook %s left pending", hook.id)
        return hook

    try:
        service = service_factory(hook, config=config, log=log)
        result = await service.subscribe_all()
    except SubscriptionConfigError as exc:
        result = SubscriptionResult.failed(str(exc))

    now = _utcnow().isoformat()
    if result.success:
        update_hook_settings(
            hook,
            compliance_webhooks_pending=False,
            compliance_webhooks_subscribed=True,
            compliance_webhooks_subscribed_at=now,
            webhook_subscription_success=True,
            subscribed_topics_count=result.subscribed_topics,
            **cleared(SUBSCRIPTION_FAILURE_KEYS),
        )
        await db.commit()
        log.info("Shop %s installed with compliance webhooks subscribed", shop_domain)
        return hook

    update_hook_settings(
        hook,
        webhook_subscription_success=False,
        webhook_subscription_failed_at=now,
        webhook_subscription_failure_reason=result.failure_reason,
        failed_topics_count=result.total_topics - result.subscribed_topics,
    )
    await db.commit()

    if config.fail_installation_on_webhook_error:
        log.error(
            "Installation of %s aborted: compliance webhook subscription failed: %s",
            shop_domain,
            result.failure_reason,
        )
        raise InstallationError(
            f"Compliance webhook subscription failed: {result.failure_reason}"
        )

    coordinator = SubscriptionRetryCoordinator(db, config=config, log=log)
    await coordinator.schedule_retry(
        hook, result, retry_count=1, max_retries=config.subscription_max_retries
    )
    return hook
