"""Tests for shop domain to account resolution."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.models.account import Account
from compliance.models.integration_hook import IntegrationHook
from compliance.services.account_resolver import AccountResolver, normalize_shop_domain


def test_normalize_appends_suffix():
    assert normalize_shop_domain("test-shop") == "test-shop.myshopify.com"


def test_normalize_is_idempotent():
    once = normalize_shop_domain("test-shop")
    assert normalize_shop_domain(once) == once
    assert normalize_shop_domain("test-shop.myshopify.com") == "test-shop.myshopify.com"


@pytest.mark.asyncio
async def test_resolves_exact_domain(db: AsyncSession, account: Account, shop_hook: IntegrationHook):
    resolved = await AccountResolver(db).resolve("test-shop.myshopify.com")
    assert resolved is not None
    assert resolved.id == account.id


@pytest.mark.asyncio
async def test_resolves_bare_shop_name_via_normalization(
    db: AsyncSession, account: Account, shop_hook: IntegrationHook
):
    resolved = await AccountResolver(db).resolve("test-shop")
    assert resolved is not None
    assert resolved.id == account.id


@pytest.mark.asyncio
async def test_exact_match_preferred_over_normalized(db: AsyncSession, account: Account):
    other = Account(name="Other Store")
    db.add(other)
    await db.commit()
    await db.refresh(other)
    db.add_all(
        [
            IntegrationHook(account_id=account.id, app_id="shopify", reference_id="legacy-shop"),
            IntegrationHook(
                account_id=other.id, app_id="shopify", reference_id="legacy-shop.myshopify.com"
            ),
        ]
    )
    await db.commit()

    resolved = await AccountResolver(db).resolve("legacy-shop")
    assert resolved.id == account.id


@pytest.mark.asyncio
@pytest.mark.parametrize("shop_domain", [None, "", "   "])
async def test_blank_domain_resolves_to_none(db: AsyncSession, shop_domain):
    assert await AccountResolver(db).resolve(shop_domain) is None


@pytest.mark.asyncio
async def test_unknown_domain_logs_diagnostics(
    db: AsyncSession, shop_hook: IntegrationHook, caplog: pytest.LogCaptureFixture
):
    caplog.set_level(logging.INFO, logger="compliance.services.account_resolver")
    assert await AccountResolver(db).resolve("missing-shop.myshopify.com") is None
    assert "No Shopify account for shop_domain=missing-shop.myshopify.com" in caplog.text
    assert "1 hooks exist" in caplog.text
    assert "test-shop.myshopify.com(enabled)" in caplog.text


@pytest.mark.asyncio
async def test_disabled_hook_not_resolved(db: AsyncSession, shop_hook: IntegrationHook):
    shop_hook.status = "disabled"
    await db.commit()
    assert await AccountResolver(db).resolve("test-shop.myshopify.com") is None


@pytest.mark.asyncio
async def test_inactive_account_not_resolved(
    db: AsyncSession, account: Account, shop_hook: IntegrationHook
):
    account.status = "suspended"
    await db.commit()
    assert await AccountResolver(db).resolve("test-shop.myshopify.com") is None


@pytest.mark.asyncio
async def test_lookup_error_is_logged_and_swallowed(
    db: AsyncSession, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
):
    resolver = AccountResolver(db)

    async def broken(shop_domain):
        raise RuntimeError("database went away")

    monkeypatch.setattr(resolver, "find_hook", broken)

    assert await resolver.resolve("test-shop.myshopify.com") is None
    assert "Account resolution failed for shop_domain=test-shop.myshopify.com" in caplog.text
    assert "database went away" in caplog.text
