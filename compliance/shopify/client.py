"""Shopify Admin GraphQL client - only what compliance subscriptions need."""

from __future__ import annotations

from typing import Any

import httpx

WEBHOOK_SUBSCRIPTION_CREATE = """
mutation webhookSubscriptionCreate($topic: WebhookSubscriptionTopic!, $webhookSubscription: WebhookSubscriptionInput!) {
  webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {
    webhookSubscription {
      id
      topic
      endpoint {
        __typename
        ... on WebhookHttpEndpoint {
          callbackUrl
        }
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""


class ShopifyError(Exception):
    """Base exception for Shopify Admin API errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class ShopifyAuthError(ShopifyError):
    """Invalid or revoked access token."""

    pass


class ShopifyRateLimitError(ShopifyError):
    """Rate limit exceeded."""

    pass


class ShopifyAdminClient:
    """Minimal async client for a single shop's Admin GraphQL endpoint.

    Usage:
        async with ShopifyAdminClient("shop.myshopify.com", token) as client:
            payload = await client.create_webhook_subscription("SHOP_REDACT", url)
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str = "2024-10",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.shop_domain = shop_domain
        self.api_version = api_version
        self._client = httpx.AsyncClient(
            base_url=f"https://{shop_domain}",
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
                "User-Agent": "ComplianceWebhooks/1.0",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        await self._client.aclose()

    @property
    def graphql_path(self) -> str:
        return f"/admin/api/{self.api_version}/graphql.json"

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST a GraphQL document and return its ``data`` member."""
        try:
            response = await self._client.post(
                self.graphql_path, json={"query": query, "variables": variables or {}}
            )
        except httpx.TimeoutException as exc:
            raise ShopifyError("Request timeout") from exc

        if response.status_code == 429:
            raise ShopifyRateLimitError("HTTP 429: rate limit exceeded", status_code=429)
        if response.status_code in (401, 403):
            raise ShopifyAuthError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ShopifyError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        body = response.json()
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            if isinstance(errors, list):
                message = ", ".join(
                    str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
                )
            else:
                message = str(errors)
            raise ShopifyError(message, status_code=response.status_code, response=body)
        return (body or {}).get("data") or {}

    async def create_webhook_subscription(self, topic: str, callback_url: str) -> dict[str, Any]:
        """Create a JSON HTTP webhook subscription for ``topic`` (enum name)."""
        data = await self.graphql(
            WEBHOOK_SUBSCRIPTION_CREATE,
            {
                "topic": topic,
                "webhookSubscription": {"callbackUrl": callback_url, "format": "JSON"},
            },
        )
        return data.get("webhookSubscriptionCreate") or {}
