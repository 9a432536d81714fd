"""Mandatory Shopify compliance topics and their wire names."""

from __future__ import annotations

CUSTOMERS_DATA_REQUEST = "customers/data_request"
CUSTOMERS_REDACT = "customers/redact"
SHOP_REDACT = "shop/redact"

MANDATORY_TOPICS: tuple[str, ...] = (CUSTOMERS_DATA_REQUEST, CUSTOMERS_REDACT, SHOP_REDACT)

# Local callback path segment under /webhooks/
TOPIC_PATHS: dict[str, str] = {
    CUSTOMERS_DATA_REQUEST: "customers_data_request",
    CUSTOMERS_REDACT: "customers_redact",
    SHOP_REDACT: "shop_redact",
}

# WebhookSubscriptionTopic GraphQL enum values
TOPIC_ENUMS: dict[str, str] = {
    CUSTOMERS_DATA_REQUEST: "CUSTOMERS_DATA_REQUEST",
    CUSTOMERS_REDACT: "CUSTOMERS_REDACT",
    SHOP_REDACT: "SHOP_REDACT",
}
