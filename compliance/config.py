"""Compliance pipeline configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class ComplianceSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///compliance.db"
    echo_sql: bool = False
    app_title: str = "Shopify Compliance Webhooks"

    # Shopify app credentials
    shopify_client_secret: str = ""
    shopify_api_version: str = "2024-10"
    shopify_request_timeout_seconds: float = 30.0

    # Inbound webhooks
    webhook_max_payload_bytes: int = 1_048_576
    webhook_host: str = ""
    webhook_protocol: str = "https"
    force_ssl: bool = False

    # Topic subscription
    compliance_webhooks_enabled: bool = True
    fail_installation_on_webhook_error: bool = False
    subscription_max_retries: int = 3
    subscription_topic_max_attempts: int = 3
    subscription_initial_retry_delay_minutes: int = 5

    # Redaction
    redaction_batch_size: int = 50
    redaction_batch_pause_seconds: float = 0.5
    transaction_retention_days: int = 365 * 7

    # Job queue
    job_worker_enabled: bool = True
    job_poll_interval_seconds: float = 1.0
    data_request_timeout_seconds: int = 300
    customer_redact_timeout_seconds: int = 300
    shop_redact_timeout_seconds: int = 600
    subscription_retry_timeout_seconds: int = 300

    # Outbound email
    compliance_email_from: str = "privacy@example.com"
    sendgrid_api_key: str | None = None
    sendgrid_from_name: str | None = "Privacy Team"

    model_config = {"env_prefix": "COMPLIANCE_", "env_file": ".env", "extra": "ignore"}

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    @property
    def templates_dir(self) -> Path:
        return self.base_dir / "templates"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    @property
    def sendgrid_configured(self) -> bool:
        return bool(self.sendgrid_api_key and self.compliance_email_from)

    @property
    def webhook_protocol_resolved(self) -> str:
        if self.is_production or self.force_ssl:
            return "https"
        return (self.webhook_protocol or "https").strip().lower()


settings = ComplianceSettings()
