"""Tests for the compliance operator CLI."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from compliance.cli import app
from compliance.shopify.retry import HealthReport


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def mock_session_factory():
    session = MagicMock()
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=None)
    with patch("compliance.database.async_session_factory", return_value=context) as factory:
        yield factory


REPORT = HealthReport(total=4, successful=3, pending=0, failed=1, redacted=0)


class TestHealthCommand:
    def test_health_table(self, cli_runner, mock_session_factory):
        with patch("compliance.shopify.retry.health_report", AsyncMock(return_value=REPORT)), \
             patch("compliance.services.job_svc.count_jobs_by_status", AsyncMock(return_value={"failed": 2})):
            result = cli_runner.invoke(app, ["health"])

        assert result.exit_code == 0
        assert "Compliance Webhook Health" in result.output
        assert "75.0%" in result.output
        assert "failed" in result.output

    def test_health_json(self, cli_runner, mock_session_factory):
        with patch("compliance.shopify.retry.health_report", AsyncMock(return_value=REPORT)), \
             patch("compliance.services.job_svc.count_jobs_by_status", AsyncMock(return_value={})):
            result = cli_runner.invoke(app, ["health", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["total_hooks"] == 4
        assert data["failed_subscriptions"] == 1
        assert data["success_rate"] == 75.0
        assert data["jobs"] == {}


class TestQueueCommands:
    def test_retry_subscription(self, cli_runner, mock_session_factory):
        job = MagicMock(id=12)
        with patch("compliance.services.job_svc.enqueue_job", AsyncMock(return_value=job)) as enqueue:
            result = cli_runner.invoke(app, ["retry-subscription", "7", "--max-retries", "5"])

        assert result.exit_code == 0
        assert "Queued subscription retry job 12 for hook 7" in result.output
        _, job_type, payload = enqueue.call_args.args
        assert job_type == "subscription_retry"
        assert payload == {"hook_id": 7, "retry_count": 1, "max_retries": 5}

    def test_enqueue_shop_redact(self, cli_runner, mock_session_factory):
        job = MagicMock(id=3)
        with patch("compliance.services.job_svc.enqueue_job", AsyncMock(return_value=job)) as enqueue:
            result = cli_runner.invoke(
                app, ["enqueue-shop-redact", "test-shop.myshopify.com", "--shop-id", "954889"]
            )

        assert result.exit_code == 0
        assert "Queued shop redaction job 3" in result.output
        _, job_type, payload = enqueue.call_args.args
        assert job_type == "shop_redact"
        assert payload == {"shop_domain": "test-shop.myshopify.com", "shop_id": 954889}


class TestServeCommand:
    def test_serve_runs_uvicorn(self, cli_runner):
        with patch("uvicorn.run") as run:
            result = cli_runner.invoke(app, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        run.assert_called_once_with("compliance.app:app", host="127.0.0.1", port=9000, reload=False)


class TestWorkerCommand:
    def test_disabled_worker_exits(self, cli_runner, monkeypatch):
        from compliance.config import settings

        monkeypatch.setattr(settings, "job_worker_enabled", False)
        with patch("compliance.worker.ComplianceJobWorker") as worker_cls:
            result = cli_runner.invoke(app, ["worker"])

        assert result.exit_code == 1
        assert "Job worker is disabled" in result.output
        worker_cls.assert_not_called()

    def test_once_drains_even_when_disabled(self, cli_runner, monkeypatch):
        from compliance.config import settings

        monkeypatch.setattr(settings, "job_worker_enabled", False)
        with patch("compliance.worker.ComplianceJobWorker") as worker_cls:
            worker_cls.return_value.run_until_idle = AsyncMock(return_value=2)
            result = cli_runner.invoke(app, ["worker", "--once"])

        assert result.exit_code == 0
        assert "Processed 2 job(s)" in result.output
