"""Compliance CLI - operator commands for the webhook pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="compliance",
    help="Shopify compliance webhook pipeline",
    no_args_is_help=True,
)
console = Console()


def _output_result(result: dict[str, Any], json_output: bool = False) -> None:
    if json_output:
        console.print_json(json.dumps(result, default=str))
    else:
        console.print_json(json.dumps(result, default=str, indent=2))


@app.command("health")
def health(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show compliance webhook subscription health across all shops."""
    from .database import async_session_factory
    from .services.job_svc import count_jobs_by_status
    from .shopify.retry import health_report

    async def _report():
        async with async_session_factory() as db:
            report = await health_report(db)
            return report.as_dict(), await count_jobs_by_status(db)

    report, jobs = asyncio.run(_report())
    if json_output:
        _output_result({**report, "jobs": jobs}, json_output=True)
        return

    table = Table(title="Compliance Webhook Health")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total hooks", str(report["total_hooks"]))
    table.add_row("Subscribed", f"[green]{report['successful_subscriptions']}[/green]")
    table.add_row("Pending", f"[yellow]{report['pending_subscriptions']}[/yellow]")
    table.add_row("Manual intervention", f"[red]{report['failed_subscriptions']}[/red]")
    table.add_row("Redacted", str(report["redacted_hooks"]))
    table.add_row("Success rate", f"{report['success_rate']}%")
    console.print(table)

    if jobs:
        job_table = Table(title="Jobs")
        job_table.add_column("Status", style="cyan")
        job_table.add_column("Count", justify="right")
        for status, count in sorted(jobs.items()):
            job_table.add_row(status, str(count))
        console.print(job_table)


@app.command("retry-subscription")
def retry_subscription(
    hook_id: int = typer.Argument(..., help="Integration hook ID"),
    max_retries: int = typer.Option(None, "--max-retries", help="Override retry ceiling"),
):
    """Queue a fresh subscription retry cycle for one hook."""
    from .database import async_session_factory
    from .jobs.policies import JOB_SUBSCRIPTION_RETRY
    from .services.job_svc import enqueue_job

    async def _queue():
        async with async_session_factory() as db:
            payload: dict[str, Any] = {"hook_id": hook_id, "retry_count": 1}
            if max_retries:
                payload["max_retries"] = max_retries
            return await enqueue_job(db, JOB_SUBSCRIPTION_RETRY, payload)

    job = asyncio.run(_queue())
    console.print(f"[green]Queued subscription retry job {job.id} for hook {hook_id}[/green]")


@app.command("install")
def install(
    account_id: int = typer.Option(..., "--account", "-a", help="Account ID"),
    shop_domain: str = typer.Option(..., "--shop", "-s", help="Shop domain"),
    access_token: str = typer.Option(..., "--token", "-t", help="Admin API access token"),
    scope: str = typer.Option("", "--scope", help="Granted OAuth scopes"),
):
    """Record a completed installation and subscribe the compliance topics."""
    from .database import async_session_factory
    from .models.account import Account
    from .services.install_svc import InstallationError, install_shop

    async def _install():
        async with async_session_factory() as db:
            account = await db.get(Account, account_id)
            if account is None:
                raise typer.BadParameter(f"Account {account_id} not found")
            hook = await install_shop(
                db, account, shop_domain=shop_domain, access_token=access_token, scope=scope or None
            )
            return hook.id, dict(hook.settings or {})

    try:
        hook_id, hook_settings = asyncio.run(_install())
    except InstallationError as exc:
        console.print(f"[red]Installation failed: {exc}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Hook {hook_id} installed for {shop_domain}[/green]")
    _output_result(hook_settings)


@app.command("enqueue-shop-redact")
def enqueue_shop_redact(
    shop_domain: str = typer.Argument(..., help="Shop domain"),
    shop_id: int = typer.Option(None, "--shop-id", help="Shopify shop ID"),
):
    """Queue a shop-wide redaction, as the shop/redact webhook would."""
    from .database import async_session_factory
    from .jobs.policies import JOB_SHOP_REDACT
    from .services.job_svc import enqueue_job

    async def _queue():
        async with async_session_factory() as db:
            return await enqueue_job(
                db, JOB_SHOP_REDACT, {"shop_domain": shop_domain, "shop_id": shop_id}
            )

    job = asyncio.run(_queue())
    console.print(f"[green]Queued shop redaction job {job.id} for {shop_domain}[/green]")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind host"),
    port: int = typer.Option(8030, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Launch the compliance webhook API."""
    import uvicorn

    console.print(f"[bold cyan]Starting compliance webhooks at http://{host}:{port}[/bold cyan]")
    uvicorn.run("compliance.app:app", host=host, port=port, reload=reload)


@app.command("worker")
def worker(
    once: bool = typer.Option(False, "--once", help="Drain runnable jobs and exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run the compliance job worker."""
    from .config import settings
    from .worker import ComplianceJobWorker

    if not once and not settings.job_worker_enabled:
        console.print(
            "[yellow]Job worker is disabled (COMPLIANCE_JOB_WORKER_ENABLED=false); "
            "use --once to drain the queue manually[/yellow]"
        )
        raise typer.Exit(1)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    job_runner = ComplianceJobWorker()

    async def _run():
        if once:
            return await job_runner.run_until_idle()
        job_runner.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await job_runner.stop()

    try:
        processed = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[dim]Worker stopped[/dim]")
        return
    console.print(f"[green]Processed {processed} job(s)[/green]")


if __name__ == "__main__":
    app()
