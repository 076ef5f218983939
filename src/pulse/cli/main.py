"""Pulse Insights CLI — run insight jobs locally or inspect a running server."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx
import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pulse.config import get_config
from pulse.db.engine import Database
from pulse.insights.gateway import InsightGateway
from pulse.insights.models import ContactSummaryRequest, DigestRequest, NextStepRequest
from pulse.logging import setup_logging

app = typer.Typer(
    name="pulse-insights",
    help="Pulse Insights — AI digests and suggestions for Pulse CRM",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"


def _load_payload(path: Path, model: type[BaseModel]) -> Any:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read payload:[/red] {e}")
        raise typer.Exit(1)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        console.print(f"[red]Invalid payload:[/red]\n{e}")
        raise typer.Exit(1)


async def _run_job(job: str, payload: Any) -> BaseModel:
    config = get_config()
    db = None
    if config.ai_log.database_path and not config.ai_log.rest_enabled:
        db = Database(config.ai_log.database_path)
        await db.initialize()
    try:
        gateway = InsightGateway.from_config(config, db=db)
        if job == "digest":
            return await gateway.generate_digest(payload)
        if job == "next-step":
            return await gateway.generate_next_step(payload)
        return await gateway.generate_contact_summary(payload)
    finally:
        if db is not None:
            await db.close()


def _render(title: str, result: BaseModel, raw: bool) -> None:
    data = result.model_dump(by_alias=True)
    if raw:
        console.print_json(json.dumps(data, ensure_ascii=False))
        return

    border = "yellow" if data.get("usedFallback") else "green"
    console.print()
    console.print(Panel(data.get("content") or "", title=title, border_style=border))
    meta = f"provider: {data.get('provider')}"
    if data.get("error"):
        meta += f"  │  error: {data['error']}"
    console.print(f"[dim]{meta}[/dim]")
    console.print()


def _quiet_logging(verbose: bool) -> None:
    config = get_config()
    setup_logging(level=config.log_level if verbose else "WARNING", fmt="console")


@app.command()
def digest(
    payload_file: Path = typer.Argument(..., help="JSON file with a digest request"),
    raw: bool = typer.Option(False, "--json", help="Output raw JSON result"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Generate a pipeline digest from a payload file."""
    _quiet_logging(verbose)
    payload = _load_payload(payload_file, DigestRequest)
    _render("Digest", asyncio.run(_run_job("digest", payload)), raw)


@app.command("next-step")
def next_step(
    payload_file: Path = typer.Argument(..., help="JSON file with a next-step request"),
    raw: bool = typer.Option(False, "--json", help="Output raw JSON result"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Suggest the next step for a deal."""
    _quiet_logging(verbose)
    payload = _load_payload(payload_file, NextStepRequest)
    _render("Next step", asyncio.run(_run_job("next-step", payload)), raw)


@app.command("contact-summary")
def contact_summary(
    payload_file: Path = typer.Argument(..., help="JSON file with a contact summary request"),
    raw: bool = typer.Option(False, "--json", help="Output raw JSON result"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Summarize a contact."""
    _quiet_logging(verbose)
    payload = _load_payload(payload_file, ContactSummaryRequest)
    _render("Contact summary", asyncio.run(_run_job("contact-summary", payload)), raw)


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="PULSE_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="PULSE_API_KEY"),
) -> None:
    """Check a running server's status."""
    headers = {"X-API-Key": api_key} if api_key else {}
    try:
        resp = httpx.get(f"{base_url.rstrip('/')}/health", headers=headers, timeout=10.0)
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Pulse Insights is not running at {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]Error {e.response.status_code}:[/red] {e.response.text}")
        raise typer.Exit(1)

    data = resp.json()

    table = Table(title="Pulse Insights Status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Status", f"[green]{data['status']}[/green]")
    table.add_row("Version", data.get("version", "?"))
    table.add_row("Uptime", f"{data.get('uptime_seconds', '?')}s")
    table.add_row("Model", data.get("model", "?"))
    table.add_row("AI enabled", "yes" if data.get("ai_enabled") else "[yellow]no (fallback only)[/yellow]")

    stats = data.get("llm_stats") or {}
    table.add_row("Requests", str(stats.get("request_count", 0)))
    table.add_row("Tokens Used", str(stats.get("total_tokens", 0)))

    cache = data.get("digest_cache") or {}
    table.add_row("Digest cache", f"{cache.get('entries', 0)} entries, ttl {cache.get('ttl_seconds', 0)}s")

    console.print()
    console.print(table)
    console.print()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the Pulse Insights server (for development)."""
    import uvicorn

    console.print(Panel("Starting Pulse Insights server...", border_style="blue"))
    uvicorn.run(
        "pulse.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show Pulse Insights version."""
    from pulse import __version__

    console.print(f"Pulse Insights v{__version__}")


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
