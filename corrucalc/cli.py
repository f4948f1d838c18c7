"""CorruCalc CLI.

Commands:
- init: Initialize database schema
- seed-pricing: Activate the reference pricing if no configuration is active
- activate-pricing: Append a new pricing version from a JSON file
- pricing-history: List pricing versions
- create-api-key: Issue a public API key (shown once)
- sessions: List recent WhatsApp conversations
- quote: Price boxes locally and print the breakdown
- web serve: Run the API with uvicorn
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from corrucalc.config import get_config
from corrucalc.conversation.session_store import SessionStore
from corrucalc.db.connection import close_db, get_engine, get_session
from corrucalc.db.models import Base
from corrucalc.exceptions import ConfigUnavailable, CorruCalcError
from corrucalc.models import BoxSpec
from corrucalc.pricing.assembler import QuoteAssembler
from corrucalc.pricing.config_source import (
    CONFIG_FIELDS,
    FALLBACK_PRICING,
    PricingConfigRepository,
)
from corrucalc.utils.formatting import format_ars, format_m2, format_quantity
from corrucalc.web.api_keys import DatabaseCredentialStore

app = typer.Typer(
    name="corrucalc",
    help="CorruCalc - Corrugated box quoting engine",
    no_args_is_help=True,
)

web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")

console = Console()


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        engine = get_engine()
        async with engine.begin() as conn:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
                await conn.run_sync(Base.metadata.drop_all)
            console.print("[green]Creating tables...[/green]")
            await conn.run_sync(Base.metadata.create_all)
        await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="seed-pricing")
def seed_pricing():
    """Activate the reference pricing when no configuration is active."""
    repo = PricingConfigRepository()

    async def _seed():
        try:
            current = await repo.get_active()
            return current, False
        except ConfigUnavailable:
            values = {name: getattr(FALLBACK_PRICING, name) for name in CONFIG_FIELDS}
            return await repo.activate(values), True
        finally:
            await close_db()

    snapshot, created = asyncio.run(_seed())
    if created:
        console.print(f"[bold green]✓[/bold green] Reference pricing activated (id={snapshot.id})")
    else:
        console.print(f"[yellow]⚠[/yellow] Pricing already active (id={snapshot.id}), nothing to do")


@app.command(name="activate-pricing")
def activate_pricing(
    file: Path = typer.Argument(..., help="JSON file with pricing fields"),
):
    """Append a new pricing version and deactivate the previous one."""
    values = json.loads(file.read_text(encoding="utf-8"))
    unknown = sorted(set(values) - set(CONFIG_FIELDS))
    if unknown:
        console.print(f"[red]✗[/red] Unknown fields: {', '.join(unknown)}")
        raise typer.Exit(1)

    async def _activate():
        try:
            return await PricingConfigRepository().activate(values)
        finally:
            await close_db()

    try:
        snapshot = asyncio.run(_activate())
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[bold green]✓[/bold green] Pricing activated (id={snapshot.id}, from {snapshot.valid_from})")


@app.command(name="pricing-history")
def pricing_history(limit: int = typer.Option(10, help="Number of versions")):
    """List pricing versions, newest first."""

    async def _history():
        try:
            return await PricingConfigRepository().history(limit)
        finally:
            await close_db()

    table = Table(title="Pricing versions")
    table.add_column("Valid from")
    table.add_column("Valid until")
    table.add_column("Standard $/m²", justify="right")
    table.add_column("Volume $/m²", justify="right")
    table.add_column("Volume from m²", justify="right")
    table.add_column("Active")
    for snapshot in asyncio.run(_history()):
        table.add_row(
            str(snapshot.valid_from),
            str(snapshot.valid_until or "-"),
            format_ars(snapshot.price_per_m2_standard),
            format_ars(snapshot.price_per_m2_volume),
            format_m2(snapshot.volume_threshold_m2),
            "[green]yes[/green]" if snapshot.is_active else "no",
        )
    console.print(table)


@app.command(name="create-api-key")
def create_api_key(
    name: str = typer.Argument(..., help="Client or integration name"),
    rate_limit: int = typer.Option(100, "--rate-limit", help="Requests per minute"),
    email: str | None = typer.Option(None, "--email", help="Owner email"),
    company: str | None = typer.Option(None, "--company", help="Owner company"),
):
    """Issue a public API key. The raw key is printed once and never stored."""

    async def _create():
        try:
            return await DatabaseCredentialStore().create(
                name, rate_limit_per_minute=rate_limit, owner_email=email, owner_company=company
            )
        finally:
            await close_db()

    try:
        raw_key, row = asyncio.run(_create())
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1) from None

    console.print(f"[bold green]✓[/bold green] API key created for {row.name} ({rate_limit} req/min)")
    console.print(f"  Key: [bold]{raw_key}[/bold]")
    console.print("  [yellow]Store it now: it cannot be shown again.[/yellow]")


@app.command()
def sessions(
    limit: int = typer.Option(20, help="Number of conversations"),
    advisor: bool = typer.Option(False, "--advisor", help="Only conversations waiting for an advisor"),
):
    """List recent WhatsApp conversations, newest first."""

    async def _recent():
        try:
            return await SessionStore(get_session).recent(limit)
        finally:
            await close_db()

    rows = asyncio.run(_recent())
    if advisor:
        rows = [s for s in rows if s.needs_advisor and not s.attended]

    table = Table(title="Conversations")
    table.add_column("Address")
    table.add_column("Step")
    table.add_column("Client")
    table.add_column("Last quote", justify="right")
    table.add_column("Advisor")
    table.add_column("Last message")
    for session in rows:
        client = " / ".join(filter(None, (session.company_name, session.client_name))) or "-"
        table.add_row(
            session.address,
            session.step.value,
            client,
            format_ars(session.last_quote.subtotal) if session.last_quote else "-",
            "[yellow]pending[/yellow]" if session.needs_advisor and not session.attended else "-",
            session.last_interaction.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def _parse_box(spec: str) -> BoxSpec:
    """'400x300x200:1000' or '400x300x200:1000:2' (colors)."""
    try:
        dims, _, rest = spec.partition(":")
        length, width, height = (int(v) for v in dims.lower().split("x"))
        parts = rest.split(":") if rest else []
        quantity = int(parts[0]) if parts else 1
        colors = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        raise typer.BadParameter(f"Invalid box '{spec}', expected LxWxH:QTY[:COLORS]") from None
    return BoxSpec(
        length_mm=length,
        width_mm=width,
        height_mm=height,
        quantity=quantity,
        has_printing=colors > 0,
        printing_colors=colors,
    )


@app.command()
def quote(
    boxes: list[str] = typer.Argument(..., help="Boxes as LxWxH:QTY[:COLORS]"),
    strict: bool = typer.Option(True, "--strict/--assisted", help="Reject orders below the floor"),
    reference: bool = typer.Option(False, "--reference", help="Use reference pricing, skip the database"),
):
    """Price boxes and print the breakdown."""
    specs = [_parse_box(spec) for spec in boxes]
    config = get_config()

    async def _config():
        if reference:
            return FALLBACK_PRICING
        try:
            return await PricingConfigRepository().get_active_or_fallback()
        finally:
            await close_db()

    pricing = asyncio.run(_config())
    assembler = QuoteAssembler(currency=config.quote.currency, max_lines=config.quote.max_lines)
    try:
        result = assembler.assemble(specs, pricing, strict=strict)
    except CorruCalcError as e:
        console.print(f"[red]✗[/red] {e}")
        for error in getattr(e, "errors", []):
            console.print(f"  {error}", style="dim")
        raise typer.Exit(1) from None

    table = Table(title=f"Quote ({result.currency})")
    table.add_column("Box")
    table.add_column("Sheet (mm)")
    table.add_column("Qty", justify="right")
    table.add_column("m²", justify="right")
    table.add_column("$/m²", justify="right")
    table.add_column("Unit", justify="right")
    table.add_column("Subtotal", justify="right")
    for line in result.boxes:
        table.add_row(
            f"{line.length_mm}x{line.width_mm}x{line.height_mm}"
            + (f" ({line.printing_colors}c)" if line.printing_colors else ""),
            f"{line.sheet_width_mm}x{line.sheet_length_mm}",
            format_quantity(line.quantity),
            format_m2(line.total_sqm),
            format_ars(line.price_per_m2),
            format_ars(line.unit_price),
            format_ars(line.subtotal),
        )
    console.print(table)
    console.print(f"[bold]Total m²:[/bold] {format_m2(result.total_m2)}")
    console.print(f"[bold]Subtotal:[/bold] {format_ars(result.subtotal)}")
    console.print(f"Production: {result.estimated_days} business days, valid until {result.valid_until}")
    for warning in result.warnings:
        console.print(f"[yellow]⚠[/yellow] {warning}")


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the CorruCalc API."""
    import uvicorn

    typer.echo(f"Starting CorruCalc API on http://{host}:{port}")
    uvicorn.run("corrucalc.web.app:create_app", factory=True, host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
