"""
CLI interface for Eco Ledger.

Provides terminal views over a session ledger and the business-case advisor.
"""

import asyncio
import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from eco_ledger.config.loader import SessionConfig, load_session_config
from eco_ledger.core.conversion import donation_for
from eco_ledger.core.ledger import SessionLedger
from eco_ledger.core.models import ExchangeState
from eco_ledger.core.tiers import UNIT_ECONOMICS, ComputeTier
from eco_ledger.sdk.advisor import AdvisorGateway, BusinessCaseReport
from eco_ledger.sdk.gateways import ClassifierGateway, ResponseGateway

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CHAT_HELP = "Commands: /tier LOW|MEDIUM|HEAVY, /auto, /replenish N, /status, /quit"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")
):
    """Eco Ledger CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("Eco Ledger - Use --help to see available commands")


@app.command()
def tiers():
    """Show the unit economics of each compute tier."""
    table = Table(title="Compute Tiers")
    table.add_column("Tier")
    table.add_column("Label")
    table.add_column("Multiplier", justify="right")
    table.add_column("Description")
    for tier in ComputeTier:
        economics = UNIT_ECONOMICS.get(tier)
        table.add_row(tier.value, economics.label, f"{economics.multiplier}x", economics.description)
    console.print(table)


@app.command()
def quote(
    amount: int = typer.Argument(..., help="Tokens to replenish"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Session config YAML")
):
    """Show the donation a replenishment would record."""
    if amount <= 0:
        console.print("[red]Error:[/] amount must be > 0")
        sys.exit(EXIT_CODE_FAIL)
    config = _load_config(config_path)
    donation = donation_for(amount, config.session.token_price_usd)
    console.print(f"{amount:,} tokens -> {_format_currency(donation)} donated to the nature fund")


@app.command()
def chat(
    tier: Optional[ComputeTier] = typer.Option(
        None, "--tier", "-t", case_sensitive=False, help="Starting compute tier"
    ),
    manual: bool = typer.Option(False, "--manual", "-m", help="Disable auto tier classification"),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Request sent when the session starts"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Session config YAML")
):
    """Start an interactive session."""
    config = _load_config(config_path)
    try:
        ledger = build_ledger(config)
    except Exception as e:
        console.print(f"[red]Error starting session:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    if manual and ledger.auto_mode:
        ledger.toggle_auto_mode()
    ledger.start_session(tier or config.session.default_tier, prompt)

    console.print(f"[bold]Session started[/bold] ({ledger.active_tier.value}, auto={ledger.auto_mode})")
    console.print(f"[dim]{CHAT_HELP}[/]")
    asyncio.run(_chat_loop(ledger, config))
    _display_status(ledger)


@app.command()
def audit(
    description: str = typer.Argument(..., help="Business proposal to audit"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Session config YAML")
):
    """Run an eco-efficiency audit of a business proposal."""
    config = _load_config(config_path)
    try:
        advisor = AdvisorGateway(models=config.models, retry=config.retry)
        report = asyncio.run(advisor.analyze(description))
    except Exception as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    _display_report(report)


def build_ledger(config: SessionConfig) -> SessionLedger:
    """Create a ledger wired to the configured gateways."""
    return SessionLedger(
        classifier=ClassifierGateway(models=config.models, retry=config.retry),
        responder=ResponseGateway(models=config.models, retry=config.retry),
        initial_tokens=config.session.initial_tokens,
        initial_biodiversity=config.session.initial_biodiversity,
        tier=config.session.default_tier,
        auto_mode=config.session.auto_mode
    )


def _load_config(path: Optional[str]) -> SessionConfig:
    try:
        return load_session_config(path)
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


async def _chat_loop(ledger: SessionLedger, config: SessionConfig) -> None:
    if ledger.pending_initial_request:
        console.print(f"[bold cyan]you>[/] {escape(ledger.pending_initial_request)}")
        _display_result(await ledger.dispatch_pending(), ledger)

    while True:
        try:
            line = console.input("[bold cyan]you>[/] ").strip()
        except EOFError:
            return
        if not line:
            continue
        if line.startswith("/"):
            if not _handle_command(ledger, line, config):
                return
            continue
        if ledger.tokens_remaining <= 0:
            console.print("[yellow]No tokens left.[/] Use /replenish N to continue.")
            continue
        _display_result(await ledger.submit_exchange(line), ledger)


def _handle_command(ledger: SessionLedger, line: str, config: SessionConfig) -> bool:
    """Apply a slash command. Returns False when the session should end."""
    command, _, argument = line.partition(" ")
    command = command.lower()
    argument = argument.strip()

    if command in ("/quit", "/exit"):
        return False
    if command == "/status":
        _display_status(ledger)
    elif command == "/auto":
        state = "on" if ledger.toggle_auto_mode() else "off"
        console.print(f"Auto classification {state}")
    elif command == "/tier":
        try:
            tier = ComputeTier.parse(argument)
        except ValueError as e:
            console.print(f"[red]{escape(str(e))}[/]")
            return True
        if ledger.set_tier(tier):
            console.print(f"Tier set to {tier.value}")
        else:
            console.print("[yellow]Disable auto mode (/auto) before picking a tier.[/]")
    elif command == "/replenish":
        try:
            amount = int(argument)
        except ValueError:
            amount = 0
        if ledger.replenish(amount, config.session.token_price_usd):
            console.print(
                f"Added {amount:,} tokens, fund total {_format_currency(ledger.total_donated)}"
            )
        else:
            console.print("[red]Replenish amount must be a positive whole number.[/]")
    else:
        console.print(f"[dim]{CHAT_HELP}[/]")
    return True


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _display_result(result, ledger: SessionLedger) -> None:
    if result is None:
        return
    if result.status is ExchangeState.FAILED:
        console.print(f"[red]{escape(ledger.history[-1].content)}[/]")
        return
    console.print(f"[bold green]sentinel ({result.tier.value})>[/] {escape(result.reply)}")
    console.print(
        f"[dim]-{result.charged_tokens} tokens, {ledger.tokens_remaining:,} remaining[/]"
    )


def _display_status(ledger: SessionLedger) -> None:
    """Display the ledger in a clean, financial format."""
    metrics = ledger.metrics
    table = Table(title="Session Ledger", show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Tokens remaining", f"{ledger.tokens_remaining:,}")
    table.add_row("Fund", _format_currency(ledger.total_donated))
    table.add_row("Tier", f"{ledger.active_tier.value} (auto={ledger.auto_mode})")
    table.add_row("Tokens used", f"{metrics.tokens_used:,}")
    table.add_row("Energy", f"{metrics.energy_consumed_wh:.2f} Wh")
    table.add_row("Water", f"{metrics.water_used_liters:.2f} L")
    table.add_row("Cooling reserve", f"{metrics.cooling_reserve_percent:.1f}%")
    table.add_row("Biodiversity", f"{round(metrics.biodiversity_impact_score)}/100")
    table.add_row("Financial benefit", _format_currency(metrics.financial_benefit))
    console.print(table)


def _display_report(report: BusinessCaseReport) -> None:
    """Display a business-case audit."""
    metrics = report.metrics
    console.print("\n[bold]Eco-Efficiency Audit[/bold]")
    console.print("-" * 40)
    console.print(f"Planet score: {metrics.planet_score:g}%")
    console.print(f"Profit score: {metrics.profit_score:g}%")
    console.print(f"Water impact: {escape(metrics.water_impact)}")
    console.print(f"ROI factor: {escape(metrics.roi_factor)}")
    breakeven = report.temporal_breakeven
    console.print(
        f"Breakeven: {breakeven.value:g} {escape(breakeven.unit)} ({escape(breakeven.description)})"
    )
    console.print(
        f"Social impact: {report.social_impact.score:g} - {escape(report.social_impact.description)}"
    )
    if report.social_impact.pillars:
        console.print(f"Pillars: {escape(', '.join(report.social_impact.pillars))}")

    if report.roadmap:
        table = Table(title="Roadmap")
        for column in ("Stage", "Timeline", "Action", "Gains", "Losses"):
            table.add_column(column)
        for stage in report.roadmap:
            table.add_row(*(escape(cell) for cell in (
                stage.stage, stage.timeline, stage.action, stage.gains, stage.losses
            )))
        console.print(table)

    if report.particulars:
        table = Table(title="Particulars")
        for column in ("Category", "Variable", "Value", "Impact"):
            table.add_column(column)
        for item in report.particulars:
            table.add_row(*(escape(cell) for cell in (
                item.category, item.variable, item.value, item.impact
            )))
        console.print(table)

    console.print(f"\n[bold]Verdict:[/bold] {escape(report.verdict)}")


if __name__ == "__main__":
    app()
