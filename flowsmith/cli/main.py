"""
CLI interface for flowsmith.

Account management, estimates and workflow generation from the command line.
"""

import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from flowsmith.config.loader import PipelineConfig, load_pipeline_config
from flowsmith.core.admission import pre_check
from flowsmith.core.errors import PipelineError
from flowsmith.core.exemplars import (
    CORPUS,
    CORPUS_VERSION,
    ExemplarComplexity,
    exemplars_by_category,
    exemplars_by_complexity,
)
from flowsmith.core.ledger import Ledger, low_balance_warning
from flowsmith.core.pipeline import WorkflowPipeline
from flowsmith.core.request import GenerationRequest
from flowsmith.sdk.inference import InferenceGateway, OpenAIGateway
from flowsmith.storage.models import CreditBalance
from flowsmith.storage.repository import LedgerRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


class CLIState:
    config: PipelineConfig = PipelineConfig()


state = CLIState()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _ledger() -> Ledger:
    repository = LedgerRepository(state.config.ledger.db_path)
    return Ledger(repository, state.config.ledger)


def _build_gateway(config: PipelineConfig) -> InferenceGateway:
    return OpenAIGateway(config.gateway.model)


def _print_balance(balance: CreditBalance) -> None:
    table = Table(title=f"Credits for {balance.principal_id}")
    table.add_column("Regular", justify="right")
    table.add_column("Bonus", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Tier")
    table.add_column("Uses first")
    table.add_row(
        str(balance.regular),
        str(balance.bonus),
        str(balance.total),
        balance.tier,
        "bonus" if balance.bonus_first else "regular",
    )
    console.print(table)


def _print_failure(error: PipelineError) -> None:
    console.print(f"[red]✗ {error.stage} failed ({error.kind}):[/] {error.detail}")
    if error.ledger_entry is not None:
        console.print(f"[dim]Recorded as {error.ledger_entry.outcome.value}, "
                      f"charged {error.ledger_entry.amount} credits[/]")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a YAML pipeline configuration"
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db", help="SQLite ledger database (overrides the config)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """flowsmith CLI."""
    _configure_logging(verbose)
    try:
        config = load_pipeline_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    if db_path:
        config = dataclasses.replace(config, ledger=dataclasses.replace(config.ledger, db_path=db_path))
    state.config = config

    if ctx.invoked_subcommand is None:
        console.print("flowsmith - Use --help to see available commands")


@app.command()
def init():
    """Initialize the ledger database."""
    try:
        LedgerRepository(state.config.ledger.db_path).initialize_schema()
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("open-account")
def open_account(
    principal: str = typer.Argument(..., help="Principal (user) id"),
    allocation: int = typer.Option(..., "--allocation", "-a", help="Regular credits per period"),
    bonus: int = typer.Option(0, "--bonus", "-b", help="Initial bonus credits"),
    tier: str = typer.Option("pro", "--tier", "-t", help="Subscription tier"),
    rollover_fraction: float = typer.Option(
        0.5, "--rollover-fraction", help="Share of the allocation that may roll over"
    ),
):
    """Open a credit account for a principal."""
    try:
        balance = _ledger().open_account(
            principal, allocation, bonus=bonus, tier=tier, rollover_fraction=rollover_fraction
        )
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Opened account for {principal}")
    _print_balance(balance)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def balance(principal: str = typer.Argument(..., help="Principal (user) id")):
    """Show a principal's credit balance."""
    try:
        snapshot = _ledger().balance(principal)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    _print_balance(snapshot)
    warning = low_balance_warning(snapshot)
    if warning:
        console.print(f"[yellow]{warning}[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def estimate(
    principal: str = typer.Argument(..., help="Principal (user) id"),
    prompt: str = typer.Argument(..., help="Workflow description"),
    integration: List[str] = typer.Option([], "--integration", "-i", help="Declared integration"),
):
    """Estimate the credit cost of a request without running it."""
    try:
        request = GenerationRequest(principal_id=principal, prompt=prompt, integrations=tuple(integration))
        decision = pre_check(request, _ledger().balance(principal),
                             state.config.pricing, state.config.admission)
    except PipelineError as e:
        _print_failure(e)
        sys.exit(EXIT_CODE_FAIL)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    est = decision.estimate
    console.print(f"\n[bold]Complexity:[/] {est.tier.value} (score {est.score})")
    console.print(f"Words: {est.word_count}  Branching: {est.branching_hits}  "
                  f"Integrations mentioned: {est.integration_hits}  Apps: {est.app_count}")
    console.print(f"[bold]Estimated cost:[/] {decision.estimated_cost} credits "
                  f"(balance {decision.balance.total})")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def generate(
    principal: str = typer.Argument(..., help="Principal (user) id"),
    prompt: str = typer.Argument(..., help="Workflow description"),
    integration: List[str] = typer.Option([], "--integration", "-i", help="Declared integration"),
    workflow_type: Optional[str] = typer.Option(None, "--type", help="Workflow type hint"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the workflow JSON here"),
    instructions: Optional[Path] = typer.Option(
        None, "--instructions", help="Write the setup instructions here"
    ),
):
    """Generate a multi-module workflow and settle its cost."""
    try:
        request = GenerationRequest(
            principal_id=principal,
            prompt=prompt,
            platform=state.config.pipeline.platform,
            workflow_type=workflow_type,
            integrations=tuple(integration),
        )
        pipeline = WorkflowPipeline(_build_gateway(state.config), _ledger(), state.config)
        with console.status("Generating workflow..."):
            result = pipeline.run(request)
    except PipelineError as e:
        _print_failure(e)
        sys.exit(EXIT_CODE_FAIL)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=result.graph.name)
    table.add_column("#", justify="right")
    table.add_column("Module")
    table.add_column("Nodes", justify="right")
    for boundary in result.graph.modules:
        table.add_row(str(boundary.index + 1), boundary.name, str(len(boundary.node_ids)))
    console.print(table)

    entry = result.ledger_entry
    console.print(f"[green]✓[/] {len(result.graph.nodes)} nodes, "
                  f"{len(result.graph.connections)} connections")
    console.print(f"Estimated {result.estimated_cost} credits, charged {entry.amount} "
                  f"({entry.regular_used} regular + {entry.bonus_used} bonus), "
                  f"{result.usage.total_tokens} tokens")
    if entry.shortfall:
        console.print(f"[yellow]{entry.shortfall} credit(s) could not be collected[/]")

    if output:
        output.write_text(json.dumps(result.graph.to_payload(), indent=2), encoding="utf-8")
        console.print(f"Workflow written to {output}")
    if instructions:
        instructions.write_text(result.setup_instructions, encoding="utf-8")
        console.print(f"Setup instructions written to {instructions}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def rollover(principal: str = typer.Argument(..., help="Principal (user) id")):
    """Start a new billing period for a principal."""
    try:
        snapshot = _ledger().rollover(principal)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Rolled over to a new period")
    _print_balance(snapshot)
    sys.exit(EXIT_CODE_PASS)


@app.command("grant-bonus")
def grant_bonus(
    principal: str = typer.Argument(..., help="Principal (user) id"),
    amount: int = typer.Argument(..., help="Bonus credits to add"),
):
    """Grant one-time bonus credits."""
    try:
        snapshot = _ledger().grant_bonus(principal, amount)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Granted {amount} bonus credits")
    _print_balance(snapshot)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def prefer(
    principal: str = typer.Argument(..., help="Principal (user) id"),
    bonus_first: bool = typer.Option(
        False, "--bonus-first/--regular-first", help="Which credits settlement uses first"
    ),
):
    """Set which balance is drawn down first."""
    try:
        snapshot = _ledger().set_preference(principal, bonus_first)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    _print_balance(snapshot)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def exemplars(
    category: Optional[str] = typer.Option(None, "--category", help="Only this category"),
    complexity: Optional[str] = typer.Option(
        None, "--complexity", help="Only this complexity: simple, medium or complex"
    ),
):
    """List the reference workflows used to ground generation."""
    selected = list(CORPUS)
    if category:
        selected = exemplars_by_category(category, selected)
    if complexity:
        try:
            level = ExemplarComplexity[complexity.upper()]
        except KeyError:
            console.print(f"[red]Error:[/] Unknown complexity '{complexity}'")
            sys.exit(EXIT_CODE_FAIL)
        selected = exemplars_by_complexity(level, selected)

    if not selected:
        console.print("[dim]No matching exemplars.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Exemplar corpus {CORPUS_VERSION}")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Complexity")
    table.add_column("Nodes", justify="right")
    for exemplar in selected:
        table.add_row(
            exemplar.name,
            exemplar.category,
            exemplar.complexity.name.lower(),
            str(exemplar.node_count),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def ledger(
    principal: Optional[str] = typer.Option(None, "--principal", "-p", help="Only this principal"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum entries to show"),
):
    """List recent ledger entries, newest first."""
    entries = _ledger().entries(principal, limit)
    if not entries:
        console.print("[dim]No ledger entries yet.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Ledger")
    table.add_column("When")
    table.add_column("Principal")
    table.add_column("Request")
    table.add_column("Outcome")
    table.add_column("Charged", justify="right")
    table.add_column("Shortfall", justify="right")
    table.add_column("Detail")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.principal_id,
            entry.request_id[:8],
            entry.outcome.value,
            str(entry.amount),
            str(entry.shortfall),
            entry.detail,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
