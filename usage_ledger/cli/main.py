"""
CLI interface for the usage ledger.

Thin front end over the ingestion pipeline: create the schema, ingest an
OTLP-JSON file, inspect a session.
"""

import json
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from usage_ledger.config.loader import IngestionConfig, load_ingestion_config
from usage_ledger.config.logger import configure_logging
from usage_ledger.core.errors import IngestionError, UsageLedgerError
from usage_ledger.core.pipeline import IngestionPipeline, IngestionResult
from usage_ledger.core.summary import PayloadSummary, summarize_payload
from usage_ledger.core.synthetic import is_synthetic_message_id
from usage_ledger.storage.repository import SQLiteTelemetryStore, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML ingestion config file"
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        "-d",
        help="SQLite database path (overrides the config file)"
    ),
):
    """Usage ledger CLI."""
    try:
        config = load_ingestion_config(config_path) if config_path else IngestionConfig()
        if db_path:
            config = IngestionConfig(
                db_path=db_path,
                default_service_name=config.default_service_name,
                synthetic_role=config.synthetic_role,
                log_level=config.log_level,
            )
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    configure_logging(config.log_level_value)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print("Usage Ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Create the sessions, messages and metrics tables."""
    config: IngestionConfig = ctx.obj
    try:
        initialize_schema(config.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def ingest(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="OTLP-JSON metrics file to ingest"),
):
    """Ingest one OTLP-JSON metrics payload from a file."""
    config: IngestionConfig = ctx.obj
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read payload:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not isinstance(payload, dict):
        console.print("[red]Payload must be a JSON object[/]")
        sys.exit(EXIT_CODE_FAIL)

    _display_summary(summarize_payload(payload))

    store = SQLiteTelemetryStore(config.db_path)
    try:
        store.initialize()
        result = IngestionPipeline(store, config).ingest(payload)
    except IngestionError as e:
        _display_result(e.result)
        for failure in e.result.failures:
            console.print(escape(f"✗ block {failure.block_index} {failure.metric_name} [{failure.stage}]: {failure.message}"), style="red")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_result(result)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def session(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session id to show"),
):
    """Show a session's totals and its messages."""
    config: IngestionConfig = ctx.obj
    store = SQLiteTelemetryStore(config.db_path)
    try:
        record = store.get_session(session_id)
        messages = store.list_session_messages(session_id) if record else []
    except UsageLedgerError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if record is None:
        console.print(f"[yellow]Session not found:[/] {session_id}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Session[/bold] {record.session_id}")
    console.print(f"User: {record.user_id or '-'} ({record.user_email or '-'})")
    console.print(f"Organization: {record.org_id or '-'}")
    console.print(f"Model: {record.model or '-'}")
    console.print(f"Total cost: {_format_currency(record.total_cost)}")
    console.print(
        f"Tokens: input {record.total_input_tokens:,}, output {record.total_output_tokens:,}, "
        f"cache read {record.total_cache_read_tokens:,}, cache creation {record.total_cache_creation_tokens:,}"
    )

    table = Table(title="Messages")
    table.add_column("Message")
    table.add_column("Role")
    table.add_column("Model")
    table.add_column("Cost", justify="right")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    for message in messages:
        label = message.message_id + (" (synthetic)" if is_synthetic_message_id(message.message_id) else "")
        table.add_row(
            escape(label),
            message.role or "-",
            message.model or "-",
            _format_currency(message.cost),
            f"{message.input_tokens:,}",
            f"{message.output_tokens:,}",
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format cost with four decimals; per-message costs are often sub-cent."""
    return f"${amount:,.4f}"


def _display_summary(summary: PayloadSummary) -> None:
    console.print("\n[bold]OTLP Payload[/bold]")
    console.print("-" * 40)
    console.print(f"Resource blocks: {summary.resource_blocks}")
    console.print(f"Data points: {summary.data_points}")
    console.print(f"Metrics: {', '.join(summary.metric_names) or '-'}")
    console.print(f"Sessions: {', '.join(summary.session_ids) or '-'}")
    console.print(f"Session cost: {_format_currency(summary.usage.cost)}")


def _display_result(result: IngestionResult) -> None:
    console.print("\n[bold]Ingestion Result[/bold]")
    console.print("-" * 40)
    console.print(f"Raw metrics recorded: {result.raw_metrics_recorded}")
    console.print(f"Message writes: {result.messages_written}")
    console.print(f"Synthetic messages: {len(result.synthetic_message_ids)}")
    if result.succeeded:
        console.print("[green]✓[/] All data points processed")


if __name__ == "__main__":
    app()
