"""
Command-line interface for ledger matching and precision search.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import MatchConfig, generate_default_config, load_config
from .matching.engine import MatchingEngine
from .models.results import MatchingSummary
from .models.partner import Partner
from .models.search import SearchEntry, SearchQueueItem, SearchScope, TriggeredBy
from .models.transaction import Transaction
from .reports.search_history import SearchHistoryReport
from .search.orchestrator import SearchQueueProcessor
from .search.queries import QueryGenerator
from .search.queue import SearchQueue
from .store import create_blob_store, repository
from .store.base import PARTNERS, SEARCH_QUEUE, TRANSACTION_SEARCHES, TRANSACTIONS
from .store.json_store import JsonFileStore
from .utils.exceptions import DocumentNotFoundError
from .utils.logging_config import setup_logging

console = Console()

data_option = click.option(
    "-d",
    "--data",
    "data_file",
    required=True,
    type=click.Path(path_type=Path),
    help="JSON document store file",
)
config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


def _prepare(config: Optional[Path], verbose: bool) -> MatchConfig:
    match_config = load_config(config)
    level = logging.DEBUG if verbose else getattr(logging, match_config.logging.level.upper(), logging.INFO)
    log_file = Path(match_config.logging.file) if match_config.logging.file else None
    setup_logging(level, log_file=log_file, log_format=match_config.logging.format)
    return match_config


def _fail(e: Exception, verbose: bool) -> None:
    console.print(f"[red]Error: {e}[/red]")
    if verbose:
        console.print_exception()
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """Ledger matching and precision receipt search."""
    pass


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


@main.command("match-partners")
@click.argument("user_id")
@data_option
@config_option
@click.option("-t", "--transaction", "transaction_ids", multiple=True, help="Limit to transaction id")
@verbose_option
def match_partners(
    user_id: str,
    data_file: Path,
    config: Optional[Path],
    transaction_ids: tuple[str, ...],
    verbose: bool,
):
    """
    Suggest and auto-apply partners for a user's transactions.

    USER_ID: Owner of the transactions
    """
    try:
        match_config = _prepare(config, verbose)
        engine = MatchingEngine(JsonFileStore(data_file), match_config)
        summary = engine.match_partners(user_id, list(transaction_ids) or None)
        _display_summary("Partner Matching", summary)
    except Exception as e:
        _fail(e, verbose)


@main.command("match-categories")
@click.argument("user_id")
@data_option
@config_option
@click.option("-t", "--transaction", "transaction_ids", multiple=True, help="Limit to transaction id")
@verbose_option
def match_categories(
    user_id: str,
    data_file: Path,
    config: Optional[Path],
    transaction_ids: tuple[str, ...],
    verbose: bool,
):
    """
    Suggest and auto-apply no-receipt categories.

    USER_ID: Owner of the transactions
    """
    try:
        match_config = _prepare(config, verbose)
        engine = MatchingEngine(JsonFileStore(data_file), match_config)
        summary = engine.match_categories(user_id, list(transaction_ids) or None)
        _display_summary("Category Matching", summary)
    except Exception as e:
        _fail(e, verbose)


@main.command("match-files")
@click.argument("user_id")
@data_option
@config_option
@click.option("-f", "--file", "file_id", help="Match a single file")
@verbose_option
def match_files(
    user_id: str, data_file: Path, config: Optional[Path], file_id: Optional[str], verbose: bool
):
    """
    Match extracted files to transactions.

    USER_ID: Owner of the files
    """
    try:
        match_config = _prepare(config, verbose)
        engine = MatchingEngine(JsonFileStore(data_file), match_config)

        if file_id:
            outcomes = engine.match_file(file_id)
            table = Table(title=f"File {file_id}")
            table.add_column("Outcome", style="cyan")
            table.add_column("Transaction")
            table.add_column("Confidence", justify="right")
            table.add_column("Sources")
            for outcome in outcomes:
                table.add_row(
                    type(outcome).__name__,
                    outcome.transaction_id,
                    str(outcome.score.confidence),
                    ", ".join(outcome.score.match_sources),
                )
            console.print(table)
            return

        _display_summary("File Matching", engine.match_pending_files(user_id))
    except Exception as e:
        _fail(e, verbose)


@main.command("enqueue-search")
@click.argument("user_id")
@data_option
@config_option
@click.option("-t", "--transaction", "transaction_id", help="Search a single transaction")
@click.option(
    "--trigger",
    type=click.Choice([t.value for t in TriggeredBy]),
    default=TriggeredBy.MANUAL.value,
    show_default=True,
)
@click.option("-s", "--strategy", "strategies", multiple=True, help="Strategy to run (repeatable)")
@verbose_option
def enqueue_search(
    user_id: str,
    data_file: Path,
    config: Optional[Path],
    transaction_id: Optional[str],
    trigger: str,
    strategies: tuple[str, ...],
    verbose: bool,
):
    """
    Queue a precision search for one or all incomplete transactions.

    USER_ID: Owner of the transactions
    """
    try:
        match_config = _prepare(config, verbose)
        queue = SearchQueue(JsonFileStore(data_file), match_config.search)
        scope = SearchScope.SINGLE_TRANSACTION if transaction_id else SearchScope.ALL_INCOMPLETE
        item = queue.enqueue(
            user_id,
            scope,
            transaction_id=transaction_id,
            triggered_by=TriggeredBy(trigger),
            strategies=list(strategies) or None,
        )
        console.print(
            f"[green]Queued search {item.id}[/green] "
            f"({item.scope.value}, {item.transactions_to_process} transactions)"
        )
    except Exception as e:
        _fail(e, verbose)


@main.command("process-queue")
@data_option
@config_option
@click.option("--max-jobs", type=int, default=None, help="Stop after this many job runs")
@click.option("--once", is_flag=True, help="Process only the oldest pending job")
@verbose_option
def process_queue(
    data_file: Path, config: Optional[Path], max_jobs: Optional[int], once: bool, verbose: bool
):
    """Process pending precision search jobs."""
    try:
        match_config = _prepare(config, verbose)
        store = JsonFileStore(data_file)
        processor = SearchQueueProcessor(
            store, match_config, blobs=create_blob_store(match_config.store)
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Processing search queue...", total=None)
            if once:
                item = processor.run_scheduled()
                processed = [item] if item else []
            else:
                processed = processor.drain(max_jobs)
            progress.update(task, completed=True)

        if not processed:
            console.print("[yellow]No pending search jobs[/yellow]")
            return
        _display_jobs(processed)
    except Exception as e:
        _fail(e, verbose)


@main.command("suggest-queries")
@click.argument("transaction_id")
@data_option
@config_option
@click.option("-n", "--max-queries", type=int, default=None, help="Number of queries")
@verbose_option
def suggest_queries(
    transaction_id: str,
    data_file: Path,
    config: Optional[Path],
    max_queries: Optional[int],
    verbose: bool,
):
    """
    Show the search queries generated for a transaction.

    TRANSACTION_ID: Transaction to generate queries for
    """
    try:
        match_config = _prepare(config, verbose)
        store = JsonFileStore(data_file)
        transaction = repository.load(store, TRANSACTIONS, Transaction, transaction_id)
        if transaction is None:
            raise DocumentNotFoundError(f"Transaction not found: {transaction_id}")
        partner = repository.load(store, PARTNERS, Partner, transaction.partner_id)

        generator = QueryGenerator(match_config.search.max_generated_queries)
        table = Table(title=f"Search queries: {transaction.name or transaction_id}")
        table.add_column("Query", style="cyan")
        table.add_column("Type")
        table.add_column("Score", justify="right")
        table.add_column("Source")
        for query in generator.generate(transaction, partner, max_queries):
            table.add_row(query.query, query.type.value, str(query.score), query.source)
        console.print(table)
    except Exception as e:
        _fail(e, verbose)


@main.command("export-history")
@data_option
@config_option
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@click.option("-u", "--user", "user_id", help="Limit to one user")
@verbose_option
def export_history(
    data_file: Path,
    config: Optional[Path],
    output: Optional[Path],
    user_id: Optional[str],
    verbose: bool,
):
    """Export search jobs and attempts to an Excel workbook."""
    try:
        match_config = _prepare(config, verbose)
        store = JsonFileStore(data_file)
        filters = [("user_id", "==", user_id)] if user_id else []
        items = repository.query_models(store, SEARCH_QUEUE, SearchQueueItem, filters, order_by="created_at")
        entries = repository.query_models(
            store, TRANSACTION_SEARCHES, SearchEntry, filters, order_by="created_at"
        )

        if output is None:
            now = datetime.now()
            output = Path(
                match_config.report.filename_template.format(
                    date=now.strftime("%Y%m%d"), time=now.strftime("%H%M%S")
                )
            )

        report_path = SearchHistoryReport(match_config).generate(items, entries, output)
        console.print(f"\n[green]Report generated: {report_path}[/green]")
    except Exception as e:
        _fail(e, verbose)


def _display_summary(title: str, summary: MatchingSummary) -> None:
    """Display a matching summary in the console."""
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Processed", str(summary.processed))
    table.add_row("Auto-applied", str(summary.auto_applied))
    table.add_row("With Suggestions", str(summary.with_suggestions))
    table.add_row("Unmatched", str(summary.unmatched))
    table.add_row("Skipped", str(summary.skipped))

    console.print(table)


def _display_jobs(items: list[SearchQueueItem]) -> None:
    """Display processed search jobs in the console."""
    table = Table(title="Search Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("With Matches", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Retries", justify="right")

    for item in items:
        table.add_row(
            item.id,
            item.status.value,
            f"{item.transactions_processed}/{item.transactions_to_process}",
            str(item.transactions_with_matches),
            str(item.total_files_connected),
            str(item.retry_count),
        )

    console.print(table)


if __name__ == "__main__":
    main()
