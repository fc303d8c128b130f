#!/usr/bin/env python3
"""
JustCall Transcript Exporter - CLI Interface

Pulls call transcripts from JustCall for a date range and exports them as CSV.
"""
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from config import load_config, REQUIRED_ENV_VARS, OPTIONAL_ENV_VARS
from connection_strategies import build_strategies
from errors import JustCallError, AuthRejected, TransportUnavailable
from justcall_client import FetchRequest, JustCallClient
from transcript_exporter import default_export_name, display_summary, save_csv, summarize

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_dir: Path = None):
    """Setup logging configuration."""
    handlers = [RichHandler(console=console, show_path=False)]
    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"export_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(message)s',
        handlers=handlers,
        force=True,
    )


@click.group()
@click.version_option(version="1.0.0")
@click.option('--verbose', '-v', is_flag=True, help='Show diagnostic logging.')
@click.pass_context
def cli(ctx, verbose):
    """
    📞 JustCall Transcript Exporter

    Download call transcripts from JustCall for a date range and export them to CSV.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)


@cli.command()
@click.option('--strategy', 'strategies', multiple=True,
              help='Connection strategy to try (repeatable). Overrides STRATEGY_ORDER.')
def test(strategies):
    """Test API connection and credentials."""
    try:
        overrides = {'strategy_order': ','.join(strategies)} if strategies else {}
        config = load_config(**overrides)
        credentials = config.credentials()

        console.print("🔧 Testing JustCall API connection...")
        console.print(f"Strategies: {', '.join(config.strategy_names)}")

        async def run_test():
            async with JustCallClient(config) as client:
                return await client.test_connection(credentials.key, credentials.secret)

        strategy = asyncio.run(run_test())
        console.print(f"[green]✓[/green] Connected using [bold]{strategy.name}[/bold]")
        console.print("\n[bold green]✅ Credentials valid! You're ready to export transcripts.[/bold green]")

    except AuthRejected as e:
        console.print(f"\n[red]🔒 {e.message}[/red]")
        sys.exit(1)
    except TransportUnavailable as e:
        console.print(f"\n[red]🌐 {e.message}[/red]")
        console.print("Tip: a browser extension or firewall may block relays; try --strategy direct.")
        sys.exit(1)
    except (JustCallError, ValueError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        console.print("\nTip: Run 'python main.py setup' for configuration help.")
        sys.exit(1)


@cli.command()
@click.option('--start-date', help='Start date (YYYY-MM-DD). Overrides env variable.')
@click.option('--end-date', help='End date (YYYY-MM-DD). Overrides env variable.')
@click.option('--output', 'output_file', type=click.Path(dir_okay=False),
              help='CSV file to write. Defaults to a dated file in OUTPUT_DIRECTORY.')
@click.option('--page-delay', type=float, help='Seconds to wait between pages. Overrides env variable.')
@click.option('--strategy', 'strategies', multiple=True,
              help='Connection strategy to try (repeatable). Overrides STRATEGY_ORDER.')
@click.option('--log-file', is_flag=True, help='Also write a log file into the output directory.')
@click.pass_context
def download(ctx, start_date, end_date, output_file, page_delay, strategies, log_file):
    """Fetch transcripts for a date range and export them to CSV."""
    try:
        overrides = {}
        if start_date:
            overrides['download_start_date'] = start_date
        if end_date:
            overrides['download_end_date'] = end_date
        if page_delay is not None:
            overrides['page_delay'] = page_delay
        if strategies:
            overrides['strategy_order'] = ','.join(strategies)
        config = load_config(**overrides)

        if log_file:
            setup_logging(ctx.obj.get('verbose', False), config.output_path / "logs")

        request = FetchRequest(config.credentials(), config.date_range)
        target = Path(output_file) if output_file else config.output_path / default_export_name(request.date_range)

        console.print(Panel.fit("📞 JustCall Transcript Exporter", style="bold blue"))
        console.print(f"[blue]Date range: {request.date_range}[/blue]")

        result = asyncio.run(_fetch_with_progress(config, request))

        if result.no_data_in_range:
            console.print(f"[yellow]No calls found between {request.date_range}. Try a wider date range.[/yellow]")
            return

        asyncio.run(save_csv(result.records, target))
        console.print(f"\n[bold green]✅ Export completed via {result.strategy} ({result.pages} pages)[/bold green]")
        display_summary(summarize(result.records), target)

    except KeyboardInterrupt:
        console.print("\n[yellow]Export interrupted by user[/yellow]")
        sys.exit(1)
    except (JustCallError, ValueError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        sys.exit(1)


async def _fetch_with_progress(config, request: FetchRequest):
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        TextColumn("{task.completed} calls"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Fetching calls...", total=None)

        def on_progress(count: int):
            progress.update(task, completed=count)

        async with JustCallClient(config) as client:
            return await client.fetch_transcripts(request, on_progress)


@cli.command('strategies')
def list_strategies():
    """List the connection strategies that will be tried, in order."""
    try:
        config = load_config()
        table = build_strategies(config.strategy_names, config.local_relay_url)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    for position, strategy in enumerate(table, 1):
        via = strategy.endpoint or strategy.relay_template or config.justcall_base_url
        console.print(f"{position}. [bold]{strategy.name}[/bold] ({strategy.carrier.value} auth) → {via}")


@cli.command()
def setup():
    """Show credential, connection and pacing settings, with what is missing."""
    env_lines = [f"{var}=...  # {desc}" for var, desc in REQUIRED_ENV_VARS.items()]
    env_lines += [f"# {var}  {desc}" for var, desc in OPTIONAL_ENV_VARS.items()]
    console.print(Panel(
        "Put these in a .env file next to main.py or export them:\n\n" + "\n".join(env_lines)
        + "\n\nKeys live under Settings > Developers / API in JustCall.",
        title=Text("📞 JustCall setup", style="bold blue"),
        padding=(1, 2),
    ))

    try:
        config = load_config()
    except ValueError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    table = Table(title="Current settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    try:
        config.credentials()
        table.add_row("Credentials", "[green]set[/green]")
    except ValueError:
        table.add_row("Credentials", "[red]missing[/red]")
    table.add_row("Date range", f"{config.download_start_date} to {config.download_end_date}")
    table.add_row("Page size / delay", f"{config.page_size} calls / {config.page_delay}s")
    table.add_row("Max pages", str(config.max_pages or "no limit"))
    table.add_row("Strategy order", " → ".join(config.strategy_names))
    table.add_row("Local relay", config.local_relay_url)
    table.add_row("Reuse probe", "yes" if config.reuse_probe else "no")
    table.add_row("Output directory", config.output_directory)
    console.print(table)

    console.print("\nNext: [bold]python main.py test[/bold], then "
                  "[bold]python main.py download --start-date YYYY-MM-DD --end-date YYYY-MM-DD[/bold]")


if __name__ == '__main__':
    # Ensure we're using the right event loop policy on Windows
    if sys.platform.startswith('win'):
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
    cli()
