"""
Command-line interface for the activity funnel.

Usage:
    python -m funnel run sources.json              # Fetch and show the merged view
    python -m funnel run sources.json -n 20 --html out.html
    python -m funnel providers                     # List provider types
    python -m funnel config                        # Show current configuration
"""

import asyncio
import uuid
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .aggregator import Aggregator
from .config import get_settings
from .errors import ConfigurationError
from .logging_conf import get_logger, log_context, setup_logging
from .models import AggregationConfig, load_sources_file
from .sinks import ConsoleSink, FanOutSink, HtmlFileSink, MemorySink
from .sources import get_adapter_registry
from .templates import TemplateRenderer

console = Console()
logger = get_logger(__name__)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Output logs as JSON")
def cli(debug: bool, json_logs: bool):
    """Activity funnel CLI."""
    settings = get_settings()
    level = "DEBUG" if debug else settings.log_level
    setup_logging(level=level, json_output=json_logs or settings.log_json)


@cli.command()
@click.argument("sources_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--max-items", "-n", type=int, help="Maximum items to show (overrides the file)")
@click.option("--html", "html_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Also write the view to this HTML page")
@click.option("--templates", "templates_dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Directory with custom templates")
@click.option("--quiet", "-q", is_flag=True, help="Only show the final view")
def run(
    sources_file: Path,
    max_items: Optional[int],
    html_path: Optional[Path],
    templates_dir: Optional[Path],
    quiet: bool,
):
    """
    Fetch every source in SOURCES_FILE and show the merged view.

    The view is re-printed as each source arrives unless --quiet is given.

    Examples:
      python -m funnel run sources.json
      python -m funnel run sources.json -n 5 --html feed.html
    """
    run_id = uuid.uuid4().hex[:8]
    with log_context(run_id=run_id):
        _run_sources(run_id, sources_file, max_items, html_path, templates_dir, quiet)


def _pick_max_items(*candidates: Optional[int]) -> Optional[int]:
    """Return the first cap that was set. Zero counts as set."""
    for value in candidates:
        if value is not None:
            return value
    return None


def _run_sources(
    run_id: str,
    sources_file: Path,
    max_items: Optional[int],
    html_path: Optional[Path],
    templates_dir: Optional[Path],
    quiet: bool,
) -> None:
    settings = get_settings()

    renderer = TemplateRenderer(templates_dir=templates_dir or settings.templates_dir)
    memory = MemorySink()
    sinks = [memory]
    if not quiet:
        sinks.append(ConsoleSink(console))
    if html_path:
        sinks.append(HtmlFileSink(html_path, renderer=renderer))

    settled_events = []

    try:
        requests, file_max_items = load_sources_file(sources_file)
        config = AggregationConfig(
            sources=requests,
            max_items=_pick_max_items(max_items, file_max_items, settings.max_items),
            on_settled=lambda: settled_events.append(run_id),
        )
        aggregator = Aggregator(sink=FanOutSink(*sinks), renderer=renderer)
        console.print(Panel(f"[bold green]Funneling {len(config.sources)} sources[/bold green] (run {run_id})"))
        view = asyncio.run(aggregator.run(config))
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error: {e}[/bold red]")
        raise click.Abort()

    if quiet:
        ConsoleSink(console).replace(view)

    table = Table(title="Run Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("run_id", run_id)
    table.add_row("sources", str(len(config.sources)))
    table.add_row("sources_failed", str(len(aggregator.failures)))
    table.add_row("items_accumulated", str(len(aggregator.items)))
    table.add_row("items_shown", str(len(view)))
    table.add_row("renders", str(memory.calls))
    console.print(table)

    for failure in aggregator.failures:
        console.print(f"  [red]- {failure}[/red]")

    if html_path:
        console.print(f"HTML written to [bold]{html_path}[/bold]")

    if settled_events:
        console.print("\n[bold green]All sources settled.[/bold green]")


@cli.command()
def providers():
    """List registered provider types."""
    registry = get_adapter_registry()

    table = Table(title="Providers")
    table.add_column("Type", style="cyan")
    table.add_column("Adapter", style="green")
    table.add_column("Required params", style="yellow")

    for provider_type in registry.provider_types():
        adapter = registry.resolve(provider_type)
        table.add_row(
            provider_type,
            type(adapter).__name__,
            ", ".join(adapter.required_params) or "-",
        )

    console.print(table)


@cli.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    console.print(Panel("[bold blue]Current Configuration[/bold blue]"))

    console.print("\n[cyan]Aggregation:[/cyan]")
    console.print(f"  max_items:              {settings.max_items}")
    console.print(f"  max_concurrent_fetches: {settings.max_concurrent_fetches}")

    console.print("\n[cyan]Transport:[/cyan]")
    console.print(f"  fetch_timeout:     {settings.fetch_timeout}")
    console.print(f"  fetch_attempts:    {settings.fetch_attempts}")
    console.print(f"  user_agent:        {settings.user_agent}")
    console.print(f"  twitter_api_url:   {settings.twitter_api_url}")
    console.print(f"  delicious_api_url: {settings.delicious_api_url}")

    console.print("\n[cyan]Templates & Logging:[/cyan]")
    console.print(f"  templates_dir: {settings.templates_dir or '(built-in only)'}")
    console.print(f"  log_level:     {settings.log_level}")
    console.print(f"  log_json:      {settings.log_json}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
