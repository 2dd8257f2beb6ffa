"""
Rich CLI interface for quotaguard.

Dispatches ad-hoc GET requests through the rate limiter and shows settings.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from quotaguard import __version__
from quotaguard.core.config import get_settings
from quotaguard.core.errors import DispatchError
from quotaguard.queue.dispatcher import DispatchStats, RequestDispatcher
from quotaguard.queue.rate_limiter import RateLimiter
from quotaguard.utils.logging import setup_logging

app = typer.Typer(
    name="quotaguard",
    help="Rate-limited, serialized request dispatcher for quota-constrained APIs",
    no_args_is_help=True,
)
console = Console()


def get_dispatcher() -> RequestDispatcher:
    """Get dispatcher instance."""
    settings = get_settings()
    return RequestDispatcher(
        rate_limiter=RateLimiter(settings.limiter),
        settings=settings.dispatcher,
    )


def _stats_table(stats: DispatchStats) -> Table:
    table = Table(title="Dispatch Statistics", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in stats.to_dict().items():
        if key == "errors":
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "-"
        table.add_row(key, str(value))
    return table


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]quotaguard[/bold cyan] v{__version__}")


@app.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for name, value in settings.limiter.model_dump().items():
        table.add_row(f"limiter.{name}", str(value))
    for name, value in settings.dispatcher.model_dump().items():
        table.add_row(f"dispatcher.{name}", str(value))
    table.add_row("log_level", settings.log_level)
    table.add_row("log_format", settings.log_format)

    console.print(table)


@app.command()
def fetch(
    urls: list[str] = typer.Argument(..., help="URLs to fetch, dispatched in order"),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", "-k", envvar="QUOTAGUARD_API_KEY", help="API key sent with each request"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Give up on a request after this many seconds"
    ),
    raw: bool = typer.Option(False, "--raw", help="Print compact JSON without panels"),
):
    """Fetch one or more URLs through the rate-limited dispatcher."""
    setup_logging()

    async def run() -> tuple[list[Any], DispatchStats]:
        async with get_dispatcher() as dispatcher:
            results = await asyncio.gather(
                *(dispatcher.fetch_data(url, api_key, timeout=timeout) for url in urls),
                return_exceptions=True,
            )
            return results, dispatcher.get_stats()

    results, stats = asyncio.run(run())

    failed = False
    for url, result in zip(urls, results):
        if isinstance(result, DispatchError):
            failed = True
            console.print(f"[red]{url}: {result}[/red]")
        elif isinstance(result, BaseException):
            raise result
        elif raw:
            console.print(json.dumps(result), soft_wrap=True, markup=False, highlight=False)
        else:
            console.print(Panel(
                Syntax(json.dumps(result, indent=2), "json", theme="monokai"),
                title=url,
                border_style="cyan",
            ))

    if not raw:
        console.print(_stats_table(stats))

    if failed:
        raise typer.Exit(code=1)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
