"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin and focused.
"""
from __future__ import annotations

from typing import Mapping

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import ActiveView, BundleView, FailedView, Statistics
from .mappers import describe

_console = Console()
_err_console = Console(stderr=True)


def print_bundles(bundles: Mapping[str, BundleView]) -> None:
    """
    Print all deployments as a table, sorted by identifier.

    Failed bundles show their error in place of the domain and statistics.
    """
    if not bundles:
        _console.print("[dim]No deployments[/]")
        return

    table = Table(title=f"Deployments ({len(bundles)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Domain", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Savings", justify="right", style="yellow")

    for bundle_id in sorted(bundles):
        view = bundles[bundle_id]
        if isinstance(view, ActiveView):
            table.add_row(
                bundle_id,
                view.config.name,
                view.config.domain,
                _format_bytes(view.stats.size),
                _format_savings(view.stats),
            )
        elif isinstance(view, FailedView):
            table.add_row(bundle_id, "[red]failed[/]", f"[red]{escape(view.error)}[/]", "", "")
        else:
            raise TypeError(f"Unknown bundle view: {view!r}")

    _console.print(table)


def print_deploy_summary(bundle_id: str, view: ActiveView) -> None:
    """Print the outcome of a successful upload."""
    _console.print(f"[bold]Launched[/] {view.config.name} [dim]({bundle_id})[/]")
    _console.print(f"[bold]Domain:[/] https://{view.config.domain}")
    _console.print(f"[bold]Size:[/] {_format_bytes(view.stats.size)}")

    if not view.stats.compressed:
        return

    table = Table(title="Compression")
    table.add_column("Algorithm", style="cyan")
    table.add_column("Compressible", justify="right")
    table.add_column("Compressed", justify="right")
    table.add_column("Savings", justify="right", style="yellow")

    for algorithm, compressed in view.stats.compressed.items():
        savings = view.stats.savings(algorithm)
        table.add_row(
            algorithm.value,
            _format_bytes(view.stats.compressible),
            _format_bytes(compressed),
            f"{savings:.1%}" if savings is not None else "-",
        )
    _console.print(table)


def print_init_summary(path: str, bundle_id: str) -> None:
    typer.echo(f"Wrote {path}")
    typer.echo(f"Deployment id: {bundle_id}")


def print_deorbit_summary(bundle_id: str) -> None:
    typer.echo(f"Deorbited {bundle_id}")


def print_error(exc: BaseException) -> None:
    """Print a failure on stderr."""
    _err_console.print(f"[bold red]Error:[/] {escape(describe(exc))}")


def _format_savings(stats: Statistics) -> str:
    best = [s for s in (stats.savings(a) for a in stats.compressed) if s is not None]
    return f"{max(best):.1%}" if best else "-"


def _format_bytes(size_bytes: int) -> str:
    """
    Format byte count as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 MB", "42 B")
    """
    if size_bytes == 0:
        return "0 B"
    elif size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
