"""Main CLI entry point for printwatch."""

import click
from rich.console import Console
from rich.table import Table

from printwatch import __version__
from printwatch.cli.replay import replay

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="printwatch")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """printwatch - real-time 3D print failure detection.

    Fuses printer telemetry, sensor readings and structural risk data
    into a failure-risk score and a print quality grade.
    """
    from printwatch.config import get_settings
    from printwatch.utils import setup_logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging("DEBUG" if verbose else get_settings().log_level)


cli.add_command(replay)


@cli.command()
@click.argument("score", type=float)
def grade(score: float) -> None:
    """Show the quality grade for a 0-100 score.

    Example: printwatch grade 87.5
    """
    from printwatch.monitoring import get_quality_grade

    if not 0 <= score <= 100:
        console.print(f"[red]Error: score must be between 0 and 100, got {score}[/red]")
        raise SystemExit(1)

    console.print(f"{score:g} -> [bold]{get_quality_grade(score).value}[/bold]")


@cli.command()
def config() -> None:
    """Show the active monitoring configuration."""
    from printwatch.config import get_settings

    settings = get_settings()

    console.print("[bold]printwatch Configuration[/bold]")
    console.print(f"Version: {__version__}")
    console.print()

    table = Table(show_header=True)
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":
    cli()
