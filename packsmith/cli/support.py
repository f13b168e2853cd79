"""Helpers shared by CLI commands: engine construction and error output."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from packsmith.config import EngineConfig
from packsmith.core.engine import InstallEngine
from packsmith.core.errors import EngineError

console = Console()
err_console = Console(stderr=True)

INSTANCE_OPTION = typer.Option(
    Path("."),
    "--instance",
    "-i",
    help="Instance root directory (holds pack/, live/ and the engine stores).",
)


def build_engine(instance: Path) -> InstallEngine:
    return InstallEngine(instance, EngineConfig())


def fail(exc: EngineError, *, as_json: bool = False) -> None:
    """Print an engine error and exit with status 1."""
    if as_json:
        typer.echo(json.dumps(exc.to_dict(), sort_keys=True))
    else:
        lines = [f"[bold red]{exc.message}[/bold red]"]
        if exc.artifacts:
            shown = ", ".join(exc.artifacts[:10])
            more = f" (+{len(exc.artifacts) - 10} more)" if len(exc.artifacts) > 10 else ""
            lines += ["", f"[bold]Artifacts:[/bold] {shown}{more}"]
        if exc.remediation:
            lines += ["", f"[dim]{exc.remediation}[/dim]"]
        err_console.print(
            Panel(
                "\n".join(lines),
                title=f"[bold]{exc.kind.value}[/bold]",
                border_style="red",
                padding=(1, 2),
            )
        )
    raise typer.Exit(code=1)
