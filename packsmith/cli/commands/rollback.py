"""``packsmith rollback`` — restore the live tree from a snapshot."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from packsmith.cli.support import INSTANCE_OPTION, build_engine, console, fail
from packsmith.core.errors import EngineError


def rollback_cmd(
    instance: Path = INSTANCE_OPTION,
    snapshot: str = typer.Option(
        None, "--snapshot", "-s", help="Snapshot id (default: newest intact snapshot)."
    ),
) -> None:
    """Restore every live artifact that differs from a snapshot."""
    with build_engine(instance) as engine:
        try:
            result = engine.rollback(snapshot)
        except EngineError as exc:
            fail(exc)

    console.print(
        Panel(
            "\n".join([
                f"[bold green]Rolled back to {result.snapshot_id}[/bold green]",
                "",
                f"[bold]Restored:[/bold]     {result.restored_count}",
                f"[bold]Unchanged:[/bold]    {len(result.unchanged)}",
                f"[bold]Quarantined:[/bold]  {len(result.quarantined)}",
            ]),
            title="[bold]Packsmith[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
