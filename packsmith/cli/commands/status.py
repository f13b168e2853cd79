"""``packsmith status`` — compare the live tree with the lockfile (read-only)."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.table import Table

from packsmith.cli.support import INSTANCE_OPTION, build_engine, console, fail
from packsmith.core.errors import EngineError
from packsmith.models.plan import ArtifactState

_STATE_STYLE = {
    ArtifactState.SATISFIED: "green",
    ArtifactState.MISSING: "yellow",
    ArtifactState.CHECKSUM_MISMATCH: "red",
    ArtifactState.UNSUPPORTED_KIND: "magenta",
}


def status_cmd(
    instance: Path = INSTANCE_OPTION,
    show_all: bool = typer.Option(
        False, "--all", "-a", help="List satisfied artifacts too."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON."),
) -> None:
    """Show which artifacts are satisfied, missing or corrupted."""
    with build_engine(instance) as engine:
        try:
            report = engine.status()
        except EngineError as exc:
            fail(exc, as_json=as_json)

    if as_json:
        typer.echo(json.dumps(
            {"pinnedVersionId": report.pinned_version_id, "summary": report.summary()},
            sort_keys=True,
        ))
        return

    table = Table(title=f"Status: {report.pinned_version_id}")
    table.add_column("Artifact", style="cyan")
    table.add_column("Kind")
    table.add_column("State")
    for inspection in report.artifacts:
        if inspection.state is ArtifactState.SATISFIED and not show_all:
            continue
        style = _STATE_STYLE[inspection.state]
        table.add_row(
            inspection.artifact.name,
            inspection.artifact.kind,
            f"[{style}]{inspection.state.value}[/{style}]",
        )
    if table.row_count:
        console.print(table)
    summary = ", ".join(f"{k}={v}" for k, v in report.summary().items())
    console.print(f"[bold]{summary}[/bold]")
    if not report.is_satisfied:
        raise typer.Exit(code=2)
