"""``packsmith install`` — bring the live tree to the lockfile.

Loads ``pack/lock.json`` (generating it from ``pack/manifest.json`` on the
first run), then stages, verifies and promotes whatever is missing or
corrupted.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.panel import Panel

from packsmith.cli.support import INSTANCE_OPTION, build_engine, console, fail
from packsmith.core.errors import EngineError


def install_cmd(
    instance: Path = INSTANCE_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Install or repair the instance so it matches its lockfile."""
    with build_engine(instance) as engine:
        try:
            result = engine.install()
        except EngineError as exc:
            fail(exc, as_json=as_json)

    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), sort_keys=True))
        return

    lines = [
        f"[bold green]{result.pinned_version_id} is installed.[/bold green]",
        "",
        f"[bold]Satisfied:[/bold]    {result.satisfied_count}",
        f"[bold]Fetched:[/bold]      {result.fetched_count}",
        f"[bold]Resumed:[/bold]      {result.resumed_count}",
        f"[bold]Quarantined:[/bold]  {result.quarantined_count}",
        f"[bold]Recovery:[/bold]     {result.recovery_state.value}",
    ]
    if result.snapshot_id:
        lines.append(f"[bold]Snapshot:[/bold]     {result.snapshot_id}")
    if result.rolled_back_to:
        lines += ["", f"[yellow]Rolled back to snapshot {result.rolled_back_to}.[/yellow]"]
    console.print(
        Panel("\n".join(lines), title="[bold]Packsmith[/bold]", border_style="green", padding=(1, 2))
    )
