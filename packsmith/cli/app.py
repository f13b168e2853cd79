"""Main Typer application — imports and registers all CLI commands.

Entry point: ``packsmith`` (configured via pyproject.toml project.scripts).

Commands: install, status, rollback, repair, lock, snapshots, quarantine.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from packsmith.cli.commands.install import install_cmd
from packsmith.cli.commands.lock import lock_cmd
from packsmith.cli.commands.rollback import rollback_cmd
from packsmith.cli.commands.status import status_cmd
from packsmith.cli.support import INSTANCE_OPTION, build_engine, console, fail
from packsmith.config import EngineConfig
from packsmith.core.errors import EngineError
from packsmith.logging_config import setup_logging

app = typer.Typer(
    name="packsmith",
    help="Packsmith: deterministic, lockfile-driven install and recovery.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging from PACKSMITH_* settings before any command runs."""
    config = EngineConfig()
    setup_logging("DEBUG" if verbose else config.log_level, config.log_format)


# Register subcommands
app.command(name="install", help="Install or repair the instance from its lockfile.")(install_cmd)
app.command(name="status", help="Compare the live tree with the lockfile.")(status_cmd)
app.command(name="rollback", help="Restore the live tree from a snapshot.")(rollback_cmd)
app.command(name="lock", help="Generate or explicitly regenerate the lockfile.")(lock_cmd)


@app.command(name="repair", help="Re-verify named artifacts and re-fetch the corrupted ones.")
def repair_cmd(
    names: list[str] = typer.Argument(..., help="Artifact names from the lockfile."),
    instance: Path = INSTANCE_OPTION,
) -> None:
    """Quarantine and re-fetch only the named artifacts; siblings are not touched."""
    with build_engine(instance) as engine:
        try:
            result = engine.repair(names)
        except EngineError as exc:
            fail(exc)
    console.print(
        f"[bold green]Repaired[/bold green] {result.fetched_count} of {len(names)} artifact(s); "
        f"{result.quarantined_count} quarantined"
    )


@app.command(name="snapshots", help="List recorded snapshots.")
def snapshots_cmd(instance: Path = INSTANCE_OPTION) -> None:
    """List snapshots, newest first."""
    with build_engine(instance) as engine:
        snapshots = engine.snapshots()

    if not snapshots:
        console.print("[dim]No snapshots recorded.[/dim]")
        return

    table = Table(title="Snapshots")
    table.add_column("Id", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Created")
    table.add_column("Artifacts", justify="right")
    for snapshot in snapshots:
        table.add_row(
            snapshot.id,
            snapshot.pinned_version_id,
            snapshot.created_at.isoformat(timespec="seconds"),
            str(snapshot.artifact_count),
        )
    console.print(table)


@app.command(name="quarantine", help="List quarantined files.")
def quarantine_cmd(instance: Path = INSTANCE_OPTION) -> None:
    """List quarantine entries, oldest first. Entries are never deleted automatically."""
    with build_engine(instance) as engine:
        entries = engine.quarantine_entries()

    if not entries:
        console.print("[dim]Quarantine is empty.[/dim]")
        return

    table = Table(title="Quarantine")
    table.add_column("Entry", style="cyan")
    table.add_column("Artifact")
    table.add_column("Reason")
    table.add_column("Expected")
    table.add_column("Observed")
    for entry in entries:
        table.add_row(
            entry.entry_id,
            entry.name,
            entry.reason,
            entry.expected.prefix,
            entry.observed.prefix if entry.observed else "-",
        )
    console.print(table)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
