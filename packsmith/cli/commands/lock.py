"""``packsmith lock`` — generate or explicitly regenerate ``pack/lock.json``."""

from __future__ import annotations

from pathlib import Path

import typer

from packsmith.cli.support import INSTANCE_OPTION, build_engine, console, fail
from packsmith.core.errors import ConfigError, EngineError
from packsmith.core.lockfile_store import digest_of


def lock_cmd(
    instance: Path = INSTANCE_OPTION,
    regenerate: bool = typer.Option(
        False, "--regenerate", help="Replace an existing lockfile (archived and audited)."
    ),
    reason: str = typer.Option(
        "", "--reason", "-r", help="Why the lockfile is being regenerated (required with --regenerate)."
    ),
) -> None:
    """Resolve the pinned version from pack/manifest.json and write the lockfile."""
    with build_engine(instance) as engine:
        try:
            if regenerate and not reason.strip():
                raise ConfigError(
                    "--regenerate needs --reason",
                    remediation="Say why, e.g. --reason 'upstream moved a library'.",
                )
            lockfile = engine.generate_lockfile(regenerate=regenerate, reason=reason)
        except EngineError as exc:
            fail(exc)

    verb = "Regenerated" if regenerate else "Generated"
    console.print(
        f"[bold green]{verb} lockfile[/bold green] for {lockfile.pinned_version_id}: "
        f"{len(lockfile.artifacts)} artifacts, digest {digest_of(lockfile)[:12]}"
    )
