"""Packsmith CLI — Typer app with Rich output."""
