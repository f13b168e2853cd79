"""Packsmith CLI commands."""
