"""Typer application and command implementations."""
