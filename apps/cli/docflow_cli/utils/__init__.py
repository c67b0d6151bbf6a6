"""CLI utilities."""

from apps.cli.docflow_cli.utils.async_wrapper import async_command

__all__ = ["async_command"]
