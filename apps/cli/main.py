"""Entry module exposing the CLI Typer app under ``apps.cli``."""

from __future__ import annotations

from apps.cli.docflow_cli.main import app

__all__ = ["app"]
