"""Docflow application shells.

Thin I/O layers over the docflow package:
- cli: Typer CLI
- worker: stage worker processes
"""
