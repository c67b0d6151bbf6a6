"""Docflow command-line interface."""
