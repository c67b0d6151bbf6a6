"""Docflow CLI commands package.

- init: Create subjects, consumer groups and buckets
- submit: Submit a source document
- status: Reconstruct a workflow's progress
- dead_letters: List dead-lettered events
- health: Check Redis and stage tools
"""
