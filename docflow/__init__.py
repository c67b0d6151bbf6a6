"""Docflow - coordination core for a staged, event-driven document pipeline.

Stages exchange small immutable events through a durable event log and move
large artifacts through a write-once blob store.
"""

__version__ = "0.1.0"
