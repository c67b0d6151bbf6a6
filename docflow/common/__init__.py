"""Common utilities for the docflow pipeline.

This package provides reusable utilities like logging, config, tracing,
resilience and the dead-letter policy.

Note: Factory functions are available via direct import to avoid circular dependencies:
    from docflow.common.factories import make_stage_worker, make_submit_use_case
"""
