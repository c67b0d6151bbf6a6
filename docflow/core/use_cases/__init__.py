"""Core use cases - Application service orchestration.

Use cases orchestrate workflows across adapters without containing framework-specific code.
"""

from __future__ import annotations

from docflow.core.use_cases.get_workflow_status import GetWorkflowStatusUseCase
from docflow.core.use_cases.submit_document import SubmissionResult, SubmitDocumentUseCase

__all__ = ["GetWorkflowStatusUseCase", "SubmissionResult", "SubmitDocumentUseCase"]
