"""GetWorkflowStatusUseCase - Reconstruct a workflow's progress from the log.

Replays the retained history of every pipeline subject and folds the events
of one workflow into a ``WorkflowStatus``. Dead-lettered entries of the
workflow are reported alongside so operators see where it got stuck.
"""

import logging

from docflow.common.config import Subjects
from docflow.common.dlq import DeadLetterRecord
from docflow.core.ports.event_log import EventLog
from docflow.pipeline.correlation import WorkflowStatus, WorkflowTracker

logger = logging.getLogger(__name__)


class GetWorkflowStatusUseCase:
    """Use case for inspecting one workflow."""

    def __init__(self, event_log: EventLog, subjects: Subjects) -> None:
        self.event_log = event_log
        self.subjects = subjects

    async def execute(self, workflow_id: str) -> tuple[WorkflowStatus, list[DeadLetterRecord]]:
        """Return the workflow's status and its dead-lettered entries."""
        tracker = WorkflowTracker(workflow_id, self.subjects)
        dead: list[DeadLetterRecord] = []

        for subject in self.subjects.all():
            for event in await self.event_log.events(subject, workflow_id=workflow_id):
                tracker.observe(subject, event)
            dead.extend(
                record
                for record in await self.event_log.dead_letters(subject)
                if record.fields.get("workflow_id") == workflow_id
            )

        status = tracker.status()
        logger.debug(
            "Reconstructed workflow status",
            extra={"workflow_id": workflow_id, "completed": status.completed, "dead": len(dead)},
        )
        return status, dead


__all__ = ["GetWorkflowStatusUseCase"]
