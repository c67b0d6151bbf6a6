"""SubmitDocumentUseCase - Start a workflow for one source document.

Stores the source bytes first and only then announces them, so a worker that
sees ``SourceCreated`` can always fetch the blob it names.
"""

import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field

from docflow.common.tracing import EventContext
from docflow.core.errors import SchemaViolationError
from docflow.core.events import SourceCreated, new_event_id
from docflow.core.ports.blob_store import BlobData, BlobStore
from docflow.core.ports.event_log import EventLog

logger = logging.getLogger(__name__)

_WORKFLOW_ID = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]*")


class SubmissionResult(BaseModel):
    """Outcome of a document submission.

    Attributes:
        workflow_id: Workflow started for the document.
        event_id: ID of the published ``SourceCreated`` event.
        source_key: Content key of the stored source document.
        position: Position of the event on the sources subject.
    """

    workflow_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    source_key: str = Field(..., min_length=1)
    position: str = Field(..., min_length=1)


class SubmitDocumentUseCase:
    """Use case for submitting a source document into the pipeline."""

    def __init__(
        self,
        blob_store: BlobStore,
        event_log: EventLog,
        *,
        source_bucket: str,
        source_subject: str,
    ) -> None:
        """Initialize SubmitDocumentUseCase.

        Args:
            blob_store: Store receiving the source document.
            event_log: Log receiving the ``SourceCreated`` announcement.
            source_bucket: Bucket for source documents.
            source_subject: Subject the render stage consumes.
        """
        self.blob_store = blob_store
        self.event_log = event_log
        self.source_bucket = source_bucket
        self.source_subject = source_subject

    async def execute(
        self,
        data: BlobData,
        *,
        file_name: str = "document.pdf",
        content_type: str = "application/pdf",
        workflow_id: str | None = None,
        user_id: str = "anonymous",
        tenant_id: str = "default",
    ) -> SubmissionResult:
        """Store a document and publish its ``SourceCreated`` event.

        Args:
            data: Document bytes or a binary stream.
            file_name: Original file name; its suffix is kept on the key.
            content_type: MIME type of the document.
            workflow_id: Workflow ID to use (generated when omitted).
            user_id: Submitting user.
            tenant_id: Owning tenant.

        Returns:
            SubmissionResult describing the started workflow.

        Raises:
            SchemaViolationError: If ``workflow_id`` cannot be used as a key
                segment; nothing is stored in that case.
            StoreWriteError: If the document could not be stored; nothing is
                published in that case.
            PublishError: If the announcement could not be committed.
        """
        workflow_id = workflow_id or new_event_id()
        if not _WORKFLOW_ID.fullmatch(workflow_id):
            raise SchemaViolationError(f"Invalid workflow id: {workflow_id!r}")
        suffix = Path(file_name).suffix or ".bin"
        source_key = f"{workflow_id}/source-{new_event_id()}{suffix}"

        with EventContext(workflow_id=workflow_id, event_id=None):
            await self.blob_store.put(self.source_bucket, source_key, data)

            event = SourceCreated(
                workflow_id=workflow_id,
                user_id=user_id,
                tenant_id=tenant_id,
                source_key=source_key,
                file_name=Path(file_name).name,
                content_type=content_type,
            )
            position = await self.event_log.publish(self.source_subject, event)

            logger.info(
                "Submitted document",
                extra={"source_key": source_key, "position": position},
            )

        return SubmissionResult(
            workflow_id=workflow_id,
            event_id=event.event_id,
            source_key=source_key,
            position=position,
        )


__all__ = ["SubmissionResult", "SubmitDocumentUseCase"]
