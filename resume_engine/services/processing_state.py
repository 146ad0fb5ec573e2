"""
Document processing state machine.

    pending → uploading → parsing → analyzing → completed
         any non-terminal state → error
         completed → analyzing            (re-analysis only)

Every transition is one conditional UPDATE keyed by document id and the status
the caller last saw, so transitions for a document are strictly ordered even
with several writers. Re-applying the current (state, progress) is a no-op,
as is a second abort of a document already in error.

Usage:
    status = await processing_state.advance(db, doc_id, PARSING, 30, "Extracting content...")
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from resume_engine.exceptions import DocumentNotFoundError, InvalidTransitionError
from resume_engine.models.document import Document
from resume_engine.utils.logger import logger
from resume_engine.utils.metrics import inc

PENDING = "pending"
UPLOADING = "uploading"
PARSING = "parsing"
ANALYZING = "analyzing"
COMPLETED = "completed"
ERROR = "error"

STATES = (PENDING, UPLOADING, PARSING, ANALYZING, COMPLETED, ERROR)
TERMINAL_STATES = frozenset({COMPLETED, ERROR})

# Forward edges; same-state progress updates and the abort path are implicit
TRANSITIONS = {
    PENDING: frozenset({UPLOADING}),
    UPLOADING: frozenset({PARSING}),
    PARSING: frozenset({ANALYZING}),
    ANALYZING: frozenset({COMPLETED}),
    COMPLETED: frozenset({ANALYZING}),
    ERROR: frozenset(),
}

MAX_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class ProcessingStatus:
    state: str
    progress: int
    message: Optional[str] = None
    error: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self):
        return {
            "status": self.state,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def starts_new_run(current: str, target: str) -> bool:
    return current == COMPLETED and target == ANALYZING


def check_transition(document_id: str, current: ProcessingStatus, target: str, progress: int) -> int:
    """Validate a transition and return the progress value to store."""
    if target not in STATES:
        raise InvalidTransitionError(document_id, current.state, target, "unknown state")
    if not 0 <= progress <= 100:
        raise InvalidTransitionError(document_id, current.state, target, f"progress {progress} out of range")

    if target == ERROR:
        if current.is_terminal:
            raise InvalidTransitionError(document_id, current.state, target, "run already finished")
        return max(progress, current.progress)

    if starts_new_run(current.state, target):
        return progress

    if target == current.state:
        if current.is_terminal:
            raise InvalidTransitionError(document_id, current.state, target, "run already finished")
    elif target not in TRANSITIONS[current.state]:
        raise InvalidTransitionError(document_id, current.state, target)

    if progress < current.progress:
        raise InvalidTransitionError(
            document_id, current.state, target, f"progress would go back from {current.progress} to {progress}"
        )
    return progress


async def get_status(db: AsyncSession, document_id: str) -> ProcessingStatus:
    result = await db.execute(
        select(Document.status, Document.progress, Document.message, Document.error_message,
               Document.status_updated_at)
        .where(Document.id == document_id)
    )
    row = result.one_or_none()
    if row is None:
        raise DocumentNotFoundError(document_id)
    return ProcessingStatus(
        state=row.status,
        progress=row.progress,
        message=row.message,
        error=row.error_message,
        updated_at=row.status_updated_at,
    )


async def advance(
    db: AsyncSession,
    document_id: str,
    target_state: str,
    progress: int,
    message: str,
    error: Optional[str] = None,
) -> ProcessingStatus:
    """Persist one status transition atomically. Idempotent for the current (state, progress)."""
    for attempt in range(MAX_WRITE_ATTEMPTS):
        current = await get_status(db, document_id)
        if current.state == target_state and (current.progress == progress or target_state == ERROR):
            return current

        stored_progress = check_transition(document_id, current, target_state, progress)
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(Document)
            .where(
                Document.id == document_id,
                Document.status == current.state,
                Document.progress == current.progress,
            )
            .values(
                status=target_state,
                progress=stored_progress,
                message=message[:500] if message else message,
                error_message=error if target_state == ERROR else None,
                status_updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        if result.rowcount == 1:
            inc(f"state.{target_state}")
            logger.info(
                "state.transition",
                extra={
                    "document_id": document_id,
                    "from_state": current.state,
                    "to_state": target_state,
                    "progress": stored_progress,
                },
            )
            return ProcessingStatus(target_state, stored_progress, message, error if target_state == ERROR else None, now)

        logger.warning(
            "state.write_conflict",
            extra={"document_id": document_id, "to_state": target_state, "attempt": attempt + 1},
        )

    raise InvalidTransitionError(document_id, current.state, target_state, "concurrent status updates")
