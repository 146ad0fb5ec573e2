"""
Background document runs.

Request handlers call `submit`, which takes the per-document lease and starts
`run_pipeline` as an asyncio task. `run_pipeline` dispatches to the stage
handler registered for the run kind; it is the one place that turns a failed
run into an `error` transition and an error event, and it never re-raises.

Run kinds:
  - upload:           uploading → parsing → analyzing → completed
  - reanalysis:       completed → analyzing → completed
  - tailoring:        uploading → parsing → analyzing → completed   (new tailored document)
  - ats_optimization: completed → analyzing → completed
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from resume_engine.exceptions import DocumentNotFoundError, PipelineBusyError
from resume_engine.models.document import Document
from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services import processing_state as states
from resume_engine.services.blob_store import BlobStore
from resume_engine.services.change_engine import apply_changes
from resume_engine.services.llm_client import CompletionService
from resume_engine.services.progress_broadcaster import (
    COMPLETE,
    ERROR,
    PROGRESS,
    ProgressBroadcaster,
    ProgressEvent,
)
from resume_engine.services.resume_analyzer import ResumeAnalyzer
from resume_engine.services.resume_editor import ResumeEditor, compare_before_after, optimizations_instruction
from resume_engine.services.resume_extractor import ResumeExtractor, post_process
from resume_engine.services.resume_renderer import DOCX_CONTENT_TYPE, render_docx
from resume_engine.services.tailoring import TailoringRecommender, commands_from_recommendations, emphasize_skills
from resume_engine.services.text_extraction import extract_text
from resume_engine.services.version_store import append_version
from resume_engine.utils.logger import get_logger
from resume_engine.utils.metrics import inc, track_duration

logger = get_logger("pipeline")

RUN_UPLOAD = "upload"
RUN_REANALYSIS = "reanalysis"
RUN_TAILORING = "tailoring"
RUN_ATS_OPTIMIZATION = "ats_optimization"

ERROR_MESSAGE = "Error processing resume"
COMPLETED_MESSAGE = "Resume processing completed successfully"

StageHandler = Callable[["RunContext"], Awaitable[None]]


# ---------------------------------------------------------------------------
# Lease
# ---------------------------------------------------------------------------

class DocumentLease:
    """At most one active run per document within this process."""

    def __init__(self):
        self._active: Set[str] = set()
        self._lock = asyncio.Lock()

    async def acquire(self, document_id: str) -> None:
        async with self._lock:
            if document_id in self._active:
                raise PipelineBusyError(document_id)
            self._active.add(document_id)

    async def release(self, document_id: str) -> None:
        async with self._lock:
            self._active.discard(document_id)

    async def is_held(self, document_id: str) -> bool:
        async with self._lock:
            return document_id in self._active


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------

async def load_document(db: AsyncSession, document_id: str) -> Document:
    result = await db.execute(
        select(Document)
        .where(Document.id == document_id)
        .execution_options(populate_existing=True)
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise DocumentNotFoundError(document_id)
    return document


@dataclass
class RunContext:
    runner: "PipelineRunner"
    db: AsyncSession
    document_id: str
    kind: str
    user_id: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    async def advance(self, state: str, progress: int, message: str) -> states.ProcessingStatus:
        """Persist a transition, then tell observers about it."""
        status = await states.advance(self.db, self.document_id, state, progress, message)
        event_type = COMPLETE if state == states.COMPLETED else PROGRESS
        await self.runner.publish(
            self.document_id,
            ProgressEvent(type=event_type, stage=state, percentage=status.progress, message=message),
            self.user_id,
        )
        return status

    async def document(self) -> Document:
        return await load_document(self.db, self.document_id)

    async def save(self, **values) -> None:
        await self.db.execute(
            update(Document)
            .where(Document.id == self.document_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()


# ---------------------------------------------------------------------------
# Stage handler registry
# ---------------------------------------------------------------------------

_stages: Dict[str, StageHandler] = {}


def register_stage(kind: str, handler: StageHandler) -> None:
    """Register the async stage handler for a run kind."""
    _stages[kind] = handler


def _record_of(document: Document) -> StructuredRecord:
    return StructuredRecord.model_validate(document.parsed_data or {})


async def _analyze(ctx: RunContext, record: StructuredRecord, document: Document):
    async with track_duration("pipeline", "analysis"):
        return await ctx.runner.analyzer.analyze(
            record,
            is_tailored=bool(document.is_tailored),
            tailored_for=document.tailored_for_job,
        )


async def run_upload(ctx: RunContext) -> None:
    runner = ctx.runner
    document = await ctx.document()
    data: Optional[bytes] = ctx.options.get("data")

    await ctx.advance(states.UPLOADING, 10, "Uploading resume...")
    if document.file_key is None:
        async with track_duration("pipeline", "store"):
            key = await runner.blob_store.put(
                data, document.original_filename, ctx.options.get("content_type") or "application/octet-stream"
            )
        await ctx.save(file_key=key)
    elif data is None:
        data = await runner.blob_store.get(document.file_key)

    await ctx.advance(states.PARSING, 30, "Extracting content from resume...")
    async with track_duration("pipeline", "parsing"):
        text = await extract_text(data, document.file_type)
        record = await runner.extractor.extract(text, document.file_type)
    await ctx.save(parsed_data=record.to_json())

    await ctx.advance(states.ANALYZING, 50, "Parsing complete. Starting AI analysis...")
    await ctx.advance(states.ANALYZING, 75, "AI analysis in progress...")
    analysis = await _analyze(ctx, record, document)
    await ctx.save(analysis=analysis.to_json())

    await ctx.advance(states.COMPLETED, 100, COMPLETED_MESSAGE)


async def run_reanalysis(ctx: RunContext) -> None:
    document = await ctx.document()
    await ctx.advance(states.ANALYZING, 50, "Re-analyzing resume...")
    analysis = await _analyze(ctx, _record_of(document), document)
    await ctx.advance(states.ANALYZING, 90, "Saving analysis...")
    await ctx.save(analysis=analysis.to_json())
    await ctx.advance(states.COMPLETED, 100, "Resume analysis completed successfully")


async def run_tailoring(ctx: RunContext) -> None:
    """Build the tailored document's artifact from its origin document and one job."""
    runner = ctx.runner
    document = await ctx.document()
    job: Dict[str, Any] = ctx.options["job"]
    origin_id = (document.tailored_for_job or {}).get("originalResumeId")

    await ctx.advance(states.UPLOADING, 15, "Generating tailoring recommendations...")
    origin = await load_document(ctx.db, origin_id)
    source = _record_of(origin)
    async with track_duration("pipeline", "tailoring"):
        recommendations = await runner.recommender.recommend(source, job)
    commands = commands_from_recommendations(source, recommendations, job.get("id"))
    result = apply_changes(source, commands)
    skills = (recommendations.get("skillsImprovements") or {}).get("skillsToEmphasize") or []
    record = emphasize_skills(result.record, skills)

    await ctx.advance(states.UPLOADING, 25, "Rendering tailored resume...")
    artifact = await render_docx(record)
    key = await runner.blob_store.put(artifact, document.original_filename, DOCX_CONTENT_TYPE, prefix="tailored")
    await ctx.save(file_key=key)

    await ctx.advance(states.PARSING, 40, "Finalizing tailored resume...")
    record = StructuredRecord.model_validate(post_process(record.to_json()))
    await ctx.save(parsed_data=record.to_json())

    await ctx.advance(states.ANALYZING, 60, "Analyzing tailored resume...")
    analysis = await _analyze(ctx, record, document)
    await ctx.save(
        analysis=analysis.to_json(),
        comparison=compare_before_after(source.to_json(), record.to_json(), origin.analysis, analysis.to_json()),
    )
    await append_version(ctx.db, origin.id, key, f"Tailored for {job.get('title')} at {job.get('company')}",
                         job_id=job.get("id"))
    await ctx.advance(states.COMPLETED, 100, "Tailored resume created successfully")


async def run_ats_optimization(ctx: RunContext) -> None:
    runner = ctx.runner
    document = await ctx.document()
    before = _record_of(document)
    before_analysis = document.analysis
    previous_score = int((before_analysis or {}).get("atsCompatibility") or 0)

    await ctx.advance(states.ANALYZING, 20, "Analyzing resume for ATS optimizations...")
    optimizations = await runner.editor.generate_ats_optimizations(before, ctx.options.get("target_job"))

    await ctx.advance(states.ANALYZING, 40, "Applying ATS optimizations to resume...")
    commands = []
    if optimizations:
        commands = await runner.editor.parse_change_request(optimizations_instruction(optimizations), before)
    result = apply_changes(before, commands)

    await ctx.advance(states.ANALYZING, 60, "Re-analyzing optimized resume...")
    analysis = await _analyze(ctx, result.record, document)

    await ctx.advance(states.ANALYZING, 80, "Saving optimized version...")
    if result.applied:
        artifact = await render_docx(result.record)
        key = await runner.blob_store.put(artifact, document.original_filename, DOCX_CONTENT_TYPE, prefix="versions")
        await append_version(ctx.db, ctx.document_id, key, "ATS optimization: " + result.describe())

    await ctx.advance(states.ANALYZING, 90, "Generating before/after comparison...")
    comparison = compare_before_after(before.to_json(), result.record.to_json(), before_analysis, analysis.to_json())
    comparison["optimizations"] = optimizations
    await ctx.save(parsed_data=result.record.to_json(), analysis=analysis.to_json(), comparison=comparison)

    await ctx.advance(
        states.COMPLETED, 100,
        f"Optimization complete! ATS score: {previous_score}% → {analysis.ats_compatibility}%",
    )


register_stage(RUN_UPLOAD, run_upload)
register_stage(RUN_REANALYSIS, run_reanalysis)
register_stage(RUN_TAILORING, run_tailoring)
register_stage(RUN_ATS_OPTIMIZATION, run_ats_optimization)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class PipelineRunner:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        blob_store: BlobStore,
        completion: CompletionService,
        broadcaster: ProgressBroadcaster,
        extractor: Optional[ResumeExtractor] = None,
        analyzer: Optional[ResumeAnalyzer] = None,
        editor: Optional[ResumeEditor] = None,
        recommender: Optional[TailoringRecommender] = None,
        lease: Optional[DocumentLease] = None,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.broadcaster = broadcaster
        self.extractor = extractor or ResumeExtractor(completion)
        self.analyzer = analyzer or ResumeAnalyzer(completion)
        self.editor = editor or ResumeEditor(completion)
        self.recommender = recommender or TailoringRecommender(completion)
        self.lease = lease or DocumentLease()
        self._tasks: Set[asyncio.Task] = set()

    async def submit(self, document_id: str, kind: str, user_id: Optional[str] = None, **options) -> asyncio.Task:
        """Start a run without waiting for it. Raises PipelineBusyError if one is active."""
        if kind not in _stages:
            raise ValueError(f"No stage handler registered for run kind: {kind}")
        await self.lease.acquire(document_id)
        task = asyncio.create_task(self._run_leased(document_id, kind, user_id, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        inc(f"pipeline.{kind}.submitted")
        return task

    async def _run_leased(self, document_id: str, kind: str, user_id: Optional[str], options: Dict[str, Any]) -> None:
        try:
            await self.run_pipeline(document_id, kind, user_id, **options)
        finally:
            await self.lease.release(document_id)

    async def run_pipeline(
        self,
        document_id: str,
        kind: str = RUN_UPLOAD,
        user_id: Optional[str] = None,
        **options,
    ) -> bool:
        """Execute one run to completion. Returns False when the run ended in error."""
        handler = _stages[kind]
        logger.info("pipeline.run_started", extra={"document_id": document_id, "run_kind": kind})
        try:
            async with self.session_factory() as db:
                ctx = RunContext(self, db, document_id, kind, user_id, options)
                async with track_duration("pipeline", kind):
                    await handler(ctx)
        except Exception as exc:
            logger.error(
                "pipeline.run_failed",
                extra={
                    "document_id": document_id,
                    "run_kind": kind,
                    "error": str(exc)[:500],
                    "error_type": type(exc).__name__,
                },
            )
            await self._fail(document_id, user_id, exc)
            return False

        logger.info("pipeline.run_completed", extra={"document_id": document_id, "run_kind": kind})
        return True

    async def _fail(self, document_id: str, user_id: Optional[str], exc: Exception) -> None:
        try:
            async with self.session_factory() as db:
                status = await states.advance(db, document_id, states.ERROR, 0, ERROR_MESSAGE, error=str(exc)[:1000])
                percentage = status.progress
        except Exception as write_exc:
            # Document deleted mid-run, or the run had already finished
            logger.warning(
                "pipeline.error_not_recorded",
                extra={"document_id": document_id, "error": str(write_exc)[:500]},
            )
            percentage = 0
        await self.publish(
            document_id,
            ProgressEvent(type=ERROR, stage=states.ERROR, percentage=percentage, message=f"{ERROR_MESSAGE}: {exc}"),
            user_id,
        )

    async def publish(self, document_id: str, event: ProgressEvent, user_id: Optional[str] = None) -> None:
        try:
            await self.broadcaster.publish(document_id, event, user_id)
        except Exception as exc:
            logger.warning("progress.publish_failed", extra={"document_id": document_id, "error": str(exc)[:200]})

    async def wait_idle(self) -> None:
        """Wait for every submitted run. Used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_runner: Optional[PipelineRunner] = None


def get_pipeline() -> PipelineRunner:
    """Process-scoped runner wired to the configured collaborators"""
    global _runner
    if _runner is None:
        from resume_engine.database import AsyncSessionLocal
        from resume_engine.services.blob_store import get_blob_store
        from resume_engine.services.llm_client import get_completion_service
        from resume_engine.services.progress_broadcaster import get_broadcaster

        _runner = PipelineRunner(
            session_factory=AsyncSessionLocal,
            blob_store=get_blob_store(),
            completion=get_completion_service(),
            broadcaster=get_broadcaster(),
        )
    return _runner
