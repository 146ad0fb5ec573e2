import asyncio
import re
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from resume_engine.config import get_settings
from resume_engine.database import get_db
from resume_engine.exceptions import (
    DocumentNotFoundError,
    InvalidTransitionError,
    JobNotFoundError,
    OwnershipError,
    PipelineBusyError,
    StorageError,
)
from resume_engine.middleware.auth import get_user_id
from resume_engine.middleware.rate_limit import limiter
from resume_engine.models.document import Document
from resume_engine.models.job import Job
from resume_engine.routes.errors import http_errors
from resume_engine.schemas.resume import EditRequest, OptimizeRequest, StructuredRecord
from resume_engine.services import processing_state as states
from resume_engine.services.blob_store import BlobStore, get_blob_store
from resume_engine.services.change_engine import apply_changes
from resume_engine.services.job_search import (
    CareerProfile,
    JobRelevanceExtractor,
    JobSearchProvider,
    get_job_search_provider,
)
from resume_engine.services.pipeline import (
    RUN_ATS_OPTIMIZATION,
    RUN_REANALYSIS,
    RUN_TAILORING,
    RUN_UPLOAD,
    PipelineRunner,
    get_pipeline,
)
from resume_engine.services.progress_broadcaster import (
    COMPLETE,
    CONNECTED,
    ERROR,
    HEARTBEAT,
    ProgressBroadcaster,
    ProgressEvent,
    get_broadcaster,
)
from resume_engine.services.resume_analyzer import onboarding_summary
from resume_engine.services.resume_editor import compare_before_after
from resume_engine.services.resume_renderer import DOCX_CONTENT_TYPE, render_docx
from resume_engine.services.tailoring import tailored_for_job, tailored_name
from resume_engine.services.text_extraction import CONTENT_TYPES, detect_file_type
from resume_engine.services.version_store import append_version, current_file_key, list_versions
from resume_engine.utils.logger import logger

router = APIRouter()
settings = get_settings()


async def _owned_document(db: AsyncSession, document_id: str, user_id: str, with_versions: bool = False) -> Document:
    query = select(Document).where(Document.id == document_id).execution_options(populate_existing=True)
    if with_versions:
        query = query.options(selectinload(Document.versions))
    document = (await db.execute(query)).scalar_one_or_none()
    if document is None:
        raise DocumentNotFoundError(document_id)
    if document.user_id != user_id:
        raise OwnershipError(document_id)
    return document


def _require_completed(document: Document, target: str = states.ANALYZING) -> None:
    if document.status != states.COMPLETED:
        raise InvalidTransitionError(document.id, document.status, target, "resume is not completed")


async def _read_upload(file: Optional[UploadFile]):
    """Validate an uploaded résumé file. Returns (data, file_type)."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    with http_errors():
        file_type = detect_file_type(file.filename)
    data = await file.read(settings.max_upload_bytes + 1)
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size: {settings.max_upload_mb}MB",
        )
    return data, file_type


@router.post("/upload", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.upload_rate_limit)
async def upload_resume(
    request: Request,
    file: UploadFile = File(None),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineRunner = Depends(get_pipeline),
):
    """Accept a résumé file and start processing it in the background"""
    data, file_type = await _read_upload(file)

    document = Document(
        user_id=user_id,
        name=Path(file.filename).stem[:500] or "Resume",
        original_filename=file.filename[:500],
        file_type=file_type,
        status=states.PENDING,
        progress=0,
        message="Queued",
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)

    with http_errors():
        await pipeline.submit(
            document.id, RUN_UPLOAD, user_id, data=data, content_type=file.content_type or CONTENT_TYPES[file_type]
        )
    logger.info(f"Resume {document.id} accepted for processing", extra={"document_id": document.id})
    return {"id": document.id, "status": states.PENDING, "message": "Resume upload accepted"}


@router.get("")
async def list_resumes(user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Document).where(Document.user_id == user_id).order_by(Document.created_at.desc())
    )
    return {"resumes": [d.to_dict(include_data=False) for d in result.scalars().all()]}


@router.get("/{document_id}")
async def get_resume(document_id: str, user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
    return document.to_dict()


@router.delete("/{document_id}")
async def delete_resume(
    document_id: str,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineRunner = Depends(get_pipeline),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Delete a résumé with its versions and stored artifacts"""
    with http_errors():
        document = await _owned_document(db, document_id, user_id, with_versions=True)
        if await pipeline.lease.is_held(document_id):
            raise PipelineBusyError(document_id)

    keys = [document.file_key] + [v.file_key for v in document.versions]
    for key in filter(None, keys):
        try:
            await blob_store.delete(key)
        except StorageError as e:
            logger.warning(f"Could not delete stored file {key}: {e}", extra={"document_id": document_id})

    await db.delete(document)
    await db.commit()
    return {"success": True, "id": document_id}


@router.get("/{document_id}/status")
async def get_processing_status(
    document_id: str, user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)
):
    with http_errors():
        await _owned_document(db, document_id, user_id)
        current = await states.get_status(db, document_id)
    return current.to_dict()


@router.get("/{document_id}/progress")
async def stream_progress(
    document_id: str,
    request: Request,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """Server-sent progress events until the current run finishes"""
    with http_errors():
        await _owned_document(db, document_id, user_id)
    # Must subscribe before the status read; later events land in the queue
    subscription = await broadcaster.subscribe(user_id, document_id)
    try:
        with http_errors():
            current = await states.get_status(db, document_id)
    except BaseException:
        await broadcaster.unsubscribe(subscription)
        raise

    async def events():
        try:
            yield ProgressEvent(
                type=CONNECTED, stage=current.state, percentage=current.progress, message=current.message or ""
            ).to_sse()
            if current.is_terminal:
                final = COMPLETE if current.state == states.COMPLETED else ERROR
                yield ProgressEvent(
                    type=final, stage=current.state, percentage=current.progress,
                    message=current.error or current.message or "",
                ).to_sse()
                return
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(subscription.queue.get(), timeout=settings.heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield ProgressEvent(type=HEARTBEAT).to_sse()
                    continue
                yield event.to_sse()
                if event.type in (COMPLETE, ERROR):
                    break
        finally:
            await broadcaster.unsubscribe(subscription)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.post("/{document_id}/analyze", status_code=status.HTTP_202_ACCEPTED)
async def reanalyze_resume(
    document_id: str,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineRunner = Depends(get_pipeline),
):
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
        _require_completed(document)
        await pipeline.submit(document_id, RUN_REANALYSIS, user_id)
    return {"id": document_id, "status": states.ANALYZING, "message": "Re-analysis started"}


@router.post("/{document_id}/versions", status_code=status.HTTP_201_CREATED)
async def create_version(
    document_id: str,
    file: UploadFile = File(None),
    changes_description: Optional[str] = Form(None),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Store a new artifact for an existing résumé"""
    with http_errors():
        await _owned_document(db, document_id, user_id)
    data, file_type = await _read_upload(file)
    with http_errors():
        key = await blob_store.put(data, file.filename, CONTENT_TYPES[file_type], prefix="versions")
    version = await append_version(db, document_id, key, changes_description or "Uploaded new version")
    return version.to_dict()


@router.get("/{document_id}/versions")
async def get_versions(document_id: str, user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
    original = {
        "id": None,
        "documentId": document.id,
        "versionNumber": 1,
        "fileKey": document.file_key,
        "changesDescription": "Original upload",
        "jobId": None,
        "createdAt": document.created_at.isoformat() if document.created_at else None,
    }
    return {"versions": [original] + [v.to_dict() for v in await list_versions(db, document_id)]}


@router.post("/{document_id}/edits")
async def edit_resume(
    document_id: str,
    body: EditRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineRunner = Depends(get_pipeline),
):
    """Apply change commands, or an instruction the model turns into commands"""
    if not body.changes and not (body.instruction and body.instruction.strip()):
        raise HTTPException(status_code=400, detail="Provide either changes or an instruction")

    with http_errors():
        document = await _owned_document(db, document_id, user_id)
        _require_completed(document)
        await pipeline.lease.acquire(document_id)

    try:
        before = StructuredRecord.model_validate(document.parsed_data or {})
        if body.changes:
            commands = body.changes
        else:
            with http_errors():
                commands = await pipeline.editor.parse_change_request(body.instruction.strip(), before)
        result = apply_changes(before, commands)

        version = None
        comparison = None
        if result.applied:
            artifact = await render_docx(result.record)
            with http_errors():
                key = await pipeline.blob_store.put(
                    artifact, document.original_filename, DOCX_CONTENT_TYPE, prefix="versions"
                )
            version = await append_version(db, document_id, key, body.description or result.describe())
            comparison = compare_before_after(before.to_json(), result.record.to_json(), document.analysis)
            document.parsed_data = result.record.to_json()
            document.comparison = comparison
            await db.commit()
    finally:
        await pipeline.lease.release(document_id)

    if version is not None:
        with http_errors():
            await pipeline.submit(document_id, RUN_REANALYSIS, user_id)

    return {
        "applied": len(result.applied),
        "skipped": [{"command": s.command, "reason": s.reason} for s in result.skipped],
        "version": version.to_dict() if version else None,
        "comparison": comparison,
        "parsedData": result.record.to_json(),
    }


@router.post("/{document_id}/optimize-ats", status_code=status.HTTP_202_ACCEPTED)
async def optimize_for_ats(
    document_id: str,
    body: Optional[OptimizeRequest] = None,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineRunner = Depends(get_pipeline),
):
    target_job = body.target_job.model_dump() if body and body.target_job else None
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
        _require_completed(document)
        await pipeline.submit(document_id, RUN_ATS_OPTIMIZATION, user_id, target_job=target_job)
    return {"id": document_id, "status": states.ANALYZING, "message": "ATS optimization started"}


@router.post("/{document_id}/tailor/{job_id}", status_code=status.HTTP_202_ACCEPTED)
async def tailor_resume(
    document_id: str,
    job_id: int,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineRunner = Depends(get_pipeline),
):
    """Create a new résumé tailored to one saved job"""
    with http_errors():
        source = await _owned_document(db, document_id, user_id)
        _require_completed(source)
        job = (await db.execute(select(Job).where(Job.id == job_id, Job.user_id == user_id))).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(job_id)

    name = tailored_name(source.name, job.title, job.company)
    tailored = Document(
        user_id=user_id,
        name=name[:500],
        original_filename=re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_")[:490] + ".docx",
        file_type="DOCX",
        status=states.PENDING,
        progress=0,
        message="Queued",
        is_tailored=True,
        tailored_for_job=tailored_for_job(job.to_dict(), source.id),
    )
    db.add(tailored)
    await db.commit()
    await db.refresh(tailored)

    with http_errors():
        await pipeline.submit(tailored.id, RUN_TAILORING, user_id, job=job.to_dict())
    return {"id": tailored.id, "name": tailored.name, "status": states.PENDING, "message": "Tailoring started"}


@router.get("/{document_id}/download")
async def download_resume(
    document_id: str,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
        key = await current_file_key(db, document_id, document.file_key)
        if not key:
            raise HTTPException(status_code=404, detail="No stored file for this resume yet")
        url = await blob_store.signed_url(key, settings.signed_url_ttl)
    return {"url": url, "expiresIn": settings.signed_url_ttl}


async def _suggest_jobs(document: Document, provider: JobSearchProvider, max_jobs: int):
    if not document.analysis:
        raise HTTPException(status_code=409, detail="Resume has not been analyzed yet")

    location = ((document.parsed_data or {}).get("contactInfo") or {}).get("location")
    profile = CareerProfile.from_analysis(document.analysis, location=location)
    with http_errors():
        result = await JobRelevanceExtractor(provider).extract(profile, max_jobs=max(1, min(max_jobs, 50)))
    logger.info(
        f"Job suggestions for resume {document.id}: {len(result.jobs)} jobs",
        extra={"document_id": document.id, "count": len(result.jobs)},
    )
    return result


@router.get("/{document_id}/job-suggestions")
async def job_suggestions(
    document_id: str,
    max_jobs: int = 10,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    provider: JobSearchProvider = Depends(get_job_search_provider),
):
    """Jobs matching the career profile inferred by the résumé analysis"""
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
    result = await _suggest_jobs(document, provider, max_jobs)
    return result.to_dict()


@router.post("/{document_id}/onboarding-analysis")
async def onboarding_analysis(
    document_id: str,
    max_jobs: int = 6,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    provider: JobSearchProvider = Depends(get_job_search_provider),
):
    """First-résumé welcome: analysis highlights plus a first set of matching jobs"""
    with http_errors():
        document = await _owned_document(db, document_id, user_id)
        _require_completed(document, target=states.COMPLETED)
    result = await _suggest_jobs(document, provider, max_jobs)
    return {
        "resumeId": document.id,
        "resumeName": document.name,
        "resumeAnalysis": onboarding_summary(document.analysis),
        "jobs": result.jobs,
        "totalJobs": len(result.jobs),
    }
