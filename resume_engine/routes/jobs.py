"""
Job API Routes

Saved job postings that résumés are tailored for, and profile-driven job search
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from resume_engine.config import get_settings
from resume_engine.database import get_db
from resume_engine.middleware.auth import get_user_id
from resume_engine.middleware.rate_limit import limiter
from resume_engine.models.job import Job
from resume_engine.routes.errors import http_errors
from resume_engine.schemas.job import JobCreate, JobSearchRequest
from resume_engine.services.job_search import (
    CareerProfile,
    JobRelevanceExtractor,
    JobSearchProvider,
    get_job_search_provider,
    infer_source_platform,
)
from resume_engine.utils.logger import logger

router = APIRouter()
settings = get_settings()


@router.post("", status_code=status.HTTP_201_CREATED)
async def save_job(
    body: JobCreate,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    job = Job(
        user_id=user_id,
        title=body.title.strip(),
        company=body.company.strip(),
        location=body.location,
        url=body.url,
        description=body.description or "",
        keywords=body.keywords,
        source_platform=infer_source_platform(body.url) if body.url else None,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info(f"Saved job {job.id}: {job.title} at {job.company}", extra={"job_id": job.id})
    return job.to_dict()


@router.get("")
async def list_jobs(user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Job).where(Job.user_id == user_id).order_by(desc(Job.created_at), desc(Job.id)))
    return {"jobs": [job.to_dict() for job in result.scalars().all()]}


@router.post("/search")
@limiter.limit(settings.search_rate_limit)
async def search_jobs(
    request: Request,
    body: JobSearchRequest,
    user_id: str = Depends(get_user_id),
    provider: JobSearchProvider = Depends(get_job_search_provider),
):
    """
    Multi-strategy job search for a career profile.

    Runs progressively broader searches until enough relevant, de-duplicated
    postings are found.
    """
    profile = CareerProfile(
        target_job_titles=body.target_job_titles,
        preferred_locations=body.preferred_locations,
        target_keywords=body.target_keywords,
        industries=body.industries,
        experience_level=body.experience_level,
        salary_min=body.salary_min,
        salary_max=body.salary_max,
    )
    with http_errors():
        result = await JobRelevanceExtractor(provider).extract(
            profile, max_jobs=body.max_jobs, max_days_old=body.max_days_old
        )
    return result.to_dict()
