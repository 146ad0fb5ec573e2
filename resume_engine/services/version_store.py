"""
Append-only version history. The uploaded file is version 1 and is never a
row; appended artifacts are numbered from 2.
"""
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resume_engine.models.document_version import DocumentVersion
from resume_engine.utils.logger import logger

FIRST_APPENDED_VERSION = 2
MAX_INSERT_ATTEMPTS = 3


async def next_version_number(db: AsyncSession, document_id: str) -> int:
    result = await db.execute(
        select(func.max(DocumentVersion.version_number)).where(DocumentVersion.document_id == document_id)
    )
    current = result.scalar()
    return max(current + 1, FIRST_APPENDED_VERSION) if current else FIRST_APPENDED_VERSION


async def append_version(
    db: AsyncSession,
    document_id: str,
    file_key: str,
    changes_description: Optional[str] = None,
    job_id: Optional[int] = None,
) -> DocumentVersion:
    """Insert the next version row, retrying when a concurrent writer takes the number."""
    for attempt in range(MAX_INSERT_ATTEMPTS):
        version = DocumentVersion(
            document_id=document_id,
            version_number=await next_version_number(db, document_id),
            file_key=file_key,
            changes_description=(changes_description or "")[:2000] or None,
            job_id=job_id,
        )
        db.add(version)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning(
                "version.number_conflict",
                extra={"document_id": document_id, "attempt": attempt + 1},
            )
            continue
        await db.refresh(version)
        logger.info(
            f"Appended version {version.version_number}",
            extra={"document_id": document_id},
        )
        return version
    raise RuntimeError(f"Could not allocate a version number for resume {document_id}")


async def list_versions(db: AsyncSession, document_id: str) -> List[DocumentVersion]:
    result = await db.execute(
        select(DocumentVersion)
        .where(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number)
    )
    return list(result.scalars().all())


async def current_file_key(db: AsyncSession, document_id: str, original_key: Optional[str]) -> Optional[str]:
    """Key of the newest artifact: the latest appended version, else the upload."""
    result = await db.execute(
        select(DocumentVersion.file_key)
        .where(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number.desc())
        .limit(1)
    )
    return result.scalar() or original_key
