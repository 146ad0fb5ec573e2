# Database models package
from resume_engine.models.document import Document
from resume_engine.models.document_version import DocumentVersion
from resume_engine.models.job import Job

__all__ = [
    "Document",
    "DocumentVersion",
    "Job",
]
