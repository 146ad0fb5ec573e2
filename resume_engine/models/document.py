"""
SQLAlchemy model for uploaded and tailored résumés.
Processing status lives in plain columns so each transition is one UPDATE.
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Boolean, func
from sqlalchemy.orm import relationship
from resume_engine.database import Base
import uuid


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)

    # Original file metadata
    name = Column(String(500), nullable=False)
    original_filename = Column(String(500), nullable=False)
    file_key = Column(String(1000), nullable=True)
    file_type = Column(String(10), nullable=False)  # PDF | DOCX | DOC

    # Status: pending → uploading → parsing → analyzing → completed | error
    status = Column(String(20), nullable=False, default="pending", index=True)
    progress = Column(Integer, nullable=False, default=0)  # 0-100
    message = Column(String(500), nullable=True, default="Queued")
    error_message = Column(Text, nullable=True)
    status_updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Derived data
    parsed_data = Column(JSON, nullable=True)
    analysis = Column(JSON, nullable=True)

    # Tailoring linkage: {jobId, jobTitle, company, originalResumeId}
    is_tailored = Column(Boolean, nullable=False, default=False)
    tailored_for_job = Column(JSON, nullable=True)

    # Before/after comparison of the latest edit or optimization
    comparison = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentVersion.version_number",
    )

    def status_dict(self):
        return {
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "error": self.error_message,
            "updatedAt": self.status_updated_at.isoformat() if self.status_updated_at else None,
        }

    def to_dict(self, include_data: bool = True):
        result = {
            "id": self.id,
            "name": self.name,
            "originalFilename": self.original_filename,
            "fileType": self.file_type,
            "processingStatus": self.status_dict(),
            "isTailored": bool(self.is_tailored),
            "tailoredForJob": self.tailored_for_job,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_data:
            result["parsedData"] = self.parsed_data
            result["analysis"] = self.analysis
            result["lastComparison"] = self.comparison
        else:
            analysis = self.analysis or {}
            result["overallScore"] = analysis.get("overallScore")
            result["atsCompatibility"] = analysis.get("atsCompatibility")
        return result
