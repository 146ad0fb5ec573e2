from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from resume_engine.database import Base


class DocumentVersion(Base):
    """Append-only artifact history of a Document. The upload itself is version 1."""
    __tablename__ = "document_versions"
    __table_args__ = (UniqueConstraint("document_id", "version_number", name="uq_document_version"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    file_key = Column(String(1000), nullable=False)
    changes_description = Column(Text, nullable=True)
    job_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="versions")

    def to_dict(self):
        return {
            "id": self.id,
            "documentId": self.document_id,
            "versionNumber": self.version_number,
            "fileKey": self.file_key,
            "changesDescription": self.changes_description,
            "jobId": self.job_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
