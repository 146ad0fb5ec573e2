from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, func
from resume_engine.database import Base

class Job(Base):
    """A saved job posting that résumés can be tailored for"""
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    title = Column(String(500), nullable=False, index=True)
    company = Column(String(500), nullable=False, index=True)
    location = Column(String(500))
    url = Column(String(2000))
    description = Column(Text)
    keywords = Column(JSON, nullable=True)
    source_platform = Column(String(100))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "url": self.url,
            "description": self.description,
            "keywords": self.keywords or [],
            "sourcePlatform": self.source_platform,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
