"""Request schemas for saved jobs and job search."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    company: str = Field(..., min_length=1, max_length=500)
    location: Optional[str] = None
    url: Optional[str] = Field(None, max_length=2000)
    description: Optional[str] = ""
    keywords: List[str] = Field(default_factory=list)


class JobSearchRequest(BaseModel):
    """Career profile driving a job search"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    target_job_titles: List[str] = Field(default_factory=list)
    preferred_locations: List[str] = Field(default_factory=list)
    target_keywords: List[str] = Field(default_factory=list)
    industries: List[str] = Field(default_factory=list)
    experience_level: Optional[str] = None
    salary_min: Optional[int] = Field(None, ge=0)
    salary_max: Optional[int] = Field(None, ge=0)
    max_jobs: int = Field(10, ge=1, le=50)
    max_days_old: int = Field(30, ge=1, le=90)
