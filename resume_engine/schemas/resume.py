"""
Pydantic schemas for structured résumé data and its analysis.
Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import date
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DateValue = Optional[Union[date, str]]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _as_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _as_string_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    if isinstance(value, list):
        return [str(item) if isinstance(item, (int, float)) else item for item in value if item is not None]
    return value


# ========== Structured Record Schemas ==========
class ContactInfo(CamelModel):
    """Candidate contact details"""
    name: Optional[str] = ""
    email: Optional[str] = ""
    phone: Optional[str] = ""
    location: Optional[str] = ""
    websites: List[str] = Field(default_factory=list)

    coerce_text = field_validator("name", "email", "phone", "location", mode="before")(_as_text)
    coerce_sites = field_validator("websites", mode="before")(_as_string_list)


class ExperienceEntry(CamelModel):
    """One position held"""
    company: Optional[str] = ""
    title: Optional[str] = ""
    location: Optional[str] = ""
    start_date: DateValue = None
    end_date: DateValue = None
    current: bool = False
    description: Optional[str] = ""
    highlights: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)

    coerce_text = field_validator("company", "title", "location", "description", mode="before")(_as_text)
    coerce_lists = field_validator("highlights", "skills", mode="before")(_as_string_list)


class EducationEntry(CamelModel):
    """One degree or program"""
    institution: Optional[str] = ""
    degree: Optional[str] = ""
    field_of_study: Optional[str] = Field("", alias="field")
    start_date: DateValue = None
    end_date: DateValue = None
    gpa: Optional[str] = None
    description: Optional[str] = ""
    highlights: List[str] = Field(default_factory=list)

    coerce_text = field_validator("institution", "degree", "field_of_study", "gpa", "description", mode="before")(_as_text)
    coerce_lists = field_validator("highlights", mode="before")(_as_string_list)


class Skill(CamelModel):
    """A named skill with optional proficiency"""
    name: str
    level: Optional[str] = "Intermediate"
    years_of_experience: Optional[float] = None
    added_for_job: Optional[str] = None

    coerce_text = field_validator("added_for_job", mode="before")(_as_text)


class Certification(CamelModel):
    name: Optional[str] = ""
    issuer: Optional[str] = ""
    date_obtained: DateValue = None
    expiration_date: DateValue = Field(
        None, validation_alias=AliasChoices("expirationDate", "validUntil", "expiration_date")
    )


class Language(CamelModel):
    language: Optional[str] = ""
    proficiency: Optional[str] = ""


class Project(CamelModel):
    name: Optional[str] = ""
    description: Optional[str] = ""
    url: Optional[str] = ""
    start_date: DateValue = None
    end_date: DateValue = None
    technologies: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("technologies", "skills")
    )

    coerce_lists = field_validator("technologies", mode="before")(_as_string_list)


class StructuredRecord(CamelModel):
    """Normalized representation of a résumé"""
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    summary: Optional[str] = ""
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    skills: List[Skill] = Field(default_factory=list)
    certifications: List[Certification] = Field(default_factory=list)
    languages: List[Language] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)

    @field_validator("skills", mode="before")
    @classmethod
    def skills_from_names(cls, value):
        # Models often return skills as bare strings
        if isinstance(value, list):
            return [{"name": item} if isinstance(item, str) else item for item in value]
        return value

    @field_validator("contact_info", mode="before")
    @classmethod
    def contact_default(cls, value):
        return value if value is not None else {}

    @field_validator("experience", "education", "certifications", "languages", "projects", mode="before")
    @classmethod
    def list_default(cls, value):
        return value if value is not None else []

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ========== Analysis Schemas ==========
class CategoryScores(CamelModel):
    skills: int = Field(0, ge=0, le=100)
    experience: int = Field(0, ge=0, le=100)
    education: int = Field(0, ge=0, le=100)


class ProfileSummary(CamelModel):
    """Career profile inferred by the analysis"""
    current_role: str = ""
    career_level: str = ""
    industries: List[str] = Field(default_factory=list)
    suggested_job_titles: List[str] = Field(default_factory=list)
    suggested_industries: List[str] = Field(default_factory=list)


class ImprovedSnippet(CamelModel):
    original: str = ""
    improved: str = ""


class ImprovementArea(CamelModel):
    section: str = ""
    suggestions: List[str] = Field(default_factory=list)
    improved_snippets: List[ImprovedSnippet] = Field(default_factory=list)


class ContentSignals(CamelModel):
    """Deterministic content-quality signals behind the score"""
    has_placeholders: bool = False
    has_quantified_achievements: bool = False
    quality_tier: str = "poor"
    action_verb_count: int = 0
    technical_term_density: float = 0.0


class Analysis(CamelModel):
    overall_score: int = Field(0, ge=0, le=100)
    ats_compatibility: int = Field(0, ge=0, le=100)
    category_scores: CategoryScores = Field(default_factory=CategoryScores)
    profile_summary: ProfileSummary = Field(default_factory=ProfileSummary)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    keywords_suggestions: List[str] = Field(default_factory=list)
    improvement_areas: List[ImprovementArea] = Field(default_factory=list)
    content_signals: ContentSignals = Field(default_factory=ContentSignals)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ========== Request / Response Schemas ==========
class ProcessingStatusOut(BaseModel):
    status: str
    progress: int
    message: Optional[str] = None
    error: Optional[str] = None
    updatedAt: Optional[str] = None


class EditRequest(BaseModel):
    """Either explicit change commands or a natural-language instruction"""
    changes: Optional[List[dict]] = None
    instruction: Optional[str] = Field(None, max_length=4000)
    description: Optional[str] = Field(None, max_length=500)


class TargetJob(BaseModel):
    title: str
    company: Optional[str] = ""
    description: Optional[str] = ""


class OptimizeRequest(BaseModel):
    target_job: Optional[TargetJob] = Field(None, alias="targetJob")

    model_config = ConfigDict(populate_by_name=True)
