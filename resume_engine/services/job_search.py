"""
Job-relevance extractor.

Searches an external job provider for postings that fit a career profile,
escalating through broader strategies only while the result set is short:

  1. every target title in every preferred location
  2. (< 3 found) base job types without seniority or technology qualifiers, loose filter
  3. (< 5 found) industry x top keywords, loose filter
  4. (< 2 found) generic role words, strict filter

Results are deduplicated by company and title similarity and annotated with
source platform, quality tier and match score.
"""
import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx
from rapidfuzz.distance import Levenshtein

from resume_engine.exceptions import JobSearchError
from resume_engine.services.cache import cache_get, cache_set, make_key
from resume_engine.services.gateway import CircuitOpenError, ServiceGateway, get_gateway
from resume_engine.utils.logger import get_logger
from resume_engine.utils.metrics import inc

logger = get_logger("job_search")

ADZUNA_BASE_URL = "https://api.adzuna.com/v1/api/jobs"

SENIORITY_TERMS = re.compile(r"\b(Senior|Junior|Lead|Principal|Director|Vice President|VP)\b", re.IGNORECASE)
TECHNOLOGY_TERMS = re.compile(r"\b(AI|ML|Machine Learning|Artificial Intelligence)\b", re.IGNORECASE)
FALLBACK_TERMS = ("manager", "analyst", "specialist", "coordinator", "engineer")
DUPLICATE_THRESHOLD = 0.8

# Checked in order against the lower-cased redirect URL
SOURCE_PLATFORMS = (
    ("indeed.", "Indeed"),
    ("linkedin.", "LinkedIn"),
    ("monster.", "Monster"),
    ("careerbuilder.", "CareerBuilder"),
    ("glassdoor.", "Glassdoor"),
    ("ziprecruiter.", "ZipRecruiter"),
    ("simplyhired.", "SimplyHired"),
    ("dice.", "Dice"),
    ("stackoverflow.", "Stack Overflow Jobs"),
    ("greenhouse.", "Greenhouse"),
    ("lever.", "Lever"),
)


@dataclass
class CareerProfile:
    target_job_titles: List[str] = field(default_factory=list)
    preferred_locations: List[str] = field(default_factory=list)
    target_keywords: List[str] = field(default_factory=list)
    industries: List[str] = field(default_factory=list)
    experience_level: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None

    @classmethod
    def from_analysis(cls, analysis: Optional[Dict[str, Any]], location: Optional[str] = None) -> "CareerProfile":
        """Build a profile from a stored Analysis (camelCase JSON)."""
        analysis = analysis or {}
        profile = analysis.get("profileSummary") or {}
        titles = list(profile.get("suggestedJobTitles") or [])
        if not titles and profile.get("currentRole"):
            titles = [profile["currentRole"]]
        level = (profile.get("careerLevel") or "").lower()
        experience_level = next((lvl for lvl in ("lead", "senior") if lvl in level), None)
        return cls(
            target_job_titles=titles,
            preferred_locations=[location] if location else [],
            target_keywords=list(analysis.get("keywordsSuggestions") or []),
            industries=list(profile.get("suggestedIndustries") or profile.get("industries") or []),
            experience_level=experience_level,
        )


@dataclass
class SearchQuery:
    title: str
    location: str = ""
    max_results: int = 10
    max_days_old: int = 30
    sort_by: str = "date"
    experience_level: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None


class JobSearchProvider(Protocol):
    async def search(self, query: SearchQuery) -> List[Dict[str, Any]]: ...


# ========== Query shaping ==========
def build_search_query(title: str, experience_level: Optional[str] = None) -> str:
    query = title
    if " - " in title or " / " in title:
        query = re.split(r"[-/]", title)[0].strip()
    query = SENIORITY_TERMS.sub("", query)
    query = TECHNOLOGY_TERMS.sub("", query)
    query = re.sub(r"\s+", " ", query).strip()
    if experience_level in ("senior", "lead") and experience_level not in query.lower():
        query = f"{experience_level} {query}"
    return query


def optimize_location(location: Optional[str]) -> str:
    if not location or "remote" in location.lower():
        return ""
    location = re.sub(r",?\s*(USA?|United States)$", "", location, flags=re.IGNORECASE)
    location = re.sub(r"^(Greater\s+|Metro\s+)", "", location, flags=re.IGNORECASE)
    return re.sub(r"\s+Area$", "", location, flags=re.IGNORECASE).strip()


def base_job_types(titles: List[str]) -> List[str]:
    """'Senior ML Engineer - Payments' -> ['Engineer']; keeps insertion order."""
    types: List[str] = []
    for title in titles or []:
        cleaned = SENIORITY_TERMS.sub("", title)
        cleaned = TECHNOLOGY_TERMS.sub("", cleaned)
        cleaned = re.sub(r"[-/].+$", "", cleaned)
        cleaned = re.sub(r"\s+", " ", cleaned).strip()
        candidates = [cleaned] if len(cleaned) > 2 else []
        candidates.extend(word for word in cleaned.split(" ") if len(word) > 3)
        for candidate in candidates:
            if candidate not in types:
                types.append(candidate)
    return types


# ========== Annotation ==========
def infer_source_platform(url: Optional[str]) -> str:
    if not url:
        return "Adzuna Direct"
    lowered = url.lower()
    for marker, platform in SOURCE_PLATFORMS:
        if marker in lowered:
            return platform
    return "Adzuna Partner"


def quality_tier(api_job: Dict[str, Any]) -> str:
    description = api_job.get("description") or ""
    points = 0
    if len(api_job.get("title") or "") > 5:
        points += 2
    if (api_job.get("company") or {}).get("display_name"):
        points += 2
    if len(description) > 100:
        points += 3
    if (api_job.get("location") or {}).get("display_name"):
        points += 1
    if api_job.get("redirect_url") or api_job.get("url"):
        points += 2
    if api_job.get("created"):
        points += 1
    if api_job.get("salary_min") or api_job.get("salary_max"):
        points += 1 if api_job.get("salary_is_predicted") else 2
    if len(description) > 500:
        points += 2
    if len(description) > 1000:
        points += 1
    if api_job.get("contract_type") and api_job.get("contract_time"):
        points += 1
    if (api_job.get("category") or {}).get("label"):
        points += 1

    if points >= 12:
        return "high"
    if points >= 8:
        return "medium"
    return "low"


def _parse_created(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        created = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return created if created.tzinfo else created.replace(tzinfo=timezone.utc)


def initial_match_score(api_job: Dict[str, Any], now: Optional[datetime] = None) -> int:
    score = 70
    if api_job.get("salary_min") and not _truthy_flag(api_job.get("salary_is_predicted")):
        score += 10
    if len(api_job.get("description") or "") > 500:
        score += 5
    created = _parse_created(api_job.get("created"))
    if created is not None:
        days = ((now or datetime.now(timezone.utc)) - created).total_seconds() / 86400
        if days <= 7:
            score += 10
        elif days <= 14:
            score += 5
    if api_job.get("contract_type") == "permanent" and api_job.get("contract_time") == "full_time":
        score += 5
    return min(score, 100)


def _truthy_flag(value: Any) -> bool:
    # Adzuna sends "1"/"0" strings for salary_is_predicted
    return str(value).strip() not in ("", "0", "False", "false", "None")


def profile_bonus(job: Dict[str, Any], profile: CareerProfile) -> int:
    bonus = 0
    title = (job.get("title") or "").lower()
    if profile.experience_level == "senior" and "senior" in title:
        bonus += 15
    elif profile.experience_level == "lead" and ("lead" in title or "principal" in title):
        bonus += 15
    description = (job.get("description") or "").lower()
    if description:
        matching = [k for k in profile.target_keywords if k and k.lower() in description]
        bonus += min(len(matching) * 5, 20)
    return bonus


def clean_job_title(title: str) -> str:
    title = re.sub(r"\s+", " ", title or "")
    return re.sub(r"[^\w\s\-()/&+]", "", title).strip()


def normalize_job_location(location: Optional[str]) -> str:
    if not location or "remote" in location.lower():
        return "Remote"
    location = re.sub(r",\s*United States?$", "", location, flags=re.IGNORECASE)
    return re.sub(r",\s*USA?$", "", location, flags=re.IGNORECASE).strip()


def convert_api_job(api_job: Dict[str, Any]) -> Dict[str, Any]:
    url = api_job.get("redirect_url") or api_job.get("url")
    created = _parse_created(api_job.get("created"))
    salary = {}
    if api_job.get("salary_min") or api_job.get("salary_max"):
        salary = {
            "min": api_job.get("salary_min"),
            "max": api_job.get("salary_max"),
            "isPredicted": _truthy_flag(api_job.get("salary_is_predicted")),
        }
    return {
        "externalId": str(api_job.get("id") or ""),
        "title": clean_job_title(api_job.get("title") or "Unknown Title"),
        "company": (api_job.get("company") or {}).get("display_name") or "Unknown Company",
        "location": normalize_job_location((api_job.get("location") or {}).get("display_name")),
        "description": api_job.get("description") or "",
        "url": url,
        "postedDate": created.date().isoformat() if created else None,
        "salary": salary,
        "contractType": api_job.get("contract_type"),
        "contractTime": api_job.get("contract_time"),
        "category": (api_job.get("category") or {}).get("label"),
        "sourcePlatform": infer_source_platform(url),
        "qualityTier": quality_tier(api_job),
        "matchScore": initial_match_score(api_job),
    }


# ========== Deduplication ==========
def normalize_title(title: str) -> str:
    """Lower-case, drop punctuation, sort tokens: 'Backend Engineer, Senior' == 'Senior Backend Engineer'."""
    tokens = re.sub(r"[^\w\s]", " ", (title or "").lower()).split()
    return " ".join(sorted(tokens))


def title_similarity(first: str, second: str) -> float:
    return Levenshtein.normalized_similarity(normalize_title(first), normalize_title(second))


def is_duplicate(job: Dict[str, Any], existing: List[Dict[str, Any]]) -> bool:
    company = (job.get("company") or "").lower()
    return any(
        (other.get("company") or "").lower() == company
        and title_similarity(other.get("title") or "", job.get("title") or "") > DUPLICATE_THRESHOLD
        for other in existing
    )


# ========== Relevance filters ==========
def _title_words(profile: CareerProfile) -> List[str]:
    return [w for t in profile.target_job_titles for w in t.lower().split(" ") if len(w) > 3]


def is_relevant(job: Dict[str, Any], profile: CareerProfile) -> bool:
    title = (job.get("title") or "").lower()
    description = (job.get("description") or "").lower()
    if any(word in title for word in _title_words(profile)):
        return True
    return any(k.lower() in description or k.lower() in title for k in profile.target_keywords if k)


def is_strongly_relevant(job: Dict[str, Any], profile: CareerProfile) -> bool:
    title = (job.get("title") or "").lower()
    description = (job.get("description") or "").lower()
    title_match = any(word in title for word in _title_words(profile))
    keyword_match = any(k.lower() in description for k in profile.target_keywords if len(k) > 2)
    return title_match and keyword_match


# ========== Provider ==========
class AdzunaClient:
    """JobSearchProvider backed by the Adzuna search API"""

    def __init__(
        self,
        app_id: str,
        app_key: str,
        country: str = "us",
        gateway: Optional[ServiceGateway] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        cache_ttl: int = 3600,
    ):
        self.app_id = app_id
        self.app_key = app_key
        self.country = country
        self.gateway = gateway or get_gateway()
        self.http_client = http_client
        self.cache_ttl = cache_ttl

    def params_for(self, query: SearchQuery) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "app_id": self.app_id,
            "app_key": self.app_key,
            "results_per_page": min(query.max_results, 50),
            "what": build_search_query(query.title, query.experience_level),
            "sort_by": query.sort_by,
            "max_days_old": query.max_days_old,
            "full_time": 1,
            "permanent": 1,
        }
        where = optimize_location(query.location)
        if where:
            params["where"] = where
        if query.salary_min and query.salary_min > 0:
            params["salary_min"] = query.salary_min
        if query.salary_max and query.salary_max > 0:
            params["salary_max"] = query.salary_max
        return params

    async def _get(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.http_client is not None:
            response = await self.http_client.get(url, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    async def search(self, query: SearchQuery) -> List[Dict[str, Any]]:
        if not self.app_id or not self.app_key:
            raise JobSearchError("Adzuna API keys not configured")

        params = self.params_for(query)
        cache_key = make_key("jobs", {k: v for k, v in params.items() if k not in ("app_id", "app_key")})
        cached = await cache_get(cache_key)
        if cached is not None:
            return cached

        url = f"{ADZUNA_BASE_URL}/{self.country}/search/1"
        try:
            data = await self.gateway.execute("adzuna", self._get, url, params)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise JobSearchError("Adzuna API authentication failed") from exc
            if status == 429:
                raise JobSearchError("Adzuna API rate limit exceeded") from exc
            raise JobSearchError(f"Adzuna API request failed with status {status}") from exc
        except (httpx.HTTPError, CircuitOpenError, asyncio.TimeoutError) as exc:
            raise JobSearchError(f"Adzuna API request failed: {exc}") from exc

        jobs = [convert_api_job(item) for item in data.get("results") or [] if isinstance(item, dict)]
        await cache_set(cache_key, jobs, ttl=self.cache_ttl)
        return jobs


# ========== Extractor ==========
@dataclass
class StrategyReport:
    name: str
    searches: int = 0
    failures: int = 0
    jobs_found: int = 0


@dataclass
class JobSearchResult:
    jobs: List[Dict[str, Any]] = field(default_factory=list)
    strategies: List[StrategyReport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobs": self.jobs,
            "totalFound": len(self.jobs),
            "strategies": [
                {"name": s.name, "searches": s.searches, "failures": s.failures, "jobsFound": s.jobs_found}
                for s in self.strategies
            ],
        }


class JobRelevanceExtractor:
    def __init__(self, provider: JobSearchProvider):
        self.provider = provider

    async def _run_search(self, report: StrategyReport, query: SearchQuery) -> List[Dict[str, Any]]:
        report.searches += 1
        try:
            return await self.provider.search(query)
        except JobSearchError as exc:
            report.failures += 1
            logger.warning(
                f"Job search for {query.title!r} failed",
                extra={"strategy": report.name, "error": str(exc)[:200]},
            )
            return []

    def _add_unique(self, jobs, result: JobSearchResult, profile: CareerProfile, report: StrategyReport) -> None:
        for job in jobs:
            if is_duplicate(job, result.jobs):
                continue
            job = dict(job)
            job["matchScore"] = min(int(job.get("matchScore") or 70) + profile_bonus(job, profile), 100)
            result.jobs.append(job)
            report.jobs_found += 1

    async def extract(
        self,
        profile: CareerProfile,
        max_jobs: int = 10,
        max_days_old: int = 30,
        sort_by: str = "date",
    ) -> JobSearchResult:
        result = JobSearchResult()

        # Specific titles in preferred locations
        report = StrategyReport("specific_titles")
        for title in profile.target_job_titles or ["Software Engineer"]:
            for location in profile.preferred_locations or ["Remote"]:
                if len(result.jobs) >= max_jobs:
                    break
                jobs = await self._run_search(report, SearchQuery(
                    title=title,
                    location=location,
                    max_results=min(max_jobs - len(result.jobs), 10),
                    max_days_old=max_days_old,
                    sort_by=sort_by,
                    experience_level=profile.experience_level,
                    salary_min=profile.salary_min,
                    salary_max=profile.salary_max,
                ))
                self._add_unique(jobs, result, profile, report)
        result.strategies.append(report)

        if len(result.jobs) < 3:
            report = StrategyReport("base_job_types")
            for job_type in base_job_types(profile.target_job_titles):
                if len(result.jobs) >= max_jobs:
                    break
                jobs = await self._run_search(report, SearchQuery(
                    title=job_type,
                    max_results=min(max_jobs - len(result.jobs), 20),
                    max_days_old=max_days_old * 2,
                    sort_by="relevance",
                ))
                self._add_unique([j for j in jobs if is_relevant(j, profile)], result, profile, report)
            result.strategies.append(report)

        if len(result.jobs) < 5:
            report = StrategyReport("industry_keywords")
            for industry in profile.industries or ["Technology", "Software"]:
                for keyword in profile.target_keywords[:3]:
                    if len(result.jobs) >= max_jobs:
                        break
                    jobs = await self._run_search(report, SearchQuery(
                        title=f"{keyword} {industry}",
                        max_results=min(max_jobs - len(result.jobs), 15),
                        max_days_old=max_days_old * 3,
                        sort_by="relevance",
                    ))
                    self._add_unique([j for j in jobs if is_relevant(j, profile)], result, profile, report)
            result.strategies.append(report)

        if len(result.jobs) < 2:
            report = StrategyReport("fallback_broad")
            for term in FALLBACK_TERMS:
                if len(result.jobs) >= max_jobs:
                    break
                jobs = await self._run_search(report, SearchQuery(
                    title=term,
                    max_results=min(max_jobs - len(result.jobs), 50),
                    max_days_old=60,
                    sort_by="date",
                ))
                self._add_unique([j for j in jobs if is_strongly_relevant(j, profile)], result, profile, report)
            result.strategies.append(report)

        searches = sum(r.searches for r in result.strategies)
        failures = sum(r.failures for r in result.strategies)
        if searches and failures == searches:
            raise JobSearchError("Every job search request failed")

        result.jobs = result.jobs[:max_jobs]
        inc("job_search.extractions")
        logger.info(
            f"Job extraction found {len(result.jobs)} jobs from {searches} searches",
            extra={"count": len(result.jobs)},
        )
        return result


def get_job_search_provider() -> JobSearchProvider:
    from resume_engine.config import get_settings

    settings = get_settings()
    return AdzunaClient(
        app_id=settings.adzuna_app_id,
        app_key=settings.adzuna_app_key,
        country=settings.adzuna_country,
        cache_ttl=settings.job_search_cache_ttl,
    )
