"""
Job tailoring: ask the completion model for recommendations against one saved
job, then turn them into change commands for the change engine.
"""
import json
from typing import Any, Dict, List, Optional

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services.llm_client import CompletionService
from resume_engine.utils.json_recovery import recover_json_object
from resume_engine.utils.logger import get_logger

logger = get_logger("tailoring")

TAILORED_SKILL_LEVEL = "Proficient"
TAILORED_NAME_PREFIX = "[AI Tailored]"

SYSTEM_MESSAGE = (
    "You are an expert resume writer and ATS optimization specialist who adapts to any "
    "industry and role. Return ONLY JSON without markdown formatting."
)

RECOMMENDATIONS_PROMPT = """Analyze this resume and job description and provide tailoring
recommendations for ALL experience positions.

Target Role: {title}
Target Company: {company}

Instructions:
1. Tailor every experience entry, not just recent ones
2. Integrate the job's keywords naturally
3. Quantify achievements with specific metrics and business impact
4. Replace placeholder content such as "Bullet 1" with real achievements

CURRENT RESUME DATA:
{resume_json}

TARGET JOB DESCRIPTION:
{description}

Provide recommendations in JSON format:
{{
  "summary": {{"original": "current summary", "tailored": "rewritten summary"}},
  "experienceImprovements": [
    {{"company": "exact company name", "position": "exact title", "original": [], "tailored": ["bullet", "bullet"]}}
  ],
  "skillsImprovements": {{"skillsToAdd": [], "skillsToEmphasize": []}},
  "keywordSuggestions": [],
  "generalAdvice": ""
}}

Return ONLY the JSON.
"""


def fallback_recommendations(job: Dict[str, Any]) -> Dict[str, Any]:
    title = job.get("title") or "the target role"
    company = job.get("company") or "the target company"
    return {
        "summary": {
            "original": "",
            "tailored": (
                f"Experienced professional with expertise relevant to {title} at {company}. "
                "Proven track record in driving results and managing stakeholder relationships."
            ),
        },
        "experienceImprovements": [],
        "skillsImprovements": {
            "skillsToAdd": ["Communication", "Leadership", "Strategic Planning"],
            "skillsToEmphasize": ["Problem Solving", "Team Management"],
        },
        "keywordSuggestions": ["leadership", "strategy", "results", "collaboration"],
        "generalAdvice": f"Focus on highlighting experience relevant to {title} at {company}.",
    }


def tailored_name(name: str, job_title: str, company: str) -> str:
    return f"{TAILORED_NAME_PREFIX} {name} for {job_title} at {company}"


def tailored_for_job(job: Dict[str, Any], original_document_id: str) -> Dict[str, Any]:
    return {
        "jobId": job.get("id"),
        "jobTitle": job.get("title"),
        "company": job.get("company"),
        "originalResumeId": original_document_id,
    }


def _match_experience(record: StructuredRecord, improvement: Dict[str, Any], fallback: int) -> Optional[int]:
    company = str(improvement.get("company") or "").strip().lower()
    position = str(improvement.get("position") or "").strip().lower()
    for i, entry in enumerate(record.experience):
        if company and (entry.company or "").strip().lower() == company:
            if not position or (entry.title or "").strip().lower() == position:
                return i
    for i, entry in enumerate(record.experience):
        if position and (entry.title or "").strip().lower() == position:
            return i
    return fallback if fallback < len(record.experience) else None


def commands_from_recommendations(
    record: StructuredRecord,
    recommendations: Dict[str, Any],
    job_id: Any = None,
) -> List[Dict[str, Any]]:
    """Translate a recommendations payload into change commands."""
    commands: List[Dict[str, Any]] = []

    summary = recommendations.get("summary")
    if isinstance(summary, dict) and isinstance(summary.get("tailored"), str) and summary["tailored"].strip():
        commands.append({
            "section": "summary",
            "action": "update",
            "newValue": summary["tailored"].strip(),
            "reason": "Summary tailored to the target job",
        })

    for position, improvement in enumerate(recommendations.get("experienceImprovements") or []):
        if not isinstance(improvement, dict):
            continue
        bullets = [b for b in improvement.get("tailored") or [] if isinstance(b, str) and b.strip()]
        index = _match_experience(record, improvement, position)
        if not bullets or index is None:
            continue
        commands.append({
            "section": "experience",
            "action": "enhance",
            "target": str(index),
            "field": "highlights",
            "newValue": bullets,
            "reason": f"Tailored achievements for {improvement.get('position') or 'position'}",
        })

    skills = recommendations.get("skillsImprovements") or {}
    to_add = [s for s in skills.get("skillsToAdd") or [] if isinstance(s, str) and s.strip()]
    if to_add:
        commands.append({
            "section": "skills",
            "action": "add",
            "newValue": [
                {
                    "name": name.strip(),
                    "level": TAILORED_SKILL_LEVEL,
                    "addedForJob": str(job_id) if job_id is not None else None,
                }
                for name in to_add
            ],
            "reason": f"Added {len(to_add)} skills relevant to the job",
        })
    return commands


def emphasize_skills(record: StructuredRecord, names: List[str]) -> StructuredRecord:
    """Move the named skills to the front, keeping the order of everything else."""
    wanted = [str(n).strip().lower() for n in names or [] if str(n).strip()]
    if not wanted:
        return record
    rank = {name: i for i, name in enumerate(wanted)}
    first = sorted(
        (s for s in record.skills if s.name.lower() in rank),
        key=lambda s: rank[s.name.lower()],
    )
    rest = [s for s in record.skills if s.name.lower() not in rank]
    return record.model_copy(update={"skills": first + rest})


class TailoringRecommender:
    """Recommendations for tailoring one résumé to one job"""

    def __init__(self, completion: CompletionService, max_tokens: int = 4500, temperature: float = 0.3):
        self.completion = completion
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def recommend(self, record: StructuredRecord, job: Dict[str, Any]) -> Dict[str, Any]:
        prompt = RECOMMENDATIONS_PROMPT.format(
            title=job.get("title") or "",
            company=job.get("company") or "",
            resume_json=json.dumps(record.to_json(), indent=2),
            description=(job.get("description") or "")[:8000],
        )
        raw = await self.completion.complete(
            prompt,
            system_message=SYSTEM_MESSAGE,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        recommendations, strategy = recover_json_object(raw)
        if recommendations is None:
            logger.warning("tailoring.fallback", extra={"strategy": "fallback"})
            return fallback_recommendations(job)

        logger.info(
            "tailoring.recommendations",
            extra={"strategy": strategy, "count": len(recommendations.get("experienceImprovements") or [])},
        )
        return recommendations
