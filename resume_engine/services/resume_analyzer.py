"""
Résumé critique: the completion model proposes scores and feedback, the
content rubric and score normalizer decide the final numbers.
"""
import json
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from resume_engine.schemas.resume import Analysis, StructuredRecord
from resume_engine.services.llm_client import CompletionService
from resume_engine.services.score_normalizer import assess_content, normalize_scores
from resume_engine.utils.json_recovery import recover_json_object
from resume_engine.utils.logger import get_logger

logger = get_logger("analyzer")

SYSTEM_MESSAGE = (
    "You are a strict resume analyst and ATS expert. Most resumes are mediocre and should "
    "score between 50 and 75. Return ONLY valid JSON without markdown."
)

ANALYSIS_PROMPT = """{tailored_context}Analyze this resume with strict professional standards.

Placeholder text such as "Bullet 1" or "Generic content" is a major red flag.
Achievements must carry specific numbers, percentages or metrics; generic statements are weak.

Provide the analysis in JSON format:
{{
  "overallScore": 0-100,
  "atsCompatibility": 0-100,
  "categoryScores": {{"skills": 0-100, "experience": 0-100, "education": 0-100}},
  "profileSummary": {{
    "currentRole": "", "careerLevel": "", "industries": [],
    "suggestedJobTitles": [], "suggestedIndustries": []
  }},
  "strengths": [], "weaknesses": [], "keywordsSuggestions": [],
  "improvementAreas": [
    {{"section": "", "suggestions": [], "improvedSnippets": [{{"original": "", "improved": ""}}]}}
  ]
}}

Scoring guide: 90-100 exceptional, 80-89 strong, 70-79 decent, 60-69 below average,
50-59 poor, below 50 major issues. Only exceptional resumes score above 85.

Return ONLY the JSON object.

Resume Data:
{resume_json}
"""

FALLBACK_ANALYSIS: Dict[str, Any] = {
    "overallScore": 45,
    "atsCompatibility": 55,
    "profileSummary": {
        "currentRole": "Not identified",
        "careerLevel": "Mid-level",
        "industries": [],
        "suggestedJobTitles": [],
        "suggestedIndustries": [],
    },
    "strengths": ["Resume has a clear structure"],
    "weaknesses": [
        "Lacks quantifiable metrics and business impact",
        "Needs more industry-specific keywords",
    ],
    "keywordsSuggestions": ["leadership", "project management", "data analysis"],
    "improvementAreas": [
        {
            "section": "Experience",
            "suggestions": [
                "Add metrics like percentages, dollar amounts, team sizes",
                "Include specific technologies and methodologies used",
            ],
            "improvedSnippets": [],
        }
    ],
}

PLACEHOLDER_WEAKNESS = "Contains placeholder content that must be replaced with real achievements"
UNQUANTIFIED_WEAKNESS = "Achievements lack numbers, percentages or monetary impact"


def _string_list(value: Any, limit: int = 10) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()][:limit]


def _sanitize(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the model's feedback in schema shape; scores are decided later."""
    profile = data.get("profileSummary") if isinstance(data.get("profileSummary"), dict) else {}
    areas = []
    for area in data.get("improvementAreas") or []:
        if not isinstance(area, dict):
            continue
        snippets = [
            {"original": str(s.get("original", "")), "improved": str(s.get("improved", ""))}
            for s in area.get("improvedSnippets") or []
            if isinstance(s, dict)
        ]
        areas.append({
            "section": str(area.get("section", "")),
            "suggestions": _string_list(area.get("suggestions")),
            "improvedSnippets": snippets,
        })
    return {
        "profileSummary": {
            "currentRole": str(profile.get("currentRole") or ""),
            "careerLevel": str(profile.get("careerLevel") or ""),
            "industries": _string_list(profile.get("industries")),
            "suggestedJobTitles": _string_list(profile.get("suggestedJobTitles")),
            "suggestedIndustries": _string_list(profile.get("suggestedIndustries")),
        },
        "strengths": _string_list(data.get("strengths")),
        "weaknesses": _string_list(data.get("weaknesses")),
        "keywordsSuggestions": _string_list(data.get("keywordsSuggestions"), limit=20),
        "improvementAreas": areas,
    }


def build_analysis(
    proposal: Dict[str, Any],
    record: StructuredRecord,
    is_tailored: bool = False,
) -> Analysis:
    """Combine a model proposal with the content rubric into a bounded Analysis."""
    signals = assess_content(record)
    categories = proposal.get("categoryScores") if isinstance(proposal.get("categoryScores"), dict) else None
    scores = normalize_scores(
        proposal.get("overallScore"),
        proposal.get("atsCompatibility"),
        is_tailored=is_tailored,
        has_placeholders=signals.has_placeholders,
        has_quantified_achievements=signals.has_quantified_achievements,
        quality_tier=signals.quality_tier,
        category_scores=categories,
    )

    feedback = _sanitize(proposal)
    if signals.has_placeholders and PLACEHOLDER_WEAKNESS not in feedback["weaknesses"]:
        feedback["weaknesses"].insert(0, PLACEHOLDER_WEAKNESS)
    if not signals.has_quantified_achievements and UNQUANTIFIED_WEAKNESS not in feedback["weaknesses"]:
        feedback["weaknesses"].append(UNQUANTIFIED_WEAKNESS)

    return Analysis.model_validate({
        **feedback,
        "overallScore": scores.overall,
        "atsCompatibility": scores.ats,
        "categoryScores": scores.categories,
        "contentSignals": {
            "hasPlaceholders": signals.has_placeholders,
            "hasQuantifiedAchievements": signals.has_quantified_achievements,
            "qualityTier": signals.quality_tier,
            "actionVerbCount": signals.action_verb_count,
            "technicalTermDensity": signals.technical_term_density,
        },
    })


class ResumeAnalyzer:
    """Score and critique a StructuredRecord"""

    def __init__(self, completion: CompletionService, max_tokens: int = 3000, temperature: float = 0.1):
        self.completion = completion
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def analyze(
        self,
        record: StructuredRecord,
        is_tailored: bool = False,
        tailored_for: Optional[Dict[str, Any]] = None,
    ) -> Analysis:
        tailored_context = ""
        if is_tailored and tailored_for:
            tailored_context = (
                f"This resume was tailored for {tailored_for.get('jobTitle') or 'a specific role'} "
                f"at {tailored_for.get('company') or 'a target company'}. "
            )
        prompt = ANALYSIS_PROMPT.format(
            tailored_context=tailored_context,
            resume_json=json.dumps(record.to_json(), indent=2),
        )
        raw = await self.completion.complete(
            prompt,
            system_message=SYSTEM_MESSAGE,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

        proposal, strategy = recover_json_object(raw)
        if proposal is None:
            logger.warning("analyzer.fallback", extra={"strategy": "fallback"})
            proposal = FALLBACK_ANALYSIS

        try:
            analysis = build_analysis(proposal, record, is_tailored=is_tailored)
        except ValidationError as e:
            logger.warning(f"Analysis failed validation, using fallback: {e.error_count()} errors")
            analysis = build_analysis(FALLBACK_ANALYSIS, record, is_tailored=is_tailored)

        logger.info(
            f"Analysis scored {analysis.overall_score}/{analysis.ats_compatibility}",
            extra={"strategy": strategy or "fallback"},
        )
        return analysis


def onboarding_summary(analysis: Dict[str, Any], limit: int = 3) -> Dict[str, Any]:
    """Headline view of a stored analysis for a user's first résumé"""
    areas = [a for a in analysis.get("improvementAreas") or [] if isinstance(a, dict)]
    return {
        "overallScore": analysis.get("overallScore", 0),
        "atsCompatibility": analysis.get("atsCompatibility", 0),
        "profileSummary": analysis.get("profileSummary") or {},
        "topStrengths": _string_list(analysis.get("strengths"), limit=limit),
        "topImprovements": [
            {"section": a.get("section", ""), "suggestion": (a.get("suggestions") or [""])[0]}
            for a in areas[:limit]
        ],
        "keywordsSuggestions": _string_list(analysis.get("keywordsSuggestions"), limit=limit * 2),
    }
