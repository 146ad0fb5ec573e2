"""
AI-directed résumé edits.

A natural-language instruction becomes change commands through the completion
model; ATS optimization asks the model for optimizations first and feeds them
back through the same instruction path. compare_before_after is the one
before/after comparison used by edits and optimization runs alike.
"""
import json
import re
from typing import Any, Dict, List, Optional

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services.llm_client import CompletionService
from resume_engine.utils.json_recovery import recover_json_object
from resume_engine.utils.logger import get_logger

logger = get_logger("editor")

CHANGE_SYSTEM_MESSAGE = (
    "You are an expert resume editor. Generate ONE comprehensive change action with an "
    "array of detailed bullet points. Return only valid JSON."
)

CHANGE_PROMPT = """Parse this change request and convert it into structured JSON changes.

CURRENT RESUME DATA:
{resume_json}

CHANGE REQUEST:
"{instruction}"

When updating work experience highlights, generate ONE action that replaces the whole
highlights array with 3-5 detailed bullet points.

Return JSON in this format:
{{
  "changes": [
    {{
      "section": "contactInfo|summary|experience|education|skills|certifications|projects|languages",
      "action": "add|update|delete|enhance",
      "target": "0",
      "field": "highlights",
      "newValue": ["Detailed bullet with specific metrics", "..."],
      "reason": "why"
    }}
  ]
}}

Rules:
- Use action "enhance" for improving existing experience and field "highlights" for bullet points
- Each bullet should be 15-25 words with strong action verbs and quantified impact
- "target" is the zero-based entry index, optionally followed by "/field"

Return ONLY the JSON object.
"""

ATS_SYSTEM_MESSAGE = (
    "You are an ATS optimization expert. Provide specific, actionable suggestions to improve "
    "resume ATS compatibility. Return only valid JSON."
)

ATS_PROMPT = """Analyze this resume and provide specific optimizations to improve ATS compatibility.

CURRENT RESUME DATA:
{resume_json}
{target_job}
Provide ATS optimizations in this JSON format:
{{
  "optimizations": [
    {{
      "section": "summary|experience|skills|education",
      "type": "keyword_addition|format_improvement|section_enhancement|ats_formatting",
      "change": "specific change to make",
      "reason": "why this improves ATS score",
      "keywords": [],
      "priority": "high|medium|low"
    }}
  ]
}}

Focus on adding relevant keywords naturally, optimizing bullet point structure and
enhancing skill descriptions.

Return ONLY the JSON object.
"""

# Terms counted when reporting keywords added by an edit
COMPARISON_KEYWORDS = ("api", "cloud", "agile", "leadership", "development", "management", "strategy", "security")


def optimizations_instruction(optimizations: List[Dict[str, Any]]) -> str:
    changes = [str(o.get("change")).strip() for o in optimizations if isinstance(o, dict) and o.get("change")]
    return "Apply these ATS optimizations: " + ". ".join(changes)


def count_new_keywords(before: Dict[str, Any], after: Dict[str, Any]) -> int:
    before_text = json.dumps(before or {}).lower()
    after_text = json.dumps(after or {}).lower()
    added = 0
    for keyword in COMPARISON_KEYWORDS:
        pattern = re.compile(re.escape(keyword))
        delta = len(pattern.findall(after_text)) - len(pattern.findall(before_text))
        if delta > 0:
            added += delta
    return added


def _score(analysis: Optional[Dict[str, Any]], key: str) -> int:
    return int((analysis or {}).get(key) or 0)


def compare_before_after(
    before_record: Dict[str, Any],
    after_record: Dict[str, Any],
    before_analysis: Optional[Dict[str, Any]] = None,
    after_analysis: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Section-level diff of two record snapshots plus the score movement."""
    changes: List[Dict[str, Any]] = []
    sections_modified = 0

    before_exp = before_record.get("experience") or []
    after_exp = after_record.get("experience") or []
    for index, original in enumerate(before_exp):
        if index >= len(after_exp):
            break
        updated = after_exp[index]
        context = {
            "section": "experience",
            "jobTitle": original.get("title") or "Position",
            "company": original.get("company") or "Company",
        }
        if (original.get("highlights") or []) != (updated.get("highlights") or []):
            changes.append({
                **context,
                "field": "highlights",
                "before": original.get("highlights") or [],
                "after": updated.get("highlights") or [],
                "changeType": "enhanced",
            })
            sections_modified += 1
        if (original.get("description") or "") != (updated.get("description") or ""):
            changes.append({
                **context,
                "field": "description",
                "before": original.get("description") or "",
                "after": updated.get("description") or "",
                "changeType": "optimized",
            })

    for section, change_type in (("summary", "rewritten"), ("skills", "expanded")):
        before_value = before_record.get(section)
        after_value = after_record.get(section)
        if before_value != after_value:
            changes.append({
                "section": section,
                "field": section,
                "before": before_value,
                "after": after_value,
                "changeType": change_type,
            })
            sections_modified += 1

    scores = {
        "before": {
            "overallScore": _score(before_analysis, "overallScore"),
            "atsCompatibility": _score(before_analysis, "atsCompatibility"),
        },
        "after": {
            "overallScore": _score(after_analysis, "overallScore"),
            "atsCompatibility": _score(after_analysis, "atsCompatibility"),
        },
    }
    improvement = scores["after"]["atsCompatibility"] - scores["before"]["atsCompatibility"]
    summary_text = (
        f"Enhanced {sections_modified} section{'s' if sections_modified != 1 else ''} "
        f"with {len(changes)} improvement{'s' if len(changes) != 1 else ''}"
    )
    if after_analysis is not None and improvement > 0:
        summary_text += f", boosting ATS score by {improvement}%"

    return {
        "scores": scores,
        "changes": changes,
        "summary": {
            "sectionsModified": sections_modified,
            "improvementsCount": len(changes),
            "keywordsAdded": count_new_keywords(before_record, after_record),
        },
        "summaryText": summary_text,
    }


class ResumeEditor:
    def __init__(self, completion: CompletionService, temperature: float = 0.3):
        self.completion = completion
        self.temperature = temperature

    async def parse_change_request(self, instruction: str, record: StructuredRecord) -> List[Dict[str, Any]]:
        """Natural-language instruction to raw change commands. Unparseable output yields none."""
        raw = await self.completion.complete(
            CHANGE_PROMPT.format(resume_json=json.dumps(record.to_json(), indent=2), instruction=instruction),
            system_message=CHANGE_SYSTEM_MESSAGE,
            max_tokens=2000,
            temperature=self.temperature,
        )
        parsed, strategy = recover_json_object(raw)
        changes = parsed.get("changes") if parsed else None
        if not isinstance(changes, list):
            logger.warning("editor.no_changes", extra={"strategy": strategy or "none"})
            return []
        logger.info("editor.changes_parsed", extra={"strategy": strategy, "count": len(changes)})
        return changes

    async def generate_ats_optimizations(
        self,
        record: StructuredRecord,
        target_job: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        job_block = ""
        if target_job:
            job_block = (
                f"\nTARGET JOB:\nTitle: {target_job.get('title') or ''}\n"
                f"Company: {target_job.get('company') or ''}\n"
                f"Description: {(target_job.get('description') or '')[:6000]}\n"
            )
        raw = await self.completion.complete(
            ATS_PROMPT.format(resume_json=json.dumps(record.to_json(), indent=2), target_job=job_block),
            system_message=ATS_SYSTEM_MESSAGE,
            max_tokens=1500,
            temperature=self.temperature,
        )
        parsed, _ = recover_json_object(raw)
        optimizations = parsed.get("optimizations") if parsed else None
        if not isinstance(optimizations, list):
            logger.warning("editor.no_optimizations")
            return []
        return [o for o in optimizations if isinstance(o, dict)]
