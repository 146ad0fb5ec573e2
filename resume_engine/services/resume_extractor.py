"""
Structured-data extraction: raw résumé text -> StructuredRecord.

The completion model is asked for a fixed JSON schema. Whatever comes back is
run through the JSON recovery chain; if that fails the high-value fields are
pulled out with regexes, and if even that fails a sentinel record explains the
failure to the user. extract() only raises for provider/transport errors.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services.llm_client import CompletionService
from resume_engine.utils.date_normalizer import normalize_date
from resume_engine.utils.json_recovery import recover_json_object
from resume_engine.utils.logger import get_logger

logger = get_logger("extractor")

MAX_INPUT_TOKENS = 8000
MAX_INPUT_CHARS = MAX_INPUT_TOKENS * 4

STRATEGY_REGEX = "regex_fields"
STRATEGY_SENTINEL = "sentinel"

PARSING_ERROR_NAME = "Parsing Error"
PARSING_ERROR_SUMMARY = "Error parsing resume. Please try again or contact support."

SYSTEM_MESSAGE = (
    "You are an expert resume parser that extracts structured information from resume text. "
    "Be precise and thorough. Return ONLY valid JSON without any markdown formatting or code blocks."
)

EXTRACTION_PROMPT = """Extract structured information from the following {file_type} resume text.
Provide the information in JSON format with the following structure:
{{
  "contactInfo": {{"name": "", "email": "", "phone": "", "location": "", "websites": []}},
  "summary": "",
  "experience": [
    {{"company": "", "title": "", "location": "", "startDate": "", "endDate": "",
      "description": "", "highlights": [], "skills": []}}
  ],
  "education": [
    {{"institution": "", "degree": "", "field": "", "startDate": "", "endDate": "",
      "gpa": null, "highlights": []}}
  ],
  "skills": [{{"name": "", "level": "", "yearsOfExperience": null}}],
  "certifications": [{{"name": "", "issuer": "", "dateObtained": "", "expirationDate": ""}}],
  "languages": [{{"language": "", "proficiency": ""}}],
  "projects": [{{"name": "", "description": "", "url": "", "startDate": "", "endDate": "", "technologies": []}}]
}}

For dates, use YYYY-MM-DD when possible, or "Present" for a current position.
If information is not available, leave it as an empty string or null; use [] for empty arrays.
Put each achievement bullet in "highlights", not in "description".
For skill levels, use one of: "Beginner", "Intermediate", "Advanced", or "Expert".

Return ONLY the JSON object.

Resume Text:
{text}
"""

# Bullet glyphs and numbered-list markers at the start of a line
BULLET_LINE = re.compile(r"^\s*(?:[-•*>→▪◦‣]\s*|\d{1,2}[.)]\s+)")

_NAME_FIELD = re.compile(r'"name"\s*:\s*"((?:[^"\\]|\\.)*)"')
_EMAIL_FIELD = re.compile(r'"email"\s*:\s*"((?:[^"\\]|\\.)*)"')
_SUMMARY_FIELD = re.compile(r'"summary"\s*:\s*"((?:[^"\\]|\\.)*)"')
_EMAIL_ANYWHERE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

DATE_FIELDS = {
    "experience": ("startDate", "endDate"),
    "education": ("startDate", "endDate"),
    "certifications": ("dateObtained", "expirationDate", "validUntil"),
    "projects": ("startDate", "endDate"),
}


def parsing_error_record() -> StructuredRecord:
    """Sentinel record returned when nothing usable could be recovered"""
    return StructuredRecord.model_validate({
        "contactInfo": {"name": PARSING_ERROR_NAME},
        "summary": PARSING_ERROR_SUMMARY,
    })


def is_parsing_error(record: StructuredRecord) -> bool:
    return record.contact_info.name == PARSING_ERROR_NAME and record.summary == PARSING_ERROR_SUMMARY


def _unescape(value: str) -> str:
    return value.replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\").strip()


def extract_minimal_fields(raw: str) -> Optional[Dict[str, Any]]:
    """Regex out name, email and summary from output that is not valid JSON"""
    name = _NAME_FIELD.search(raw)
    email = _EMAIL_FIELD.search(raw) or _EMAIL_ANYWHERE.search(raw)
    summary = _SUMMARY_FIELD.search(raw)
    if not (name or email or summary):
        return None

    def _value(match):
        if not match:
            return ""
        return _unescape(match.group(1) if match.groups() else match.group(0))

    return {
        "contactInfo": {"name": _value(name), "email": _value(email)},
        "summary": _value(summary),
    }


def split_highlights(description: str) -> Tuple[str, List[str]]:
    """Separate bullet lines from prose. Returns (description, highlights)."""
    remaining: List[str] = []
    highlights: List[str] = []
    for line in (description or "").splitlines():
        if not line.strip():
            continue
        marker = BULLET_LINE.match(line)
        if not marker:
            remaining.append(line.strip())
        elif line[marker.end():].strip():
            highlights.append(line[marker.end():].strip())
    return "\n".join(remaining), highlights


def _normalize_entry_dates(entry: Dict[str, Any], fields) -> None:
    for name in fields:
        if name in entry and entry[name] not in (None, ""):
            entry[name] = normalize_date(entry[name])


def post_process(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize dates and move bullet lines into highlights. Mutates and returns data."""
    for section, fields in DATE_FIELDS.items():
        entries = data.get(section)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if isinstance(entry, dict):
                _normalize_entry_dates(entry, fields)

    for section in ("experience", "education"):
        for entry in data.get(section) or []:
            if not isinstance(entry, dict) or entry.get("highlights"):
                continue
            description = entry.get("description")
            if not isinstance(description, str):
                continue
            remaining, highlights = split_highlights(description)
            if highlights:
                entry["description"] = remaining
                entry["highlights"] = highlights

    for entry in data.get("experience") or []:
        if isinstance(entry, dict) and entry.get("endDate") == "Present":
            entry["current"] = True
    return data


def _to_record(data: Dict[str, Any]) -> Optional[StructuredRecord]:
    try:
        return StructuredRecord.model_validate(post_process(data))
    except ValidationError as e:
        logger.warning(f"Recovered JSON failed schema validation: {e.error_count()} errors")
        return None


def record_from_model_output(raw: Optional[str]) -> Tuple[StructuredRecord, str]:
    """Run the four-strategy recovery chain over model output. Never raises."""
    data, strategy = recover_json_object(raw)
    if data is not None:
        record = _to_record(data)
        if record is not None:
            return record, strategy

    minimal = extract_minimal_fields(raw or "")
    if minimal is not None:
        record = _to_record(minimal)
        if record is not None:
            return record, STRATEGY_REGEX

    return parsing_error_record(), STRATEGY_SENTINEL


class ResumeExtractor:
    """Turn raw résumé text into a StructuredRecord via the completion service"""

    def __init__(self, completion: CompletionService, max_tokens: int = 4000, temperature: float = 0.2):
        self.completion = completion
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def extract(self, text: str, file_type: str) -> StructuredRecord:
        if len(text) > MAX_INPUT_CHARS:
            logger.info(f"Resume text is {len(text)} characters, truncating to {MAX_INPUT_CHARS}")
            text = text[:MAX_INPUT_CHARS]

        prompt = EXTRACTION_PROMPT.format(file_type=file_type, text=text)
        raw = await self.completion.complete(
            prompt,
            system_message=SYSTEM_MESSAGE,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        record, strategy = record_from_model_output(raw)
        log_fn = logger.warning if strategy in (STRATEGY_REGEX, STRATEGY_SENTINEL) else logger.info
        log_fn(
            "extractor.recovered",
            extra={
                "strategy": strategy,
                "count": len(record.experience),
            },
        )
        return record
