"""
Score normalization policy.

The model proposes an overall and ATS score; normalize_scores() bounds them by
deterministic content signals so that template résumés, unquantified
experience and untailored documents cannot score near-perfect.

assess_content() computes those signals from a StructuredRecord.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from resume_engine.schemas.resume import StructuredRecord

EXCELLENT = "excellent"
GOOD = "good"
FAIR = "fair"
POOR = "poor"
QUALITY_TIERS = (EXCELLENT, GOOD, FAIR, POOR)

PLACEHOLDER_OVERALL_CAP = 15
PLACEHOLDER_ATS_CAP = 20
UNQUANTIFIED_OVERALL_CAP = 35
UNQUANTIFIED_ATS_CAP = 40
POOR_OVERALL_CAP = 25
POOR_ATS_CAP = 30

OVERALL_CEILING = {False: 85, True: 95}
ATS_CEILING = {False: 80, True: 90}

MAX_TAILORED_BONUS = 5
QUANTIFIED_BONUS = 2
TIER_BONUS = {EXCELLENT: 3, GOOD: 2, FAIR: 1, POOR: 0}

CATEGORY_NAMES = ("skills", "experience", "education")


@dataclass(frozen=True)
class NormalizedScores:
    overall: int
    ats: int
    categories: Dict[str, int] = field(default_factory=dict)


def _to_number(value, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 0.0), 100.0)


def _round(value: float) -> int:
    return int(round(value))


def normalize_scores(
    overall,
    ats,
    *,
    is_tailored: bool,
    has_placeholders: bool,
    has_quantified_achievements: bool,
    quality_tier: str,
    category_scores: Optional[Dict[str, float]] = None,
) -> NormalizedScores:
    """Bound model-proposed scores by content signals. Pure and deterministic."""
    overall_value = _to_number(overall)
    ats_value = _to_number(ats)
    categories = {
        name: _to_number((category_scores or {}).get(name), default=overall_value)
        for name in CATEGORY_NAMES
    }

    if has_placeholders:
        return NormalizedScores(
            overall=_round(min(overall_value, PLACEHOLDER_OVERALL_CAP)),
            ats=_round(min(ats_value, PLACEHOLDER_ATS_CAP)),
            categories={k: _round(min(v, PLACEHOLDER_OVERALL_CAP)) for k, v in categories.items()},
        )

    if not has_quantified_achievements:
        overall_value = min(overall_value, UNQUANTIFIED_OVERALL_CAP)
        ats_value = min(ats_value, UNQUANTIFIED_ATS_CAP)

    if quality_tier == POOR:
        overall_value = min(overall_value, POOR_OVERALL_CAP)
        ats_value = min(ats_value, POOR_ATS_CAP)

    overall_ceiling = OVERALL_CEILING[bool(is_tailored)]
    ats_ceiling = ATS_CEILING[bool(is_tailored)]
    overall_value = min(overall_value, overall_ceiling)
    ats_value = min(ats_value, ats_ceiling)

    if is_tailored:
        bonus = TIER_BONUS.get(quality_tier, 0)
        if has_quantified_achievements:
            bonus += QUANTIFIED_BONUS
        bonus = min(bonus, MAX_TAILORED_BONUS)
        overall_value = min(overall_value + bonus, overall_ceiling)
        ats_value = min(ats_value + bonus, ats_ceiling)

    return NormalizedScores(
        overall=_round(overall_value),
        ats=_round(ats_value),
        categories={k: _round(min(v, overall_ceiling)) for k, v in categories.items()},
    )


# ========== Content-quality rubric ==========

PLACEHOLDER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bbullet [1-5]\b",
        r"\bbullet point\b",
        r"\badd content\b",
        r"\bplaceholder\b",
        r"\blorem ipsum\b",
        r"\bexample text\b",
        r"\bsample text\b",
        r"\bgeneric content\b",
    )
]

NUMERAL = re.compile(r"\d+")
PERCENTAGE = re.compile(r"\d+(?:\.\d+)?\s*%|\bpercent\b", re.IGNORECASE)
MONEY_OR_GROWTH = re.compile(
    r"\$|€|£|\brevenue\b|\bmillion\b|\bbillion\b|\bthousand\b|\bincreas\w*|\bdecreas\w*"
    r"|\bimprov\w*|\bgrowth\b|\bgrew\b|\breduc\w*|\bsav(?:ed|ings)\b",
    re.IGNORECASE,
)

ACTION_VERBS = {
    "achieved", "architected", "automated", "built", "created", "delivered",
    "designed", "developed", "drove", "established", "executed", "generated",
    "implemented", "improved", "increased", "launched", "led", "managed",
    "mentored", "migrated", "optimized", "orchestrated", "owned", "reduced",
    "redesigned", "scaled", "shipped", "spearheaded", "streamlined", "negotiated",
}

TECHNICAL_TERMS = {
    "api", "apis", "aws", "azure", "gcp", "cloud", "kubernetes", "docker",
    "python", "java", "javascript", "typescript", "go", "rust", "sql",
    "postgresql", "mysql", "mongodb", "redis", "kafka", "spark", "react",
    "node", "terraform", "ci/cd", "microservices", "infrastructure",
    "platform", "security", "architecture", "machine", "learning", "ml",
    "data", "analytics", "pipeline", "linux", "devops", "graphql", "rest",
}

_WORD = re.compile(r"[A-Za-z][A-Za-z/+#.]*")


@dataclass(frozen=True)
class ContentAssessment:
    has_placeholders: bool
    has_quantified_achievements: bool
    quality_tier: str
    action_verb_count: int
    technical_term_density: float


def _achievement_texts(record: StructuredRecord) -> List[str]:
    texts = []
    for entry in record.experience:
        texts.append(entry.description or "")
        texts.extend(entry.highlights)
    for project in record.projects:
        texts.append(project.description or "")
    return [t for t in texts if t]


def _quality_tier(points: int) -> str:
    if points >= 6:
        return EXCELLENT
    if points >= 4:
        return GOOD
    if points >= 2:
        return FAIR
    return POOR


def assess_text(texts: Iterable[str], summary: str = "") -> ContentAssessment:
    achievements = "\n".join(texts)
    everything = f"{summary}\n{achievements}"

    has_placeholders = any(p.search(everything) for p in PLACEHOLDER_PATTERNS)

    has_numerals = bool(NUMERAL.search(achievements))
    has_percentages = bool(PERCENTAGE.search(achievements))
    has_money_or_growth = bool(MONEY_OR_GROWTH.search(achievements))
    has_quantified = has_numerals or has_percentages or has_money_or_growth

    words = [w.lower().rstrip(".") for w in _WORD.findall(everything)]
    verb_count = sum(1 for w in words if w in ACTION_VERBS)
    tech_count = sum(1 for w in words if w in TECHNICAL_TERMS)
    density = (tech_count / len(words)) if words else 0.0

    points = int(has_numerals) + int(has_percentages) + int(has_money_or_growth)
    if verb_count >= 5:
        points += 2
    elif verb_count >= 2:
        points += 1
    if density >= 0.03:
        points += 2
    elif density >= 0.01:
        points += 1

    return ContentAssessment(
        has_placeholders=has_placeholders,
        has_quantified_achievements=has_quantified,
        quality_tier=_quality_tier(points),
        action_verb_count=verb_count,
        technical_term_density=round(density, 4),
    )


def assess_content(record: StructuredRecord) -> ContentAssessment:
    """Derive placeholder, quantification and quality-tier signals from a record."""
    return assess_text(_achievement_texts(record), record.summary or "")
