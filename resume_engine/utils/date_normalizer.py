"""
Smart date normalization for résumé fields.

Model output and hand-written résumés express dates in many shapes
("Jan 2020", "03/2019", "2018", "Present"). normalize_date() maps them to a
datetime.date or to one of two sentinel tokens, and leaves anything it cannot
read untouched.
"""
import re
from datetime import date, datetime
from typing import Any

PRESENT = "Present"
NEVER = "Never"

ONGOING_PHRASES = {"present", "current", "currently", "ongoing", "now", "today", "to date"}
NEVER_PHRASES = {
    "never",
    "never expires",
    "permanent",
    "lifetime",
    "no expiration",
    "no expiry",
    "does not expire",
    "n/a - never expires",
}

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_MM_YYYY = re.compile(r"^(\d{1,2})\s*/\s*(\d{4})$")
_YYYY_MM = re.compile(r"^(\d{4})-(\d{1,2})$")
_YYYY = re.compile(r"^(\d{4})$")
_MONTH_YYYY = re.compile(r"^([A-Za-z]+)\.?,?\s+(\d{4})$")


def _month_date(year: int, month: int):
    if 1 <= month <= 12 and 1000 <= year <= 9999:
        return date(year, month, 1)
    return None


def _parse_direct(value: str):
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def normalize_date(value: Any) -> Any:
    """
    Normalize a date-like value.

    Returns "Present" or "Never" for recognised phrases, a date for anything
    that parses directly or matches MM/YYYY, YYYY-MM, YYYY or "Month YYYY",
    and the input unchanged otherwise. Never raises.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date) or not isinstance(value, str):
        return value

    text = value.strip()
    if not text:
        return value

    lowered = text.lower()
    if lowered in ONGOING_PHRASES:
        return PRESENT
    if lowered in NEVER_PHRASES:
        return NEVER

    parsed = _parse_direct(text)
    if parsed is not None:
        return parsed

    match = _MM_YYYY.match(text)
    if match:
        return _month_date(int(match.group(2)), int(match.group(1))) or value

    match = _YYYY_MM.match(text)
    if match:
        return _month_date(int(match.group(1)), int(match.group(2))) or value

    match = _YYYY.match(text)
    if match:
        return _month_date(int(match.group(1)), 1) or value

    match = _MONTH_YYYY.match(text)
    if match:
        month = MONTHS.get(match.group(1).lower())
        if month:
            return _month_date(int(match.group(2)), month) or value

    return value
