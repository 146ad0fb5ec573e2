"""
Change-application engine for AI-directed edits and tailoring.

A change command is {section, action, target, field, newValue, reason}. Raw
commands are parsed into one pydantic class per section (discriminated on
"section") and dispatched to that section's handler. Commands are applied one
at a time to a copy of the record; a command that is malformed, addresses a
missing entry, or leaves the record failing schema validation is logged and
skipped without affecting the rest of the batch.

    result = apply_changes(record, [
        {"section": "summary", "action": "update", "newValue": "Platform engineer ..."},
        {"section": "experience", "action": "enhance", "target": "0", "newValue": ["Led ...", "Cut ..."]},
    ])
"""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from typing_extensions import Annotated

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.utils.logger import get_logger

logger = get_logger("change_engine")

DEFAULT_SKILL_LEVEL = "Intermediate"


class ChangeAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    ENHANCE = "enhance"


class CommandError(ValueError):
    """A well-formed command that cannot be applied to this record."""


# ========== Command types ==========
class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    action: ChangeAction
    target: Optional[str] = None
    field: Optional[str] = None
    new_value: Any = Field(None, alias="newValue")
    reason: Optional[str] = None

    @field_validator("target", "field", mode="before")
    @classmethod
    def stringify(cls, value):
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(int(value))
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("action", mode="before")
    @classmethod
    def lower_action(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ContactInfoChange(_Command):
    section: Literal["contactInfo"]


class SummaryChange(_Command):
    section: Literal["summary"]


class ExperienceChange(_Command):
    section: Literal["experience"]


class EducationChange(_Command):
    section: Literal["education"]


class SkillsChange(_Command):
    section: Literal["skills"]


class CertificationsChange(_Command):
    section: Literal["certifications"]


class ProjectsChange(_Command):
    section: Literal["projects"]


class LanguagesChange(_Command):
    section: Literal["languages"]


COMMAND_TYPES = (
    ContactInfoChange,
    SummaryChange,
    ExperienceChange,
    EducationChange,
    SkillsChange,
    CertificationsChange,
    ProjectsChange,
    LanguagesChange,
)

ChangeCommand = Annotated[Union[COMMAND_TYPES], Field(discriminator="section")]
_command_adapter = TypeAdapter(ChangeCommand)

SECTIONS = tuple(cls.model_fields["section"].annotation.__args__[0] for cls in COMMAND_TYPES)


def parse_command(raw: Any) -> ChangeCommand:
    """Validate one raw command. Raises ValidationError for unknown sections or actions."""
    if isinstance(raw, BaseModel):
        return raw
    return _command_adapter.validate_python(raw)


# ========== Addressing ==========
def parse_target(command: _Command) -> Tuple[Optional[int], Optional[str], Optional[str]]:
    """Split target into (index, field, name). "2/highlights" -> (2, "highlights", None)."""
    target = command.target
    index = None
    path_field = None
    name = None
    if target is not None:
        head, _, tail = target.partition("/")
        head = head.strip()
        if head.lstrip("-").isdigit():
            index = int(head)
        else:
            name = head
        path_field = tail.strip() or None
    return index, command.field or path_field, name


def _entry_at(entries: List[Any], index: Optional[int], section: str) -> Dict[str, Any]:
    if index is None:
        raise CommandError(f"{section} command needs an integer target")
    if not 0 <= index < len(entries):
        raise CommandError(f"{section} index {index} out of range (0..{len(entries) - 1})")
    entry = entries[index]
    if not isinstance(entry, dict):
        raise CommandError(f"{section} entry {index} is not an object")
    return entry


def _as_highlights(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise CommandError("highlights must be a string or a list of strings")


def _set_entry_field(entry: Dict[str, Any], field_name: str, value: Any, append: bool) -> None:
    if field_name == "highlights":
        items = _as_highlights(value)
        if append:
            entry["highlights"] = list(entry.get("highlights") or []) + items
        else:
            entry["highlights"] = items
    else:
        entry[field_name] = value


def _merge_entry(entry: Dict[str, Any], value: Any) -> None:
    if not isinstance(value, dict):
        raise CommandError("whole-entry update needs an object value")
    entry.update(value)


# ========== Section handlers ==========
def _apply_contact_info(data: Dict[str, Any], command: ContactInfoChange) -> None:
    contact = data.setdefault("contactInfo", {})
    index, field_name, name = parse_target(command)
    key = field_name or name
    value = command.new_value

    if key is None:
        if command.action == ChangeAction.DELETE:
            raise CommandError("contactInfo delete needs a field")
        _merge_entry(contact, value)
        return

    if key == "websites":
        websites = list(contact.get("websites") or [])
        if command.action == ChangeAction.ADD:
            additions = value if isinstance(value, list) else [value]
            websites.extend(str(v) for v in additions if v)
        elif command.action == ChangeAction.DELETE:
            if index is not None:
                _entry_at([{}] * len(websites), index, "contactInfo.websites")
                websites.pop(index)
            else:
                websites = [w for w in websites if w != value]
        else:
            websites = value if isinstance(value, list) else websites + [value]
        contact["websites"] = websites
        return

    if command.action == ChangeAction.DELETE:
        contact[key] = ""
    elif command.action == ChangeAction.ADD and contact.get(key):
        logger.info(f"contactInfo.{key} already set, add ignored", extra={"section": "contactInfo"})
    else:
        contact[key] = value


def _apply_summary(data: Dict[str, Any], command: SummaryChange) -> None:
    value = command.new_value
    if command.action == ChangeAction.DELETE:
        data["summary"] = ""
        return
    if not isinstance(value, str):
        raise CommandError("summary value must be text")
    if command.action == ChangeAction.ADD:
        if not (data.get("summary") or "").strip():
            data["summary"] = value
    else:
        data["summary"] = value


def _list_section_handler(section: str) -> Callable[[Dict[str, Any], _Command], None]:
    """Handler shared by the index-addressed list sections."""

    def apply(data: Dict[str, Any], command: _Command) -> None:
        entries = data.setdefault(section, [])
        index, field_name, _ = parse_target(command)
        value = command.new_value

        if command.action == ChangeAction.ADD:
            if index is not None and field_name:
                entry = _entry_at(entries, index, section)
                _set_entry_field(entry, field_name, value, append=True)
            elif isinstance(value, dict):
                entries.append(value)
            elif isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
                entries.extend(value)
            else:
                raise CommandError(f"{section} add needs an object value or an 'index/field' target")

        elif command.action == ChangeAction.UPDATE:
            entry = _entry_at(entries, index, section)
            if field_name:
                _set_entry_field(entry, field_name, value, append=False)
            else:
                _merge_entry(entry, value)

        elif command.action == ChangeAction.ENHANCE:
            entry = _entry_at(entries, index, section)
            if field_name:
                _set_entry_field(entry, field_name, value, append=False)
            elif isinstance(value, list):
                # Bare arrays are achievement lists
                _set_entry_field(entry, "highlights", value, append=False)
            else:
                _merge_entry(entry, value)

        elif command.action == ChangeAction.DELETE:
            _entry_at(entries, index, section)
            entries.pop(index)

    apply.__name__ = f"_apply_{section}"
    return apply


def _skill_entry(value: Any) -> Dict[str, Any]:
    if isinstance(value, str) and value.strip():
        return {"name": value.strip(), "level": DEFAULT_SKILL_LEVEL}
    if isinstance(value, dict) and isinstance(value.get("name"), str) and value["name"].strip():
        return {"level": DEFAULT_SKILL_LEVEL, **value}
    raise CommandError("skill must be a name or an object with a name")


def _find_skill(skills: List[Dict[str, Any]], index: Optional[int], name: Optional[str]) -> int:
    if index is not None:
        _entry_at(skills, index, "skills")
        return index
    if name:
        for i, skill in enumerate(skills):
            if isinstance(skill, dict) and str(skill.get("name", "")).lower() == name.lower():
                return i
        raise CommandError(f"skill {name!r} not found")
    raise CommandError("skills command needs an index or a skill name as target")


def _apply_skills(data: Dict[str, Any], command: SkillsChange) -> None:
    skills = data.setdefault("skills", [])
    index, field_name, name = parse_target(command)
    value = command.new_value

    if command.action == ChangeAction.ADD:
        additions = value if isinstance(value, list) else [value]
        known = {str(s.get("name", "")).lower() for s in skills if isinstance(s, dict)}
        for item in additions:
            entry = _skill_entry(item)
            if entry["name"].lower() not in known:
                skills.append(entry)
                known.add(entry["name"].lower())
        return

    if command.action == ChangeAction.DELETE:
        if index is None and name is None and isinstance(value, str):
            name = value
        skills.pop(_find_skill(skills, index, name))
        return

    position = _find_skill(skills, index, name)
    if field_name:
        skills[position][field_name] = value
    elif isinstance(value, str):
        skills[position]["name"] = value
    else:
        _merge_entry(skills[position], value)


HANDLERS: Dict[type, Callable[[Dict[str, Any], Any], None]] = {
    ContactInfoChange: _apply_contact_info,
    SummaryChange: _apply_summary,
    ExperienceChange: _list_section_handler("experience"),
    EducationChange: _list_section_handler("education"),
    SkillsChange: _apply_skills,
    CertificationsChange: _list_section_handler("certifications"),
    ProjectsChange: _list_section_handler("projects"),
    LanguagesChange: _list_section_handler("languages"),
}

if set(HANDLERS) != set(COMMAND_TYPES):
    raise RuntimeError("every change command type needs exactly one handler")


# ========== Engine ==========
@dataclass
class SkippedChange:
    command: Any
    reason: str


@dataclass
class ChangeResult:
    record: StructuredRecord
    applied: List[ChangeCommand] = field(default_factory=list)
    skipped: List[SkippedChange] = field(default_factory=list)

    def describe(self) -> str:
        reasons = [c.reason for c in self.applied if c.reason]
        if reasons:
            return "; ".join(reasons)[:1000]
        sections = sorted({c.section for c in self.applied})
        return f"Updated {', '.join(sections)}" if sections else "No changes applied"


def apply_changes(record: StructuredRecord, commands: List[Any]) -> ChangeResult:
    """Apply commands in order to a copy of record. Never mutates the input."""
    data = copy.deepcopy(record.to_json())
    result = ChangeResult(record=record)

    for raw in commands or []:
        try:
            command = parse_command(raw)
        except ValidationError as e:
            reason = f"invalid command: {e.errors()[0].get('msg', 'validation error')}"
            logger.warning(f"Skipping change command: {reason}", extra={"section": _raw_section(raw)})
            result.skipped.append(SkippedChange(raw, reason))
            continue

        trial = copy.deepcopy(data)
        try:
            HANDLERS[type(command)](trial, command)
            validated = StructuredRecord.model_validate(trial)
        except CommandError as e:
            reason = str(e)
        except ValidationError as e:
            reason = f"result failed validation: {e.error_count()} errors"
        except (TypeError, AttributeError, KeyError, ValueError) as e:
            reason = f"could not apply: {type(e).__name__}: {e}"
        else:
            data = validated.to_json()
            result.applied.append(command)
            continue

        logger.warning(
            f"Skipping change command: {reason}",
            extra={"section": command.section, "action": command.action.value},
        )
        result.skipped.append(SkippedChange(raw, reason))

    result.record = StructuredRecord.model_validate(data)
    logger.info(f"Applied {len(result.applied)} of {len(commands or [])} change commands")
    return result


def _raw_section(raw: Any) -> str:
    return str(raw.get("section")) if isinstance(raw, dict) else type(raw).__name__
