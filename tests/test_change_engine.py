import pytest
from pydantic import ValidationError

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services.change_engine import (
    DEFAULT_SKILL_LEVEL,
    HANDLERS,
    SECTIONS,
    ChangeAction,
    ExperienceChange,
    apply_changes,
    parse_command,
    parse_target,
)


@pytest.fixture
def record():
    return StructuredRecord.model_validate({
        "contactInfo": {"name": "Jane Doe", "email": "jane@example.com", "websites": ["https://jane.dev"]},
        "summary": "",
        "experience": [
            {"company": "Acme", "title": "Engineer", "highlights": ["Built APIs"]},
            {"company": "Globex", "title": "Intern"},
        ],
        "skills": [{"name": "Python", "level": "Expert"}],
    })


class TestParsing:
    def test_every_section_has_a_handler(self):
        assert set(SECTIONS) == {
            "contactInfo", "summary", "experience", "education",
            "skills", "certifications", "projects", "languages",
        }
        assert len(HANDLERS) == len(SECTIONS)

    def test_discriminates_on_section(self):
        command = parse_command({"section": "experience", "action": "Enhance", "target": 0, "newValue": ["x"]})
        assert isinstance(command, ExperienceChange)
        assert command.action == ChangeAction.ENHANCE
        assert command.target == "0"

    def test_unknown_section_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_command({"section": "hobbies", "action": "add", "newValue": "chess"})

    @pytest.mark.parametrize(
        "target, expected",
        [("2", (2, None, None)), ("1/highlights", (1, "highlights", None)), ("Python", (None, None, "Python"))],
    )
    def test_parse_target(self, target, expected):
        command = parse_command({"section": "experience", "action": "update", "target": target})
        assert parse_target(command) == expected


class TestApplyChanges:
    def test_unknown_section_does_not_stop_the_batch(self, record):
        result = apply_changes(record, [
            {"section": "hobbies", "action": "add", "newValue": "chess"},
            {"section": "summary", "action": "update", "newValue": "Platform engineer"},
        ])
        assert len(result.applied) == 1
        assert len(result.skipped) == 1
        assert result.record.summary == "Platform engineer"
        StructuredRecord.model_validate(result.record.to_json())

    def test_input_record_is_not_mutated(self, record):
        apply_changes(record, [{"section": "experience", "action": "delete", "target": "1"}])
        assert len(record.experience) == 2

    def test_enhance_replaces_highlights(self, record):
        result = apply_changes(record, [{
            "section": "experience",
            "action": "enhance",
            "target": "0",
            "field": "highlights",
            "newValue": ["Cut latency by 40%", "Led 3 engineers"],
        }])
        assert result.record.experience[0].highlights == ["Cut latency by 40%", "Led 3 engineers"]

    def test_add_string_appends_one_highlight(self, record):
        result = apply_changes(record, [
            {"section": "experience", "action": "add", "target": "0/highlights", "newValue": "Shipped v2"},
        ])
        assert result.record.experience[0].highlights == ["Built APIs", "Shipped v2"]

    def test_add_list_extends_highlights(self, record):
        result = apply_changes(record, [
            {"section": "experience", "action": "add", "target": "0/highlights", "newValue": ["Shipped v2", "Ran 3 launches"]},
        ])
        assert result.record.experience[0].highlights == ["Built APIs", "Shipped v2", "Ran 3 launches"]

    def test_skill_with_non_text_name_does_not_stop_the_batch(self, record):
        result = apply_changes(record, [
            {"section": "skills", "action": "add", "newValue": {"name": 5}},
            {"section": "summary", "action": "update", "newValue": "Platform engineer"},
        ])
        assert [c.section for c in result.applied] == ["summary"]
        assert len(result.skipped) == 1
        assert result.record.summary == "Platform engineer"
        assert [s.name for s in result.record.skills] == ["Python"]

    def test_unexpected_handler_error_is_skipped(self, record, monkeypatch):
        def broken(data, command):
            raise AttributeError("boom")

        monkeypatch.setitem(HANDLERS, ExperienceChange, broken)
        result = apply_changes(record, [
            {"section": "experience", "action": "delete", "target": "1"},
            {"section": "summary", "action": "update", "newValue": "Platform engineer"},
        ])
        assert "AttributeError" in result.skipped[0].reason
        assert result.record.summary == "Platform engineer"
        assert len(result.record.experience) == 2

    def test_out_of_range_target_is_skipped(self, record):
        result = apply_changes(record, [{"section": "experience", "action": "update", "target": "7", "newValue": {}}])
        assert not result.applied
        assert "out of range" in result.skipped[0].reason

    def test_change_that_breaks_the_schema_is_skipped(self, record):
        result = apply_changes(record, [
            {"section": "experience", "action": "update", "target": "0", "field": "highlights", "newValue": 5},
        ])
        assert not result.applied
        assert result.record.experience[0].highlights == ["Built APIs"]

    def test_summary_add_only_fills_an_empty_summary(self, record):
        result = apply_changes(record, [
            {"section": "summary", "action": "add", "newValue": "First"},
            {"section": "summary", "action": "add", "newValue": "Second"},
        ])
        assert result.record.summary == "First"

    def test_skills_add_defaults_level_and_skips_duplicates(self, record):
        result = apply_changes(record, [
            {"section": "skills", "action": "add", "newValue": ["Go", "python", {"name": "Rust", "level": "Beginner"}]},
        ])
        skills = {s.name: s.level for s in result.record.skills}
        assert skills == {"Python": "Expert", "Go": DEFAULT_SKILL_LEVEL, "Rust": "Beginner"}

    def test_skills_update_and_delete_by_name(self, record):
        result = apply_changes(record, [
            {"section": "skills", "action": "update", "target": "python", "field": "level", "newValue": "Advanced"},
            {"section": "skills", "action": "add", "newValue": "Go"},
            {"section": "skills", "action": "delete", "newValue": "Go"},
        ])
        assert [(s.name, s.level) for s in result.record.skills] == [("Python", "Advanced")]

    def test_contact_websites(self, record):
        result = apply_changes(record, [
            {"section": "contactInfo", "action": "add", "field": "websites", "newValue": "https://github.com/jane"},
            {"section": "contactInfo", "action": "update", "field": "phone", "newValue": "555-0100"},
        ])
        contact = result.record.contact_info
        assert contact.websites == ["https://jane.dev", "https://github.com/jane"]
        assert contact.phone == "555-0100"

    def test_list_section_add_entry(self, record):
        result = apply_changes(record, [
            {"section": "certifications", "action": "add", "newValue": {"name": "CKA", "issuer": "CNCF"}},
        ])
        assert result.record.certifications[0].issuer == "CNCF"

    def test_describe_prefers_reasons(self, record):
        result = apply_changes(record, [
            {"section": "summary", "action": "update", "newValue": "New", "reason": "Sharper summary"},
        ])
        assert result.describe() == "Sharper summary"
        assert apply_changes(record, []).describe() == "No changes applied"
