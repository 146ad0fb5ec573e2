import io
import json

import pytest
from docx import Document as DocxDocument

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services.resume_editor import (
    ResumeEditor,
    compare_before_after,
    count_new_keywords,
    optimizations_instruction,
)
from resume_engine.services.resume_renderer import render_docx
from resume_engine.services.tailoring import (
    TAILORED_SKILL_LEVEL,
    TailoringRecommender,
    commands_from_recommendations,
    emphasize_skills,
    tailored_name,
)
from tests.conftest import FakeCompletion


@pytest.fixture
def record():
    return StructuredRecord.model_validate({
        "contactInfo": {"name": "Jane Doe", "email": "jane@example.com"},
        "summary": "Backend engineer",
        "experience": [
            {"company": "Acme", "title": "Engineer", "highlights": ["Built APIs"]},
            {"company": "Globex", "title": "Intern", "description": "Helped"},
        ],
        "skills": ["Python", "SQL", "Docker"],
    })


class TestCompareBeforeAfter:
    def test_reports_section_changes_and_scores(self, record):
        after = record.to_json()
        after["summary"] = "Cloud platform engineer"
        after["experience"][0]["highlights"] = ["Built cloud APIs serving 2M requests/day"]

        comparison = compare_before_after(
            record.to_json(), after,
            {"overallScore": 60, "atsCompatibility": 55},
            {"overallScore": 70, "atsCompatibility": 65},
        )

        assert comparison["summary"]["sectionsModified"] == 2
        assert comparison["summary"]["improvementsCount"] == 2
        assert comparison["summary"]["keywordsAdded"] == 2
        assert comparison["scores"]["after"]["atsCompatibility"] == 65
        assert comparison["summaryText"].endswith("boosting ATS score by 10%")
        fields = {(c["section"], c["field"]) for c in comparison["changes"]}
        assert fields == {("experience", "highlights"), ("summary", "summary")}

    def test_identical_records(self, record):
        comparison = compare_before_after(record.to_json(), record.to_json())
        assert comparison["changes"] == []
        assert comparison["summaryText"] == "Enhanced 0 sections with 0 improvements"

    def test_count_new_keywords_ignores_removals(self):
        assert count_new_keywords({"summary": "api api"}, {"summary": "api"}) == 0
        assert count_new_keywords({}, {"summary": "agile leadership"}) == 2


class TestResumeEditor:
    @pytest.mark.asyncio
    async def test_parse_change_request(self, record):
        changes = [{"section": "summary", "action": "update", "newValue": "Sharper"}]
        completion = FakeCompletion(edit="```json\n" + json.dumps({"changes": changes}) + "\n```")

        parsed = await ResumeEditor(completion).parse_change_request("make the summary sharper", record)

        assert parsed == changes
        assert "make the summary sharper" in completion.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_unparseable_output_yields_no_changes(self, record):
        completion = FakeCompletion(edit="I'd rather not")
        assert await ResumeEditor(completion).parse_change_request("anything", record) == []

    @pytest.mark.asyncio
    async def test_generate_ats_optimizations_includes_target_job(self, record):
        optimizations = [{"section": "skills", "change": "Add Kubernetes"}, "junk"]
        completion = FakeCompletion(ats=json.dumps({"optimizations": optimizations}))

        result = await ResumeEditor(completion).generate_ats_optimizations(
            record, {"title": "SRE", "company": "Initech", "description": "Run k8s"}
        )

        assert result == [{"section": "skills", "change": "Add Kubernetes"}]
        assert "TARGET JOB" in completion.calls[0]["prompt"]
        assert optimizations_instruction(result) == "Apply these ATS optimizations: Add Kubernetes"


class TestTailoring:
    def test_tailored_name(self):
        assert tailored_name("Resume", "SRE", "Initech") == "[AI Tailored] Resume for SRE at Initech"

    def test_commands_from_recommendations(self, record):
        commands = commands_from_recommendations(record, {
            "summary": {"original": "Backend engineer", "tailored": "Reliability-focused engineer"},
            "experienceImprovements": [
                {"company": "Globex", "position": "Intern", "tailored": ["Automated 12 deploys"]},
                {"company": "Unknown", "position": "Nobody", "tailored": []},
            ],
            "skillsImprovements": {"skillsToAdd": ["Kubernetes"], "skillsToEmphasize": ["Docker"]},
        }, job_id=9)

        assert [c["section"] for c in commands] == ["summary", "experience", "skills"]
        assert commands[1]["target"] == "1"
        assert commands[2]["newValue"] == [{"name": "Kubernetes", "level": TAILORED_SKILL_LEVEL, "addedForJob": "9"}]

    def test_emphasize_skills(self, record):
        reordered = emphasize_skills(record, ["docker", "python"])
        assert [s.name for s in reordered.skills] == ["Docker", "Python", "SQL"]
        assert emphasize_skills(record, []) is record

    @pytest.mark.asyncio
    async def test_recommender_falls_back_on_bad_output(self, record):
        completion = FakeCompletion(tailor="not json at all")
        recommendations = await TailoringRecommender(completion).recommend(
            record, {"title": "SRE", "company": "Initech", "description": ""}
        )
        assert "SRE at Initech" in recommendations["summary"]["tailored"]
        assert recommendations["skillsImprovements"]["skillsToAdd"]


class TestRenderer:
    @pytest.mark.asyncio
    async def test_render_docx(self, record):
        data = await render_docx(record)
        text = "\n".join(p.text for p in DocxDocument(io.BytesIO(data)).paragraphs)
        assert "Jane Doe" in text
        assert "Engineer - Acme" in text
        assert "Built APIs" in text
        assert "Python, SQL, Docker" in text
