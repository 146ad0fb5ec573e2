import pytest

from resume_engine.schemas.resume import StructuredRecord
from resume_engine.services.score_normalizer import (
    EXCELLENT,
    GOOD,
    POOR,
    assess_content,
    assess_text,
    normalize_scores,
)


def _normalize(overall, ats, **overrides):
    signals = dict(
        is_tailored=False,
        has_placeholders=False,
        has_quantified_achievements=True,
        quality_tier=GOOD,
    )
    signals.update(overrides)
    return normalize_scores(overall, ats, **signals)


class TestCeilings:
    def test_untailored_ceiling(self):
        scores = _normalize(99, 99)
        assert scores.overall == 85
        assert scores.ats == 80

    def test_tailored_ceiling(self):
        scores = _normalize(100, 100, is_tailored=True, quality_tier=EXCELLENT)
        assert scores.overall == 95
        assert scores.ats == 90

    @pytest.mark.parametrize("overall, ats", [(0, 0), (50, 60), (120, -5), ("88", None), ("nan", "abc")])
    def test_always_in_range(self, overall, ats):
        for tailored in (False, True):
            scores = _normalize(overall, ats, is_tailored=tailored)
            assert 0 <= scores.overall <= (95 if tailored else 85)
            assert 0 <= scores.ats <= (90 if tailored else 80)


class TestContentCaps:
    def test_placeholders_dominate(self):
        scores = _normalize(95, 95, is_tailored=True, has_placeholders=True, quality_tier=EXCELLENT)
        assert scores.overall <= 15
        assert scores.ats <= 20
        assert all(value <= 15 for value in scores.categories.values())

    def test_unquantified_cap(self):
        scores = _normalize(80, 80, has_quantified_achievements=False)
        assert scores.overall == 35
        assert scores.ats == 40

    def test_poor_quality_cap(self):
        scores = _normalize(80, 80, quality_tier=POOR)
        assert scores.overall == 25
        assert scores.ats == 30

    def test_tailored_bonus_is_bounded(self):
        scores = _normalize(70, 70, is_tailored=True, quality_tier=EXCELLENT)
        assert scores.overall == 75
        assert scores.ats == 75

    def test_category_scores_default_to_overall(self):
        scores = _normalize(60, 60, category_scores={"skills": 90})
        assert scores.categories == {"skills": 85, "experience": 60, "education": 60}


class TestAssessContent:
    def test_placeholder_detection(self):
        signals = assess_text(["Bullet 1", "Bullet 2"])
        assert signals.has_placeholders

    def test_quantified_achievements(self):
        signals = assess_text(["Reduced p99 latency by 40% across 12 services"])
        assert signals.has_quantified_achievements
        assert not signals.has_placeholders

    def test_vague_text_is_poor(self):
        signals = assess_text(["Responsible for various tasks"])
        assert not signals.has_quantified_achievements
        assert signals.quality_tier == POOR

    def test_reads_experience_and_projects(self):
        record = StructuredRecord.model_validate({
            "summary": "Platform engineer",
            "experience": [{"highlights": ["Led migration to Kubernetes, cutting costs by $200k"]}],
            "projects": [{"description": "Built a Python data pipeline on AWS"}],
        })
        signals = assess_content(record)
        assert signals.has_quantified_achievements
        assert signals.action_verb_count >= 2
        assert signals.technical_term_density > 0
