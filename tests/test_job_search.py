from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from resume_engine.exceptions import JobSearchError
from resume_engine.services.gateway import ServiceGateway
from resume_engine.services.job_search import (
    AdzunaClient,
    CareerProfile,
    JobRelevanceExtractor,
    SearchQuery,
    base_job_types,
    build_search_query,
    convert_api_job,
    infer_source_platform,
    initial_match_score,
    is_duplicate,
    is_relevant,
    is_strongly_relevant,
    normalize_title,
    optimize_location,
    title_similarity,
)


def _job(title, company="Acme", description="", match_score=70):
    return {"title": title, "company": company, "description": description, "matchScore": match_score}


class TestQueryShaping:
    def test_build_search_query_strips_qualifiers(self):
        assert build_search_query("Senior Machine Learning Engineer - Payments") == "Engineer"
        assert build_search_query("Senior Backend Engineer", "senior") == "senior Backend Engineer"

    def test_optimize_location(self):
        assert optimize_location("Greater Seattle Area, USA") == "Seattle"
        assert optimize_location("Remote") == ""
        assert optimize_location(None) == ""

    def test_base_job_types(self):
        assert base_job_types(["Senior Backend Engineer", "Lead Backend Engineer"]) == [
            "Backend Engineer", "Backend", "Engineer",
        ]


class TestAnnotation:
    def test_infer_source_platform(self):
        assert infer_source_platform(None) == "Adzuna Direct"
        assert infer_source_platform("https://www.linkedin.com/jobs/view/1") == "LinkedIn"
        assert infer_source_platform("https://www.example.com/jobs/1") == "Adzuna Partner"

    def test_initial_match_score(self):
        now = datetime(2024, 3, 10, tzinfo=timezone.utc)
        api_job = {
            "salary_min": 150000,
            "salary_is_predicted": "0",
            "description": "x" * 600,
            "created": (now - timedelta(days=3)).isoformat(),
            "contract_type": "permanent",
            "contract_time": "full_time",
        }
        assert initial_match_score(api_job, now=now) == 100
        assert initial_match_score({}, now=now) == 70

    def test_predicted_salary_earns_nothing(self):
        assert initial_match_score({"salary_min": 1, "salary_is_predicted": "1"}) == 70

    def test_convert_api_job(self):
        job = convert_api_job({
            "id": 42,
            "title": "Backend Engineer!!",
            "company": {"display_name": "Acme"},
            "location": {"display_name": "Austin, TX, United States"},
            "redirect_url": "https://www.adzuna.com/land/42",
            "created": "2024-03-01T00:00:00Z",
        })
        assert job["externalId"] == "42"
        assert job["title"] == "Backend Engineer"
        assert job["location"] == "Austin, TX"
        assert job["postedDate"] == "2024-03-01"
        assert job["qualityTier"] in ("high", "medium", "low")
        assert 70 <= job["matchScore"] <= 100


class TestDeduplication:
    def test_reordered_titles_normalize_alike(self):
        assert normalize_title("Backend Engineer, Senior") == normalize_title("Senior Backend Engineer")
        assert title_similarity("Senior Backend Engineer", "Backend Engineer, Senior") == 1.0

    def test_near_identical_titles_are_duplicates(self):
        assert title_similarity("Backend Engineer", "Backend Engineers") == pytest.approx(16 / 17)
        assert is_duplicate(_job("Backend Engineers"), [_job("Backend Engineer")])
        assert title_similarity("", "") == 1.0

    def test_same_title_other_company_is_not_a_duplicate(self):
        assert not is_duplicate(_job("Backend Engineer", "Globex"), [_job("Backend Engineer", "Acme")])

    def test_company_comparison_ignores_case(self):
        assert is_duplicate(_job("Backend Engineer", "ACME"), [_job("Backend Engineer", "acme")])

    def test_different_titles_are_kept(self):
        assert not is_duplicate(_job("Data Analyst"), [_job("Backend Engineer")])


class TestRelevance:
    def test_loose_and_strict_filters(self):
        profile = CareerProfile(target_job_titles=["Backend Engineer"], target_keywords=["kafka"])
        loose = _job("Platform Engineer")
        assert is_relevant(loose, profile)
        assert not is_strongly_relevant(loose, profile)
        assert is_strongly_relevant(_job("Platform Engineer", description="Kafka pipelines"), profile)

    def test_profile_from_analysis(self):
        profile = CareerProfile.from_analysis(
            {
                "profileSummary": {"currentRole": "Engineer", "careerLevel": "Senior IC", "suggestedJobTitles": []},
                "keywordsSuggestions": ["python"],
            },
            location="Seattle, WA",
        )
        assert profile.target_job_titles == ["Engineer"]
        assert profile.experience_level == "senior"
        assert profile.preferred_locations == ["Seattle, WA"]
        assert profile.target_keywords == ["python"]


class TestJobRelevanceExtractor:
    @pytest.mark.asyncio
    async def test_reordered_titles_collapse_to_one_result(self):
        provider = AsyncMock()
        provider.search.return_value = [
            _job("Senior Backend Engineer", "Acme"),
            _job("Backend Engineer, Senior", "acme"),
        ]
        profile = CareerProfile(target_job_titles=["Backend Engineer"], preferred_locations=["Remote"])

        result = await JobRelevanceExtractor(provider).extract(profile, max_jobs=10)

        assert len(result.jobs) == 1
        assert result.jobs[0]["title"] == "Senior Backend Engineer"
        assert [s.name for s in result.strategies] == ["specific_titles", "base_job_types", "industry_keywords",
                                                       "fallback_broad"]

    @pytest.mark.asyncio
    async def test_stops_at_max_jobs(self):
        provider = AsyncMock()
        provider.search.return_value = [_job(f"Engineer {i}", f"Company {i}") for i in range(20)]
        profile = CareerProfile(target_job_titles=["Engineer"], preferred_locations=["Remote", "Austin"])

        result = await JobRelevanceExtractor(provider).extract(profile, max_jobs=5)

        assert len(result.jobs) == 5
        assert provider.search.await_count == 1
        assert [s.name for s in result.strategies] == ["specific_titles"]

    @pytest.mark.asyncio
    async def test_profile_bonus_raises_match_score(self):
        provider = AsyncMock()
        provider.search.return_value = [
            _job("Senior Engineer", "A", description="python and kafka"),
            _job("Engineer", "B"),
            _job("Staff Engineer", "C"),
        ]
        profile = CareerProfile(
            target_job_titles=["Engineer"], target_keywords=["python", "kafka"], experience_level="senior"
        )

        result = await JobRelevanceExtractor(provider).extract(profile, max_jobs=3)

        scores = {job["company"]: job["matchScore"] for job in result.jobs}
        assert scores == {"A": 95, "B": 70, "C": 70}

    @pytest.mark.asyncio
    async def test_all_searches_failing_raises(self):
        provider = AsyncMock()
        provider.search.side_effect = JobSearchError("provider down")

        with pytest.raises(JobSearchError):
            await JobRelevanceExtractor(provider).extract(CareerProfile(target_job_titles=["Engineer"]))


class TestAdzunaClient:
    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = AdzunaClient(app_id="", app_key="", gateway=ServiceGateway())
        with pytest.raises(JobSearchError):
            await client.search(SearchQuery(title="Engineer"))

    @pytest.mark.asyncio
    async def test_search_converts_results(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"results": [{
                "id": "7",
                "title": "Backend Engineer",
                "company": {"display_name": "Acme"},
                "location": {"display_name": "Remote"},
                "redirect_url": "https://www.adzuna.com/land/7",
            }]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = AdzunaClient("id", "key", country="gb", gateway=ServiceGateway(), http_client=http_client)
            jobs = await client.search(SearchQuery(title="Senior Backend Engineer", location="London, UK"))

        assert "/gb/search/1" in seen["url"]
        assert seen["params"]["what"] == "Backend Engineer"
        assert seen["params"]["where"] == "London, UK"
        assert jobs[0]["company"] == "Acme"
        assert jobs[0]["location"] == "Remote"

    @pytest.mark.asyncio
    async def test_auth_failure_maps_to_job_search_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={}))
        async with httpx.AsyncClient(transport=transport) as http_client:
            client = AdzunaClient("id", "bad", gateway=ServiceGateway(), http_client=http_client)
            with pytest.raises(JobSearchError, match="authentication"):
                await client.search(SearchQuery(title="Engineer"))
