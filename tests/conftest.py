import json
import os
from typing import Dict, List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORAGE_BACKEND", "local")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from resume_engine.database import Base, get_db
from resume_engine.exceptions import StorageError
from resume_engine.models import Document
from resume_engine.services import processing_state as states
from resume_engine.services.blob_store import build_key
from resume_engine.services.pipeline import PipelineRunner
from resume_engine.services.progress_broadcaster import ProgressBroadcaster

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

EXTRACTED_RECORD = {
    "contactInfo": {"name": "Jane Doe", "email": "jane@example.com", "location": "Seattle, WA"},
    "summary": "Backend engineer",
    "experience": [
        {
            "company": "Acme",
            "title": "Engineer",
            "startDate": "Jan 2020",
            "endDate": "Present",
            "description": "Built services\n- Reduced latency by 40%",
        }
    ],
    "skills": ["Python", {"name": "SQL", "level": "Advanced"}],
}

ANALYSIS_PROPOSAL = {
    "overallScore": 92,
    "atsCompatibility": 88,
    "categoryScores": {"skills": 80, "experience": 90, "education": 60},
    "profileSummary": {
        "currentRole": "Engineer",
        "careerLevel": "Senior",
        "suggestedJobTitles": ["Backend Engineer"],
        "suggestedIndustries": ["Technology"],
    },
    "strengths": ["Quantified impact"],
    "weaknesses": [],
    "keywordsSuggestions": ["python", "kubernetes"],
    "improvementAreas": [],
}


class FakeCompletion:
    """
    Scripted CompletionService.

    Responses are keyed by a fragment of the system message, so each pipeline
    component (extractor, analyzer, editor, tailoring) gets its own script.
    A list is consumed in order; its last item repeats. An Exception is raised.
    """

    ROUTES = {
        "resume parser": "extract",
        "strict resume analyst": "analyze",
        "resume editor": "edit",
        "ATS optimization expert": "ats",
        "resume writer": "tailor",
    }

    def __init__(self, **responses):
        self.responses: Dict[str, object] = {
            "extract": json.dumps(EXTRACTED_RECORD),
            "analyze": json.dumps(ANALYSIS_PROPOSAL),
            "edit": json.dumps({"changes": []}),
            "ats": json.dumps({"optimizations": []}),
            "tailor": "not json",
        }
        self.responses.update(responses)
        self.calls: List[Dict[str, object]] = []

    def _route(self, system_message: str) -> str:
        for fragment, name in self.ROUTES.items():
            if fragment in system_message:
                return name
        raise AssertionError(f"unexpected system message: {system_message}")

    async def complete(self, prompt, system_message="", max_tokens=4000, temperature=0.1):
        name = self._route(system_message)
        self.calls.append({"route": name, "prompt": prompt})
        response = self.responses[name]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response


class InMemoryBlobStore:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    async def put(self, data, filename, content_type, prefix="resumes"):
        key = build_key(prefix, filename)
        self.objects[key] = data
        return key

    async def get(self, key):
        if key not in self.objects:
            raise StorageError(f"Blob not found: {key}")
        return self.objects[key]

    async def signed_url(self, key, ttl=3600):
        return f"https://blobs.test/{key}?ttl={ttl}"

    async def delete(self, key):
        self.deleted.append(key)
        return self.objects.pop(key, None) is not None


class FakeJobProvider:
    def __init__(self, jobs: Optional[List[dict]] = None):
        self.jobs = jobs or []
        self.queries = []

    async def search(self, query):
        self.queries.append(query)
        return list(self.jobs)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def broadcaster():
    return ProgressBroadcaster()


@pytest.fixture
def job_provider():
    return FakeJobProvider()


@pytest.fixture
def pipeline(session_factory, blob_store, completion, broadcaster):
    return PipelineRunner(
        session_factory=session_factory,
        blob_store=blob_store,
        completion=completion,
        broadcaster=broadcaster,
    )


@pytest.fixture
def make_document(session_factory):
    async def _make(user_id=USER_ID, status=states.PENDING, progress=0, **values) -> Document:
        values.setdefault("name", "resume")
        values.setdefault("original_filename", "resume.pdf")
        values.setdefault("file_type", "PDF")
        async with session_factory() as session:
            document = Document(user_id=user_id, status=status, progress=progress, **values)
            session.add(document)
            await session.commit()
            await session.refresh(document)
            return document

    return _make


@pytest_asyncio.fixture
async def client(session_factory, pipeline, blob_store, broadcaster, job_provider):
    from resume_engine.main import app
    from resume_engine.middleware.rate_limit import limiter
    from resume_engine.services.blob_store import get_blob_store
    from resume_engine.services.job_search import get_job_search_provider
    from resume_engine.services.pipeline import get_pipeline
    from resume_engine.services.progress_broadcaster import get_broadcaster

    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_job_search_provider] = lambda: job_provider
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", headers={"X-User-ID": USER_ID}) as c:
        yield c

    await pipeline.wait_idle()
    app.dependency_overrides.clear()
    limiter.enabled = True
