import pytest

from resume_engine.services.version_store import (
    FIRST_APPENDED_VERSION,
    append_version,
    current_file_key,
    list_versions,
    next_version_number,
)


class TestVersionStore:
    @pytest.mark.asyncio
    async def test_first_appended_version_is_two(self, db, make_document):
        document = await make_document(file_key="resumes/original.pdf")
        assert await next_version_number(db, document.id) == FIRST_APPENDED_VERSION

        version = await append_version(db, document.id, "versions/v2.docx", "Sharper summary")
        assert version.version_number == 2
        assert version.changes_description == "Sharper summary"

    @pytest.mark.asyncio
    async def test_versions_are_append_only_and_ordered(self, db, make_document):
        document = await make_document(file_key="resumes/original.pdf")
        await append_version(db, document.id, "versions/v2.docx")
        await append_version(db, document.id, "tailored/v3.docx", job_id=7)

        versions = await list_versions(db, document.id)
        assert [v.version_number for v in versions] == [2, 3]
        assert versions[1].job_id == 7

    @pytest.mark.asyncio
    async def test_current_file_key(self, db, make_document):
        document = await make_document(file_key="resumes/original.pdf")
        assert await current_file_key(db, document.id, document.file_key) == "resumes/original.pdf"

        await append_version(db, document.id, "versions/v2.docx")
        assert await current_file_key(db, document.id, document.file_key) == "versions/v2.docx"

    @pytest.mark.asyncio
    async def test_versions_are_numbered_per_document(self, db, make_document):
        first = await make_document()
        second = await make_document()
        await append_version(db, first.id, "a")
        await append_version(db, first.id, "b")

        version = await append_version(db, second.id, "c")
        assert version.version_number == 2
