"""Render a StructuredRecord to a DOCX artifact with python-docx."""
import asyncio
from io import BytesIO
from typing import Iterable, List

from docx import Document
from docx.shared import Inches, Pt

from resume_engine.schemas.resume import StructuredRecord

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _date_range(start, end) -> str:
    parts = [str(d) for d in (start, end) if d not in (None, "")]
    return " - ".join(parts)


def _add_line(doc, text: str, size: int = 11, bold: bool = False, style: str = None):
    paragraph = doc.add_paragraph(style=style)
    run = paragraph.add_run(text)
    run.font.size = Pt(size)
    run.bold = bold
    return paragraph


def _add_bullets(doc, items: Iterable[str]) -> None:
    for item in items:
        if item and item.strip():
            _add_line(doc, item.strip(), size=10, style="List Bullet")


def build_document(record: StructuredRecord):
    doc = Document()
    for section in doc.sections:
        section.top_margin = Inches(0.5)
        section.bottom_margin = Inches(0.5)
        section.left_margin = Inches(0.75)
        section.right_margin = Inches(0.75)

    contact = record.contact_info
    _add_line(doc, contact.name or "Resume", size=18, bold=True)
    contact_bits: List[str] = [b for b in (contact.email, contact.phone, contact.location) if b]
    contact_bits.extend(contact.websites)
    if contact_bits:
        _add_line(doc, " | ".join(contact_bits), size=10)

    if record.summary:
        doc.add_heading("Professional Summary", level=2)
        _add_line(doc, record.summary)

    if record.experience:
        doc.add_heading("Professional Experience", level=2)
        for entry in record.experience:
            heading = " - ".join(b for b in (entry.title, entry.company) if b)
            _add_line(doc, heading, bold=True)
            dates = _date_range(entry.start_date, entry.end_date)
            meta = " | ".join(b for b in (entry.location, dates) if b)
            if meta:
                _add_line(doc, meta, size=10)
            if entry.description:
                _add_line(doc, entry.description, size=10)
            _add_bullets(doc, entry.highlights)

    if record.education:
        doc.add_heading("Education", level=2)
        for entry in record.education:
            degree = " in ".join(b for b in (entry.degree, entry.field_of_study) if b)
            _add_line(doc, " - ".join(b for b in (degree, entry.institution) if b), bold=True)
            dates = _date_range(entry.start_date, entry.end_date)
            if dates:
                _add_line(doc, dates, size=10)
            _add_bullets(doc, entry.highlights)

    if record.skills:
        doc.add_heading("Skills", level=2)
        _add_line(doc, ", ".join(skill.name for skill in record.skills))

    if record.certifications:
        doc.add_heading("Certifications", level=2)
        _add_bullets(doc, [
            " - ".join(b for b in (cert.name, cert.issuer) if b) for cert in record.certifications
        ])

    if record.projects:
        doc.add_heading("Projects", level=2)
        for project in record.projects:
            _add_line(doc, project.name or "Project", bold=True)
            if project.description:
                _add_line(doc, project.description, size=10)
            if project.technologies:
                _add_line(doc, "Technologies: " + ", ".join(project.technologies), size=10)

    if record.languages:
        doc.add_heading("Languages", level=2)
        _add_bullets(doc, [
            f"{lang.language} ({lang.proficiency})" if lang.proficiency else lang.language
            for lang in record.languages
        ])
    return doc


def render_docx_sync(record: StructuredRecord) -> bytes:
    buffer = BytesIO()
    build_document(record).save(buffer)
    return buffer.getvalue()


async def render_docx(record: StructuredRecord) -> bytes:
    return await asyncio.to_thread(render_docx_sync, record)
