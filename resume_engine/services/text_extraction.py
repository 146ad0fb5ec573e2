import asyncio
import io
import re
from pathlib import Path
from typing import Optional

import PyPDF2
from docx import Document

from resume_engine.exceptions import UnsupportedFileTypeError
from resume_engine.utils.logger import logger

FILE_TYPES = {
    ".pdf": "PDF",
    ".docx": "DOCX",
    ".doc": "DOC",
}

CONTENT_TYPES = {
    "PDF": "application/pdf",
    "DOCX": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "DOC": "application/msword",
}

# Runs of printable text inside a legacy binary .doc
_PRINTABLE_RUN = re.compile(rb"[\x20-\x7e\r\n\t]{4,}")


def detect_file_type(filename: Optional[str]) -> str:
    """Map a filename to PDF/DOCX/DOC or raise UnsupportedFileTypeError"""
    if not filename:
        raise UnsupportedFileTypeError("")
    file_type = FILE_TYPES.get(Path(filename).suffix.lower())
    if not file_type:
        raise UnsupportedFileTypeError(filename)
    return file_type


def _pdf_text(data: bytes) -> str:
    reader = PyPDF2.PdfReader(io.BytesIO(data))
    pages = []
    for page in reader.pages:
        pages.append(page.extract_text() or "")
    return "\n".join(pages)


def _docx_text(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    lines = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append(" | ".join(cells))
    return "\n".join(lines)


def _doc_text(data: bytes) -> str:
    runs = [run.decode("ascii", errors="ignore").strip() for run in _PRINTABLE_RUN.findall(data)]
    return "\n".join(run for run in runs if run)


_EXTRACTORS = {
    "PDF": _pdf_text,
    "DOCX": _docx_text,
    "DOC": _doc_text,
}


def extract_text_sync(data: bytes, file_type: str) -> str:
    extractor = _EXTRACTORS.get(file_type)
    if extractor is None:
        raise UnsupportedFileTypeError(file_type)
    text = extractor(data)
    logger.info(f"Extracted {len(text)} characters from {file_type}")
    return text.strip()


async def extract_text(data: bytes, file_type: str) -> str:
    """Decode a stored file to plain text off the event loop"""
    return await asyncio.to_thread(extract_text_sync, data, file_type)
