# document_ingestion.py
"""Utilities for registering regulation documents and reading their text.

Uploading a document only records its metadata (name, file reference
and upload timestamp); the text itself is read when the regulation is
parsed.  Plain text files are read as UTF-8, PDF and DOCX files are
converted to plain text first.  Scanned PDFs are not handled.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import pdfplumber  # type: ignore
import docx  # type: ignore
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    NotFound,
    PersistenceFailure,
    RegulationNotFound,
    UnreadableDocument,
    UnsupportedDocument,
)
from .models import Regulation

logger = logging.getLogger(__name__)

PDF_SUFFIXES = {".pdf"}
DOCX_SUFFIXES = {".docx", ".doc"}
TEXT_SUFFIXES = {".txt", ".text", ".md", ""}
SUPPORTED_SUFFIXES = PDF_SUFFIXES | DOCX_SUFFIXES | TEXT_SUFFIXES


def check_supported(file_path: Path) -> str:
    """Return the lower-cased suffix or raise :class:`UnsupportedDocument`."""
    suffix = Path(file_path).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise UnsupportedDocument(f"Unsupported file type: {suffix}")
    return suffix


def extract_text_from_pdf(pdf_path: Path) -> str:
    """Extract plain text from a PDF file (skips scanned images)."""
    text: list[str] = []
    with pdfplumber.open(pdf_path) as pdf:
        for page in pdf.pages:
            text.append(page.extract_text() or "")
    return "\n".join(text)


def extract_text_from_docx(docx_path: Path) -> str:
    """Extract plain text from a DOCX file."""
    document = docx.Document(docx_path)
    return "\n".join(p.text for p in document.paragraphs)


def extract_text(file_path: Path) -> str:
    """Return the plain text of a regulation document.

    Raises
    ------
    NotFound
        If the file does not exist.
    UnsupportedDocument
        If the file type is not supported.
    UnreadableDocument
        If a plain text file is not valid UTF-8.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise NotFound(f"Document file not found: {file_path}")
    suffix = check_supported(file_path)
    if suffix in PDF_SUFFIXES:
        return extract_text_from_pdf(file_path)
    if suffix in DOCX_SUFFIXES:
        return extract_text_from_docx(file_path)
    try:
        return file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise UnreadableDocument(f"Document is not valid UTF-8 text: {file_path.name}", e) from e


def register_regulation(
    file_path: Path,
    db: Session,
    *,
    name: Optional[str] = None,
) -> Regulation:
    """Create a :class:`~models.Regulation` record for an uploaded file.

    Parameters
    ----------
    file_path:
        Location of the stored document.
    db:
        SQLAlchemy session.
    name:
        Display name; defaults to the file name.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise NotFound(f"Document file not found: {file_path}")
    check_supported(file_path)
    regulation = Regulation(
        name=name or file_path.name,
        file_path=str(file_path),
        upload_date=datetime.utcnow(),
    )
    db.add(regulation)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Upload failed", e) from e
    logger.info(f"Registered regulation {regulation.id}: {regulation.name}")
    return regulation


def get_regulation(db: Session, regulation_id: int) -> Regulation:
    regulation = db.get(Regulation, regulation_id)
    if regulation is None:
        raise RegulationNotFound(regulation_id)
    return regulation


def read_regulation_text(regulation: Regulation) -> str:
    if not regulation.file_path:
        raise NotFound(f"Regulation {regulation.id} has no file reference")
    return extract_text(Path(regulation.file_path))


def delete_regulation(db: Session, regulation_id: int) -> None:
    """Delete a regulation and, by cascade, everything derived from it."""
    regulation = get_regulation(db, regulation_id)
    db.delete(regulation)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"Could not delete regulation {regulation_id}", e) from e
    logger.info(f"Deleted regulation {regulation_id}")
