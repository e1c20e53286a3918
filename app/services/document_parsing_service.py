"""
Document Parsing Service - Extract text from uploaded CVs.

Supported formats:
- PDF (.pdf) using PyPDF2
- Word (.docx) using python-docx
- Plain Text (.txt)

Files are read in memory only, nothing is written to disk.
"""

import io
import logging
import re

from docx import Document
from PyPDF2 import PdfReader

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_MB = 10
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
MAX_TEXT_LENGTH = 50000

SUPPORTED_FORMATS = [
    {"extension": ".pdf", "mime_type": "application/pdf", "description": "Document PDF"},
    {"extension": ".docx",
     "mime_type": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
     "description": "Document Word"},
    {"extension": ".txt", "mime_type": "text/plain", "description": "Texte brut"},
]

CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
WHITESPACE = re.compile(r"\s+")


class DocumentParsingError(Exception):
    """The file could not be read."""


class UnsupportedDocumentError(DocumentParsingError):
    """The file extension is not one of SUPPORTED_FORMATS."""


def get_file_extension(filename: str) -> str:
    """Get lowercase file extension."""
    if not filename or '.' not in filename:
        return ''
    return '.' + filename.rsplit('.', 1)[1].lower()


def extract_text(content: bytes, filename: str) -> str:
    """Raw text of a document, dispatched on the file extension."""
    ext = get_file_extension(filename)
    if ext == '.pdf':
        return extract_from_pdf(content)
    if ext == '.docx':
        return extract_from_docx(content)
    if ext == '.txt':
        return extract_from_txt(content)
    raise UnsupportedDocumentError(f"Type de fichier non supporté '{ext}'. Formats acceptés : PDF, DOCX, TXT")


def extract_from_pdf(content: bytes) -> str:
    """Extract text from PDF bytes."""
    try:
        reader = PdfReader(io.BytesIO(content))
        text_parts = []
        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
    except Exception as e:
        logger.warning("PDF extraction failed: %s", e)
        raise DocumentParsingError("Impossible de lire le fichier PDF") from e
    return '\n'.join(text_parts)


def extract_from_docx(content: bytes) -> str:
    """Extract text from DOCX bytes: paragraphs, then table rows."""
    try:
        doc = Document(io.BytesIO(content))
    except Exception as e:
        logger.warning("DOCX extraction failed: %s", e)
        raise DocumentParsingError("Impossible de lire le fichier Word") from e

    text_parts = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            row_text = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if row_text:
                text_parts.append(' | '.join(row_text))
    return '\n'.join(text_parts)


def extract_from_txt(content: bytes) -> str:
    """Extract text from TXT bytes."""
    for encoding in ['utf-8', 'cp1252', 'latin-1']:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise DocumentParsingError("Impossible de décoder le fichier texte")


def clean_extracted_text(text: str) -> str:
    """Control chars and runs of whitespace become one space; capped at MAX_TEXT_LENGTH."""
    if not text:
        return ''
    text = CONTROL_CHARS.sub(' ', text)
    return WHITESPACE.sub(' ', text).strip()[:MAX_TEXT_LENGTH]


def get_text_stats(text: str) -> dict:
    if not text:
        return {"characters": 0, "words": 0, "lines": 0, "estimated_reading_minutes": 0}
    words = text.split()
    lines = [line for line in text.split('\n') if line.strip()]
    return {
        "characters": len(text),
        "words": len(words),
        "lines": len(lines),
        # 200 words per minute
        "estimated_reading_minutes": -(-len(words) // 200)
    }


def get_supported_formats() -> dict:
    return {
        "formats": SUPPORTED_FORMATS,
        "max_file_size": f"{MAX_FILE_SIZE_MB}MB",
        "recommendations": [
            "Utilisez des fichiers avec du texte sélectionnable (évitez les images scannées)",
            "Assurez-vous que votre CV contient vos informations personnelles et professionnelles",
            "Les CV structurés donnent de meilleurs résultats d'analyse"
        ]
    }
