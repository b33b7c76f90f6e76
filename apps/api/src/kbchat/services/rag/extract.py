from __future__ import annotations

from pathlib import Path

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from kbchat.services.rag.errors import ExtractionError

PDF_EXTENSION = ".pdf"
TEXT_EXTENSIONS = {".txt", ".md"}


def _extract_pdf(path: Path) -> str:
    try:
        reader = PdfReader(str(path))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, OSError, ValueError) as exc:
        raise ExtractionError(f"Failed to read PDF {path.name}: {exc}") from exc
    return "\n".join(pages)


def extract_text(path: Path) -> str:
    """Return the raw text of a supported file.

    Raises ``ExtractionError`` when the file is missing, unsupported,
    unreadable, or yields no text.
    """
    if not path.is_file():
        raise ExtractionError(f"Source file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == PDF_EXTENSION:
        text = _extract_pdf(path)
    elif suffix in TEXT_EXTENSIONS:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ExtractionError(f"Failed to read {path.name}: {exc}") from exc
    else:
        raise ExtractionError(f"Unsupported file type: {path.name}")

    if not text.strip():
        raise ExtractionError(f"No text content found in {path.name}")
    return text


def list_pdf_files(source_dir: Path) -> list[Path]:
    if not source_dir.exists():
        raise FileNotFoundError(f"PDF directory not found: {source_dir}")
    if not source_dir.is_dir():
        raise NotADirectoryError(f"PDF path is not a directory: {source_dir}")

    return sorted(
        path
        for path in source_dir.iterdir()
        if path.is_file() and path.suffix.lower() == PDF_EXTENSION
    )
