"""
Per-file content extraction.

Best effort: one unreadable file never fails the submission. Images become
base64 payloads for the multimodal call, PDFs and text files become text
for the prompt. A PDF whose text cannot be extracted is kept with a
placeholder; unreadable images and non-UTF-8 files are dropped.
"""
import asyncio
import base64
import io
from typing import Iterable, Sequence

import pdfplumber

from .file_classifier import FileKind
from .models import ExtractionFailure, ExtractionOutcome, ProcessedFile, UploadedFile
from .structured_logging import StructuredLogger

logger = StructuredLogger(__name__)

PDF_EXTRACTION_FAILED = "Could not extract text from PDF"


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Extract plain text from every page of a PDF."""
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        pages_text = []
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                pages_text.append(page_text)
    return "\n".join(pages_text)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def extract_file(uploaded: UploadedFile) -> ExtractionOutcome:
    """Produce the extraction outcome for a single uploaded file."""
    name, mime_type, kind = uploaded.original_name, uploaded.mime_type, uploaded.kind

    if kind == FileKind.IMAGE:
        try:
            data = base64.b64encode(_read_bytes(uploaded.storage_path)).decode("ascii")
        except OSError as e:
            logger.error(f"Error reading image {name}", file=name, error=str(e))
            return ExtractionFailure(name, mime_type, kind, reason=str(e))
        return ProcessedFile(name=name, mime_type=mime_type, kind=kind, data=data)

    if kind == FileKind.PDF:
        try:
            text = extract_pdf_text(_read_bytes(uploaded.storage_path))
        except Exception as e:
            logger.error(f"Error extracting PDF text from {name}", file=name, error=str(e))
            return ProcessedFile(
                name=name,
                mime_type=mime_type,
                kind=kind,
                text=PDF_EXTRACTION_FAILED,
                extraction_failed=True,
            )
        return ProcessedFile(name=name, mime_type=mime_type, kind=kind, text=text)

    try:
        raw = _read_bytes(uploaded.storage_path)
        text = raw.decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Error reading text file {name}", file=name, error=str(e))
        return ExtractionFailure(name, mime_type, kind, reason=str(e))
    # Anything read as text is reported as text from here on
    return ProcessedFile(name=name, mime_type=mime_type, kind=FileKind.TEXT, text=text)


async def extract_all(uploads: Sequence[UploadedFile]) -> list[ExtractionOutcome]:
    """Extract every file in its own worker thread; results keep upload order."""
    outcomes = await asyncio.gather(
        *(asyncio.to_thread(extract_file, uploaded) for uploaded in uploads)
    )
    dropped = sum(1 for o in outcomes if isinstance(o, ExtractionFailure))
    logger.info(
        f"Extracted {len(outcomes) - dropped}/{len(outcomes)} files",
        files_total=len(outcomes),
        files_extracted=len(outcomes) - dropped,
        files_dropped=dropped,
    )
    return list(outcomes)


def processed_files(outcomes: Iterable[ExtractionOutcome]) -> list[ProcessedFile]:
    return [o for o in outcomes if isinstance(o, ProcessedFile)]


def combine_extracted_text(processed: Iterable[ProcessedFile]) -> str:
    """Concatenate text content with a per-file header, in upload order."""
    parts = []
    for f in processed:
        if f.kind == FileKind.PDF:
            label = "PDF"
        elif f.kind == FileKind.TEXT:
            label = "Text"
        else:
            continue
        parts.append(f"\n\n=== {label} Content from {f.name} ===\n{f.text or ''}\n")
    return "".join(parts)
