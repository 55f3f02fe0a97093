"""
Request-scoped storage for uploaded files.

Each request writes its uploads into its own temporary directory, which is
removed when the request finishes, whatever the outcome. Removal problems
are logged and never change the response.
"""
import asyncio
import os
import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from fastapi import UploadFile

from .config import MAX_UPLOAD_BYTES
from .errors import SubmissionValidationError
from .file_classifier import classify
from .models import UploadedFile
from .structured_logging import StructuredLogger

logger = StructuredLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def sanitize_filename(filename: Optional[str]) -> str:
    """Strip directories and characters that are unsafe in a file name."""
    if not filename:
        return "unnamed"

    filename = filename.replace("\\", "/").split("/")[-1]
    filename = re.sub(r'[<>:"|?*\x00-\x1f]', '_', filename)
    filename = re.sub(r'\.{2,}', '.', filename)
    filename = re.sub(r'^\.+', '', filename)

    if len(filename) > 200:
        stem, dot, ext = filename.rpartition(".")
        filename = (stem[:190] + dot + ext) if dot else filename[:200]

    return filename or "unnamed"


async def _store(upload: UploadFile, path: str, max_file_size: int) -> int:
    """Copy one upload to disk in chunks; file I/O runs in worker threads."""
    size = 0
    out = await asyncio.to_thread(open, path, "wb")
    try:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_file_size:
                raise SubmissionValidationError(
                    "File too large",
                    message=f"{upload.filename} exceeds the {max_file_size // (1024 * 1024)} MB limit",
                )
            await asyncio.to_thread(out.write, chunk)
    finally:
        await asyncio.to_thread(out.close)
    return size


def remove_request_storage(directory: str) -> None:
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Error cleaning up upload directory {directory}: {e}", directory=directory)
    else:
        logger.debug("Removed upload directory", directory=directory)


@asynccontextmanager
async def request_storage(
    files: Sequence[UploadFile],
    upload_root: Optional[str] = None,
    max_file_size: int = MAX_UPLOAD_BYTES,
) -> AsyncIterator[list[UploadedFile]]:
    """Write uploads to a fresh temp directory and yield them in upload order."""
    if upload_root:
        os.makedirs(upload_root, exist_ok=True)
    directory = tempfile.mkdtemp(prefix="analysis-", dir=upload_root)
    try:
        stored = []
        for index, upload in enumerate(files):
            original_name = upload.filename or "unnamed"
            path = os.path.join(directory, f"{index:03d}_{sanitize_filename(original_name)}")
            size = await _store(upload, path, max_file_size)
            kind, mime_type = classify(original_name)
            stored.append(UploadedFile(
                original_name=original_name,
                size_bytes=size,
                storage_path=path,
                kind=kind,
                mime_type=mime_type,
            ))
        logger.info(
            f"Stored {len(stored)} uploaded file(s)",
            files=len(stored),
            total_bytes=sum(s.size_bytes for s in stored),
        )
        yield stored
    finally:
        remove_request_storage(directory)
