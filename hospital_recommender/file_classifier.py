"""Filename → content kind and MIME type."""
from enum import Enum

MIME_TYPES = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "dcm": "application/dicom",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# Read as UTF-8 like any unrecognized file, but labelled as text
TEXT_EXTENSIONS = {"txt", "md", "csv", "json"}


class FileKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    TEXT = "text"
    UNRECOGNIZED = "unrecognized"


def _extension(filename: str) -> str:
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def get_mime_type(filename: str) -> str:
    """MIME type from the file extension; unknown extensions get octet-stream."""
    return MIME_TYPES.get(_extension(filename), DEFAULT_MIME_TYPE)


def classify(filename: str) -> tuple[FileKind, str]:
    """Return (kind, mime_type) for an uploaded filename."""
    mime_type = get_mime_type(filename)
    if mime_type.startswith("image/"):
        return FileKind.IMAGE, mime_type
    if mime_type == "application/pdf":
        return FileKind.PDF, mime_type
    if _extension(filename) in TEXT_EXTENSIONS:
        return FileKind.TEXT, mime_type
    return FileKind.UNRECOGNIZED, mime_type
