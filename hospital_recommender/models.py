"""
Request/response models and pipeline records for the analysis service.
"""
import json
from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import SubmissionValidationError
from .file_classifier import FileKind


# --- Submission (the JSON `data` form field) ---

class PatientInfo(BaseModel):
    name: str
    age: Optional[Union[int, str]] = None
    gender: Optional[str] = None
    symptoms: Optional[str] = None
    urgency: Literal["low", "normal", "high"] = "normal"

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Patient name cannot be empty")
        return v.strip()

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return "normal"
        return v.strip().lower() if isinstance(v, str) else v


class Location(BaseModel):
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class SubmissionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    medical_data: list[str] = Field(default_factory=list, alias="medicalData")
    patient_info: PatientInfo = Field(alias="patientInfo")
    location: Optional[Location] = None

    @field_validator("medical_data", mode="before")
    @classmethod
    def null_tests_to_empty(cls, v):
        return [] if v is None else v


def load_form_data(raw: Optional[str]) -> dict:
    """Decode the JSON carried in the multipart `data` field."""
    if raw is None:
        raise SubmissionValidationError("Invalid form data format", details="Missing 'data' field")
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise SubmissionValidationError("Invalid form data format", details=str(e))
    if not isinstance(payload, dict):
        raise SubmissionValidationError("Invalid form data format", details="'data' must be a JSON object")
    return payload


def parse_submission_data(payload: dict) -> SubmissionData:
    """Validate the decoded `data` payload.

    Raises:
        SubmissionValidationError: missing/blank patient name or malformed fields
    """
    patient = payload.get("patientInfo")
    if not isinstance(patient, dict) or not str(patient.get("name") or "").strip():
        raise SubmissionValidationError("Patient information is required")

    try:
        return SubmissionData.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field_path = ".".join(str(p) for p in first.get("loc", ()))
        raise SubmissionValidationError(
            "Invalid form data format",
            details=f"{field_path}: {first.get('msg', 'invalid value')}",
        )


# --- Pipeline records ---

@dataclass(frozen=True)
class UploadedFile:
    original_name: str
    size_bytes: int
    storage_path: str
    kind: FileKind
    mime_type: str


@dataclass(frozen=True)
class ProcessedFile:
    name: str
    mime_type: str
    kind: FileKind
    data: Optional[str] = None  # base64, images only
    text: Optional[str] = None
    extraction_failed: bool = False

    @property
    def is_image(self) -> bool:
        return self.kind == FileKind.IMAGE


@dataclass(frozen=True)
class ExtractionFailure:
    name: str
    mime_type: str
    kind: FileKind
    reason: str


ExtractionOutcome = Union[ProcessedFile, ExtractionFailure]


@dataclass(frozen=True)
class ImageAttachment:
    data: str  # base64
    mime_type: str


@dataclass(frozen=True)
class AnalysisPrompt:
    text: str
    images: tuple[ImageAttachment, ...] = ()


@dataclass(frozen=True)
class AnalysisResult:
    analysis_text: str
    timestamp: str
    files_uploaded: int
    files_analyzed: int


# --- Responses ---

class PatientSummary(BaseModel):
    name: str
    filesUploaded: int
    filesAnalyzed: int


class AnalysisResponse(BaseModel):
    analysis: str
    timestamp: str
    patientInfo: PatientSummary


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    details: Optional[str] = None
    retryAfter: Optional[int] = None
    upgradeInfo: Optional[str] = None
