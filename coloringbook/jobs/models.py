"""Job record data models and boundary schemas for async processing."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)

from coloringbook.errors import ValidationError

MAX_REMIX_PROMPTS = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SlotStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Provider(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


def coerce_provider(value: Any) -> Optional[Provider]:
    """Known provider names map to Provider; anything else means 'default'."""
    if isinstance(value, Provider):
        return value
    try:
        return Provider(value)
    except ValueError:
        return None


def _require_http_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return value


def _error_reasons(exc: PydanticValidationError) -> List[str]:
    reasons = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        reasons.append(f"{location}: {err['msg']}" if location else err["msg"])
    return reasons


# ---------------------------------------------------------------------------
# Prompt remix
# ---------------------------------------------------------------------------

class ResultSlot(BaseModel):
    """One output per prompt. Position in the list matches the prompt list."""
    prompt: str
    status: SlotStatus = SlotStatus.QUEUED
    url: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


def build_result_skeleton(prompts: List[str]) -> List[ResultSlot]:
    return [ResultSlot(prompt=prompt) for prompt in prompts]


class PromptRemixJob(BaseModel):
    """Tracks the lifecycle of a prompt remix job (row in prompt_remix_jobs)."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    image_id: Optional[str] = None
    image_url: str
    prompts: List[str]
    results: List[ResultSlot] = Field(default_factory=list)
    provider: Optional[Provider] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @field_validator("provider", mode="before")
    @classmethod
    def _known_provider(cls, value: Any) -> Optional[Provider]:
        if value is None:
            return None
        return coerce_provider(value)

    @field_validator("results", mode="before")
    @classmethod
    def _results_list(cls, value: Any) -> Any:
        return value or []


class PromptRemixRequest(BaseModel):
    """Validated input for creating a prompt remix job."""
    image_url: str
    prompts: List[str] = Field(min_length=1, max_length=MAX_REMIX_PROMPTS)
    image_id: Optional[str] = None
    provider: Optional[Provider] = None
    user_id: Optional[str] = None

    @field_validator("image_url")
    @classmethod
    def _image_url(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator("prompts")
    @classmethod
    def _prompts_not_blank(cls, value: List[str]) -> List[str]:
        cleaned = [prompt.strip() for prompt in value]
        if any(not prompt for prompt in cleaned):
            raise ValueError("prompts must not be blank")
        return cleaned


def parse_remix_request(**fields: Any) -> PromptRemixRequest:
    if not fields.get("image_url"):
        raise ValidationError("Missing required field: imageUrl is required.")
    prompts = fields.get("prompts") or []
    if not prompts:
        raise ValidationError("At least one prompt is required.")
    if len(prompts) > MAX_REMIX_PROMPTS:
        raise ValidationError(
            f"Too many prompts: maximum {MAX_REMIX_PROMPTS} prompts allowed per request."
        )
    try:
        return PromptRemixRequest(**fields)
    except PydanticValidationError as exc:
        reasons = _error_reasons(exc)
        raise ValidationError("Invalid prompt remix request: " + "; ".join(reasons), reasons)


# ---------------------------------------------------------------------------
# Photobook
# ---------------------------------------------------------------------------

class PhotobookImage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    coloring_page_url: str = Field(
        validation_alias=AliasChoices("coloring_page_url", "coloringPageUrl", "imageUrl", "image_url"),
    )

    @field_validator("coloring_page_url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _require_http_url(value)


class PhotobookPayload(BaseModel):
    """Typed payload stored in photobook_jobs.payload."""
    model_config = ConfigDict(populate_by_name=True)

    images: List[PhotobookImage] = Field(min_length=1)
    title: str = Field(min_length=1)
    user_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("userId", "user_id"),
        serialization_alias="userId",
    )
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def parse_photobook_payload(data: Any) -> PhotobookPayload:
    """Validate a photobook payload once, with explicit rejection reasons."""
    if not isinstance(data, dict):
        raise ValidationError("Photobook job payload is invalid or missing")
    if not data.get("images"):
        raise ValidationError("No images provided")
    if not (data.get("userId") or data.get("user_id")):
        raise ValidationError("User ID required")
    try:
        return PhotobookPayload.model_validate(data)
    except PydanticValidationError as exc:
        reasons = _error_reasons(exc)
        raise ValidationError("Invalid photobook payload: " + "; ".join(reasons), reasons)


class PhotobookJob(BaseModel):
    """Tracks the lifecycle of a photobook job (row in photobook_jobs)."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    title: str
    user_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    processed_count: int = 0
    total_count: int = 0
    pdf_path: Optional[str] = None
    pdf_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
