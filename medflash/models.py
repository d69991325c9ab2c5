import base64
import math
import uuid
from enum import Enum
from typing import Annotated

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

Box = Annotated[list[float], Field(min_length=4, max_length=4)]


def _new_card_id() -> str:
    return f"card-{uuid.uuid4().hex}"


class Flashcard(BaseModel):
    id: str = Field(default_factory=_new_card_id)
    front: str
    back: str
    tags: list[str] = Field(default_factory=list)
    bounding_box: Box | None = Field(
        default=None,
        validation_alias=AliasChoices("bounding_box", "boundingBox"),
    )
    structure_bounding_box: Box | None = Field(
        default=None,
        validation_alias=AliasChoices("structure_bounding_box", "structureBoundingBox"),
    )
    image: bytes | None = None
    image_mime_type: str | None = None

    @field_validator("bounding_box", "structure_bounding_box")
    @classmethod
    def _finite_box(cls, value: list[float] | None) -> list[float] | None:
        if value is not None and not all(math.isfinite(v) for v in value):
            raise ValueError("box components must be finite numbers")
        return value

    @field_validator("image", mode="before")
    @classmethod
    def _decode_image(cls, value):
        # JSON clients send the rendered raster as base64 text.
        if isinstance(value, str):
            return base64.b64decode(value)
        return value

    @field_serializer("image", when_used="json-unless-none")
    def _encode_image(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class DocumentAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    language: str
    topic: str
    suggested_count: int
    reasoning: str
    has_images: bool
    image_count_estimate: str


class GenerationPreferences(BaseModel):
    exam_type: str = "USMLE Step 1"
    focus_area: str = "General Medicine"
    card_count: int = Field(default=30, ge=5, le=100)
    language: str = "English"
    detailed_context: bool = False

    @classmethod
    def from_analysis(cls, analysis: DocumentAnalysis, **overrides) -> "GenerationPreferences":
        """Seed preferences with the analysis defaults, then apply caller overrides."""
        values = {
            "focus_area": analysis.topic,
            "language": analysis.language,
            "card_count": min(max(analysis.suggested_count, 5), 100),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ExportFormat(str, Enum):
    CSV = "csv"
    MOBILE_TEXT = "mobile-text"
    MARKDOWN = "markdown"
    ARCHIVE = "archive"


class ContentKind(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"
    ARCHIVE = "archive"


class MediaPlacement(str, Enum):
    FLAT = "flat"
    NESTED = "nested"


class ExportArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: bytes
    filename: str
    content_kind: ContentKind
    media_type: str


class PixelRect(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    w: int
    h: int

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.w / 2, self.y + self.h / 2


class GenerationResult(BaseModel):
    cards: list[Flashcard]
    state: str


class ExportRequest(BaseModel):
    cards: list[Flashcard]
    source_filename: str
    format: ExportFormat = ExportFormat.ARCHIVE


class ConfigUpdate(BaseModel):
    gemini_api_key: str | None = None
    generation_model: str | None = None
    analysis_model: str | None = None
    image_model: str | None = None
    media_placement: MediaPlacement | None = None
