"""Typed results produced by the AI provider gateway and the analysis pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Hazard severity levels, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HazardCategory(str, Enum):
    """Hazard families understood by the frontend."""

    FALL_HAZARD = "fall_hazard"
    ELECTRICAL = "electrical"
    CHEMICAL = "chemical"
    MECHANICAL = "mechanical"
    ERGONOMIC = "ergonomic"
    FIRE = "fire"
    CONFINED_SPACE = "confined_space"
    PPE_VIOLATION = "ppe_violation"
    HOUSEKEEPING = "housekeeping"
    OTHER = "other"


class Hazard(BaseModel):
    """A severity-tagged safety finding derived from free-text AI output."""

    severity: Severity
    description: str
    category: HazardCategory = HazardCategory.OTHER


class ImageTags(BaseModel):
    """Result of the generic image tagging/object detection call."""

    description: str = "No description available"
    tags: list[dict[str, Any]] = Field(default_factory=list)
    objects: list[dict[str, Any]] = Field(default_factory=list)
    categories: list[dict[str, Any]] = Field(default_factory=list)
    text: list[str] = Field(default_factory=list)


class DocumentExtraction(BaseModel):
    """Result of the document-intelligence call."""

    extracted_text: str = ""
    tables: list[dict[str, Any]] = Field(default_factory=list)
    entities: list[dict[str, Any]] = Field(default_factory=list)
    key_value_pairs: list[dict[str, Any]] = Field(default_factory=list)


class Transcription(BaseModel):
    """Speech-to-text outcome; an empty ``text`` means nothing was recognised."""

    text: str = ""
    confidence: float = 0.0
    status: str = "Unknown"


class _AnalysisBase(BaseModel):
    hazards: list[Hazard] = Field(default_factory=list)
    embedding: list[float] = Field(default_factory=list)
    analyzed_at: str | None = None

    def best_text(self) -> str:
        return ""

    def public_dump(self) -> dict[str, Any]:
        """Return the analysis without the embedding vector."""

        return self.model_dump(mode="json", exclude={"embedding"})


class ImageAnalysis(_AnalysisBase):
    kind: Literal["image"] = "image"
    vision_text: str
    tagging: ImageTags

    def best_text(self) -> str:
        return self.vision_text or self.tagging.description


class DocumentAnalysis(_AnalysisBase):
    kind: Literal["document"] = "document"
    extraction: DocumentExtraction

    def best_text(self) -> str:
        return self.extraction.extracted_text


class EmptyAnalysis(_AnalysisBase):
    """Analysis for file types no provider understands."""

    kind: Literal["none"] = "none"


AnalysisResult = Annotated[
    Union[ImageAnalysis, DocumentAnalysis, EmptyAnalysis],
    Field(discriminator="kind"),
]


class SearchHit(BaseModel):
    id: str
    score: float
    document: dict[str, Any] = Field(default_factory=dict)


class SearchResults(BaseModel):
    hits: list[SearchHit] = Field(default_factory=list)
    total_count: int = 0


__all__ = [
    "AnalysisResult",
    "DocumentAnalysis",
    "DocumentExtraction",
    "EmptyAnalysis",
    "Hazard",
    "HazardCategory",
    "ImageAnalysis",
    "ImageTags",
    "SearchHit",
    "SearchResults",
    "Severity",
    "Transcription",
]
