"""Domain and persistence models for the SMLGPT backend."""

from .analysis import (
    AnalysisResult,
    DocumentAnalysis,
    DocumentExtraction,
    EmptyAnalysis,
    Hazard,
    HazardCategory,
    ImageAnalysis,
    ImageTags,
    SearchHit,
    SearchResults,
    Severity,
    Transcription,
)
from .chat import ChatMessage
from .document import UploadedFile
from .job import JobPayload, JobRecord, JobStatus

__all__ = [
    "AnalysisResult",
    "ChatMessage",
    "DocumentAnalysis",
    "DocumentExtraction",
    "EmptyAnalysis",
    "Hazard",
    "HazardCategory",
    "ImageAnalysis",
    "ImageTags",
    "JobPayload",
    "JobRecord",
    "JobStatus",
    "SearchHit",
    "SearchResults",
    "Severity",
    "Transcription",
    "UploadedFile",
]
