"""
Pydantic Models for the Ad Extraction Pipeline

This module contains all the Pydantic models used throughout the application:
the transcript and visual-description results persisted to storage, the
per-stream outcome records returned to callers, the upstream keyframe
metadata, and the parts of the speech-recognition provider response we consume.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Segment(BaseModel):
    """One contiguous span of recognized speech"""
    model_config = ConfigDict(frozen=True)

    start: float = Field(..., description="Start time in seconds")
    end: float = Field(..., description="End time in seconds")
    text: str = Field(..., description="Recognized text, trimmed")

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("segment text must not be empty")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> "Segment":
        if self.end < self.start:
            raise ValueError(f"segment end {self.end} is before start {self.start}")
        return self


class TranscriptResult(BaseModel):
    """Output of the transcript stream, chronological"""
    segments: List[Segment] = Field(default_factory=list)


class KeyframeMeta(BaseModel):
    """One entry of ads/{ad_id}/keyframes/metadata.json written by the keyframe selector"""
    index: int
    frame_number: int = 0
    timestamp_sec: float = 0.0
    entropy_score: float = 0.0
    r2_key: str


class KeyframeMetadataFile(BaseModel):
    keyframes: List[KeyframeMeta] = Field(default_factory=list)


class Keyframe(BaseModel):
    """A selected still frame together with its image bytes"""
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., description="Logical ordinal used for processing order")
    frame_number: int = Field(0, description="Raw frame offset in the video")
    timestamp_sec: float = Field(..., description="Frame timestamp in seconds")
    image_bytes: bytes = Field(..., repr=False, description="JPEG bytes")


class FrameDescription(BaseModel):
    """Generated description (or error marker) for one keyframe"""
    model_config = ConfigDict(frozen=True)

    frame_index: int
    timestamp_sec: float
    description: str


class VisualResult(BaseModel):
    """Output of the visual-description stream, in keyframe order"""
    frames: List[FrameDescription] = Field(default_factory=list)


class StreamName(str, Enum):
    TRANSCRIPT = "transcript"
    VISUAL = "visual"


class StreamStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class StreamOutcome(BaseModel):
    """Per-stream status record aggregated into the extraction response"""
    model_config = ConfigDict(frozen=True)

    stream_name: StreamName
    status: StreamStatus
    result_count: int = 0
    storage_key: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def success(cls, stream_name: StreamName, result_count: int, storage_key: str) -> "StreamOutcome":
        return cls(
            stream_name=stream_name,
            status=StreamStatus.SUCCESS,
            result_count=result_count,
            storage_key=storage_key,
        )

    @classmethod
    def error(cls, stream_name: StreamName, message: str) -> "StreamOutcome":
        return cls(stream_name=stream_name, status=StreamStatus.ERROR, error_message=message)

    @classmethod
    def skipped(cls, stream_name: StreamName, reason: str) -> "StreamOutcome":
        return cls(stream_name=stream_name, status=StreamStatus.SKIPPED, error_message=reason)


class ExtractRequest(BaseModel):
    ad_id: str = Field(..., description="Advertisement identifier")


class ExtractionResponse(BaseModel):
    """Terminal artifact of one extraction run"""
    ad_id: str
    outcomes: List[StreamOutcome] = Field(default_factory=list)
    processing_time_ms: float

    def outcome_for(self, stream_name: StreamName) -> Optional[StreamOutcome]:
        for outcome in self.outcomes:
            if outcome.stream_name == stream_name:
                return outcome
        return None


# ------------------------------------------------
# ---- Speech-recognition provider response ----
# ------------------------------------------------

class _ProviderModel(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _null_lists_to_empty(cls, value, info):
        # The provider sends null instead of [] for some absent sections
        field = cls.model_fields.get(info.field_name)
        if value is None and field is not None and field.default_factory is list:
            return []
        return value


class Utterance(_ProviderModel):
    start: float = 0.0
    end: float = 0.0
    transcript: str = ""


class WordEntry(_ProviderModel):
    word: str = ""
    start: float = 0.0
    end: float = 0.0


class Alternative(_ProviderModel):
    transcript: str = ""
    words: List[WordEntry] = Field(default_factory=list)


class Channel(_ProviderModel):
    alternatives: List[Alternative] = Field(default_factory=list)


class SpeechRecognitionResults(_ProviderModel):
    utterances: List[Utterance] = Field(default_factory=list)
    channels: List[Channel] = Field(default_factory=list)


class SpeechRecognitionResponse(_ProviderModel):
    results: SpeechRecognitionResults = Field(default_factory=SpeechRecognitionResults)

    @field_validator("results", mode="before")
    @classmethod
    def _null_results(cls, value):
        return {} if value is None else value
