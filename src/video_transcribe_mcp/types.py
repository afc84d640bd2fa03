from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Literal

JobStatus = Literal["queued", "processing", "completed", "failed"]
TranscriptFormat = Literal["markdown", "json", "text"]

StrategyMethod = Literal["direct_speech", "extract_then_chunk", "vision_first"]
TranscriptionMethod = Literal["direct_speech", "vision", "chunked"]
TranscriptionPhase = Literal[
    "extracting_audio",
    "uploading_audio",
    "transcribing_primary",
    "transcribing_alternate",
    "processing_results",
    "completed",
]
ExtractionErrorCode = Literal["DOWNLOAD_FAILED", "EXTRACTION_FAILED", "NO_AUDIO_STREAM", "TIMEOUT"]

ProgressSink = Callable[[str], None]
PhaseSink = Callable[[TranscriptionPhase], None]


@dataclass(frozen=True, slots=True)
class TranscriptionStrategy:
    method: StrategyMethod
    reason: str


@dataclass(slots=True)
class AudioExtractionResult:
    audio_path: str
    audio_size_bytes: int
    duration_seconds: float
    format: str = "mp3"


@dataclass(slots=True)
class AudioChunk:
    index: int
    path: str
    size_bytes: int
    start_time: float
    duration: float


@dataclass(slots=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(slots=True)
class WordTimestamp:
    word: str
    start: float
    end: float


@dataclass(slots=True)
class TranscriptResult:
    text: str
    segments: list[TranscriptSegment]
    language: str | None = None
    word_timestamps: list[WordTimestamp] = field(default_factory=list)
    confidence: float | None = None
    method: TranscriptionMethod | None = None
    chunk_count: int | None = None
