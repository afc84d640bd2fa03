from __future__ import annotations

import logging
import uuid
from pathlib import Path

import httpx

from video_transcribe_mcp.config import MB
from video_transcribe_mcp.errors import SpeechBackendError
from video_transcribe_mcp.services.object_storage import ObjectStorage
from video_transcribe_mcp.services.transcriber import SpeechTranscriber
from video_transcribe_mcp.types import (
    AudioChunk,
    PhaseSink,
    ProgressSink,
    TranscriptResult,
    TranscriptSegment,
    WordTimestamp,
)

logger = logging.getLogger(__name__)

CHUNK_KEY_PREFIX = "temp-audio-chunks"


def distribute_word_timestamps(
    segments: list[TranscriptSegment],
    offset: float = 0.0,
) -> list[WordTimestamp]:
    """Approximate word timings by splitting each segment's span evenly across its words."""
    words: list[WordTimestamp] = []
    for segment in segments:
        tokens = segment.text.split()
        if not tokens:
            continue
        step = (segment.end - segment.start) / len(tokens)
        for index, token in enumerate(tokens):
            words.append(
                WordTimestamp(
                    word=token,
                    start=segment.start + index * step + offset,
                    end=segment.start + (index + 1) * step + offset,
                )
            )
    return words


def word_timestamps_for(result: TranscriptResult, offset: float = 0.0) -> list[WordTimestamp]:
    if result.word_timestamps:
        return [
            WordTimestamp(word=word.word, start=word.start + offset, end=word.end + offset)
            for word in result.word_timestamps
        ]
    return distribute_word_timestamps(result.segments, offset)


def transcribe_chunked_audio(
    chunks: list[AudioChunk],
    *,
    speech: SpeechTranscriber,
    storage: ObjectStorage,
    confidence: float = 90.0,
    on_progress: ProgressSink | None = None,
    on_phase: PhaseSink | None = None,
) -> TranscriptResult:
    """Transcribe chunks one by one and merge them onto the full audio timeline.

    A chunk whose upload or transcription fails is logged and skipped.
    Raises SpeechBackendError only when no chunk could be transcribed.
    """
    if not chunks:
        raise SpeechBackendError("No audio chunks to transcribe")

    ordered = sorted(chunks, key=lambda chunk: chunk.index)
    total = len(ordered)

    texts: list[str] = []
    segments: list[TranscriptSegment] = []
    words: list[WordTimestamp] = []
    language: str | None = None
    skipped: list[int] = []

    for position, chunk in enumerate(ordered, start=1):
        logger.info(
            "Transcribing chunk %d/%d (%.1fMB, offset %ds)",
            position,
            total,
            chunk.size_bytes / MB,
            round(chunk.start_time),
        )
        if on_progress is not None:
            on_progress(f"Transcribing chunk {position}/{total}...")

        try:
            if on_phase is not None:
                on_phase("uploading_audio")
            key = f"{CHUNK_KEY_PREFIX}/{uuid.uuid4().hex[:8]}-chunk{chunk.index}.mp3"
            stored = storage.put(key, Path(chunk.path).read_bytes(), "audio/mpeg")

            if on_phase is not None:
                on_phase("transcribing_primary")
            result = speech.transcribe(stored.url, language=language)
        except (RuntimeError, httpx.HTTPError, OSError) as exc:
            logger.warning("Chunk %d failed: %s, skipping", chunk.index, exc)
            skipped.append(chunk.index)
            continue

        if language is None and result.language:
            language = result.language

        segments.extend(
            TranscriptSegment(
                start=segment.start + chunk.start_time,
                end=segment.end + chunk.start_time,
                text=segment.text,
            )
            for segment in result.segments
        )
        words.extend(word_timestamps_for(result, chunk.start_time))
        if result.text:
            texts.append(result.text)

    if len(skipped) == total:
        raise SpeechBackendError(f"All {total} audio chunks failed to transcribe")
    if skipped and on_progress is not None:
        on_progress(f"Transcript has gaps: skipped chunks {', '.join(str(index) for index in skipped)}")

    return TranscriptResult(
        text=" ".join(texts),
        segments=segments,
        language=language,
        word_timestamps=words,
        confidence=confidence,
        method="chunked",
        chunk_count=total,
    )
