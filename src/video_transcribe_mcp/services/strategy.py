from __future__ import annotations

from video_transcribe_mcp.config import MB, TranscriptionConfig
from video_transcribe_mcp.types import TranscriptionStrategy

_DEFAULT_CONFIG = TranscriptionConfig()


def get_transcription_strategy(
    file_size_bytes: int | None,
    config: TranscriptionConfig = _DEFAULT_CONFIG,
) -> TranscriptionStrategy:
    """Choose how to transcribe a video from its size alone.

    Small files go straight to the speech backend. Anything larger than the
    speech backend's limit, or of unknown size, goes to the vision backend
    first so the memory-hungry ffmpeg extraction only runs as a fallback.
    """
    limit_mb = config.speech_size_limit_bytes / MB
    if not file_size_bytes:
        return TranscriptionStrategy(
            method="vision_first",
            reason="File size unknown, trying vision backend first (audio extraction as fallback)",
        )

    size_mb = file_size_bytes / MB
    if file_size_bytes <= config.speech_size_limit_bytes:
        return TranscriptionStrategy(
            method="direct_speech",
            reason=f"File is {size_mb:.1f}MB (<={limit_mb:g}MB), using speech backend directly",
        )

    return TranscriptionStrategy(
        method="vision_first",
        reason=f"File is {size_mb:.1f}MB (>{limit_mb:g}MB), trying vision backend first (audio extraction as fallback)",
    )


def get_extraction_timeout(
    file_size_bytes: int | None,
    config: TranscriptionConfig = _DEFAULT_CONFIG,
) -> int:
    """Roughly three minutes per GB, clamped to the configured bounds."""
    if not file_size_bytes:
        return config.default_extraction_timeout_seconds
    size_gb = file_size_bytes / MB / 1024
    scaled = round(size_gb * 180)
    return max(config.min_extraction_timeout_seconds, min(config.max_extraction_timeout_seconds, scaled))
