from __future__ import annotations

from video_transcribe_mcp.types import ExtractionErrorCode


class AudioExtractionError(RuntimeError):
    """Raised when ffmpeg cannot produce an audio track for a video URL."""

    def __init__(self, code: ExtractionErrorCode, error: str, details: str | None = None) -> None:
        self.code = code
        self.error = error
        self.details = details
        message = f"{error} [{code}]"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)


class ChunkingError(RuntimeError):
    pass


class SpeechBackendError(RuntimeError):
    pass


class VisionBackendError(RuntimeError):
    pass


class StorageError(RuntimeError):
    pass


class TranscriptionFailedError(RuntimeError):
    """Every path the orchestrator tried for a job failed."""

    def __init__(self, attempts: list[tuple[str, str]]) -> None:
        self.attempts = attempts
        diagnostic = "; ".join(f"{path}: {reason}" for path, reason in attempts)
        super().__init__(f"All transcription paths failed ({diagnostic})")
