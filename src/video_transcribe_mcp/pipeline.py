from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Literal

from video_transcribe_mcp.config import TranscriptionConfig
from video_transcribe_mcp.errors import SpeechBackendError, TranscriptionFailedError
from video_transcribe_mcp.services.audio_extraction import cleanup_audio_file, extract_audio
from video_transcribe_mcp.services.chunk_transcription import transcribe_chunked_audio, word_timestamps_for
from video_transcribe_mcp.services.chunking import cleanup_chunks, split_audio_into_chunks
from video_transcribe_mcp.services.object_storage import ObjectStorage
from video_transcribe_mcp.services.strategy import get_extraction_timeout, get_transcription_strategy
from video_transcribe_mcp.services.transcriber import SpeechTranscriber
from video_transcribe_mcp.services.vision import VisionTranscriber
from video_transcribe_mcp.types import (
    AudioChunk,
    AudioExtractionResult,
    PhaseSink,
    ProgressSink,
    StrategyMethod,
    TranscriptionPhase,
    TranscriptionStrategy,
    TranscriptResult,
)

logger = logging.getLogger(__name__)

PathName = Literal["direct_speech", "vision", "chunked"]

PATH_PHASES: dict[PathName, tuple[TranscriptionPhase, ...]] = {
    "direct_speech": ("transcribing_primary", "processing_results", "completed"),
    "vision": ("transcribing_alternate", "processing_results", "completed"),
    "chunked": (
        "extracting_audio",
        "uploading_audio",
        "transcribing_primary",
        "processing_results",
        "completed",
    ),
}

# Primary path first, then its single fallback.
FALLBACK_PLANS: dict[StrategyMethod, tuple[PathName, ...]] = {
    "direct_speech": ("direct_speech", "vision"),
    "vision_first": ("vision", "chunked"),
    "extract_then_chunk": ("chunked", "direct_speech"),
}


class PhaseTracker:
    """Forwards phase changes to a sink, never moving backwards within one path."""

    def __init__(self, sink: PhaseSink | None = None) -> None:
        self.sink = sink
        self.path: PathName | None = None
        self.current: TranscriptionPhase | None = None
        self._order: tuple[TranscriptionPhase, ...] = ()
        self._rank = -1

    def start_path(self, path: PathName) -> None:
        self.path = path
        self._order = PATH_PHASES[path]
        self._rank = -1

    def report(self, phase: TranscriptionPhase) -> None:
        if phase not in self._order:
            raise ValueError(f"Phase {phase!r} is not part of the {self.path} path")
        rank = self._order.index(phase)
        if rank <= self._rank:
            return
        self._rank = rank
        self.current = phase
        if self.sink is not None:
            self.sink(phase)


class TranscriptionOrchestrator:
    def __init__(
        self,
        *,
        speech: SpeechTranscriber,
        vision: VisionTranscriber,
        storage: ObjectStorage,
        config: TranscriptionConfig,
        work_root: Path,
        extractor: Callable[..., AudioExtractionResult] = extract_audio,
        splitter: Callable[..., list[AudioChunk]] = split_audio_into_chunks,
    ) -> None:
        self.speech = speech
        self.vision = vision
        self.storage = storage
        self.config = config
        self.work_root = work_root
        self.extractor = extractor
        self.splitter = splitter
        self.work_root.mkdir(parents=True, exist_ok=True)

    def select_strategy(self, file_size_bytes: int | None) -> TranscriptionStrategy:
        return get_transcription_strategy(file_size_bytes, self.config)

    def run(
        self,
        video_url: str,
        file_size_bytes: int | None = None,
        *,
        strategy: TranscriptionStrategy | None = None,
        on_phase: PhaseSink | None = None,
        on_progress: ProgressSink | None = None,
    ) -> TranscriptResult:
        """Transcribe a video, falling back to the strategy's alternate path on failure.

        Raises TranscriptionFailedError when both paths fail. The job's work
        directory is removed whatever the outcome.
        """
        strategy = strategy or self.select_strategy(file_size_bytes)
        logger.info("Strategy %s for %s: %s", strategy.method, video_url, strategy.reason)

        tracker = PhaseTracker(on_phase)
        attempts: list[tuple[str, str]] = []
        work_dir = Path(tempfile.mkdtemp(prefix="job-", dir=self.work_root))
        try:
            for path in FALLBACK_PLANS[strategy.method]:
                if attempts:
                    logger.info("Falling back to %s path for %s", path, video_url)
                tracker.start_path(path)
                try:
                    result = self._run_path(path, video_url, file_size_bytes, work_dir, tracker, on_progress)
                except (RuntimeError, OSError) as exc:
                    logger.warning("%s path failed for %s: %s", path, video_url, exc)
                    attempts.append((path, str(exc)))
                    continue

                tracker.report("processing_results")
                if not result.word_timestamps:
                    result.word_timestamps = word_timestamps_for(result)
                tracker.report("completed")
                return result
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        raise TranscriptionFailedError(attempts)

    def _run_path(
        self,
        path: PathName,
        video_url: str,
        file_size_bytes: int | None,
        work_dir: Path,
        tracker: PhaseTracker,
        on_progress: ProgressSink | None,
    ) -> TranscriptResult:
        if path == "direct_speech":
            tracker.report("transcribing_primary")
            if on_progress is not None:
                on_progress("Transcribing with speech backend...")
            result = self.speech.transcribe(video_url)
            if not result.text:
                raise SpeechBackendError("Speech backend returned an empty transcript")
            result.method = "direct_speech"
            result.confidence = self.config.direct_confidence
            return result

        if path == "vision":
            tracker.report("transcribing_alternate")
            if on_progress is not None:
                on_progress("Transcribing with vision backend...")
            result = self.vision.transcribe(video_url)
            result.method = "vision"
            result.confidence = self.config.vision_confidence
            return result

        return self._run_chunked(video_url, file_size_bytes, work_dir, tracker, on_progress)

    def _run_chunked(
        self,
        video_url: str,
        file_size_bytes: int | None,
        work_dir: Path,
        tracker: PhaseTracker,
        on_progress: ProgressSink | None,
    ) -> TranscriptResult:
        tracker.report("extracting_audio")
        extraction = self.extractor(
            video_url,
            output_dir=work_dir,
            timeout_seconds=get_extraction_timeout(file_size_bytes, self.config),
            audio_bitrate=self.config.audio_bitrate,
            on_progress=on_progress,
            ffmpeg_path=self.config.ffmpeg_path,
        )

        split: list[AudioChunk] = []
        try:
            if extraction.audio_size_bytes <= self.config.speech_size_limit_bytes:
                chunks = [
                    AudioChunk(
                        index=0,
                        path=extraction.audio_path,
                        size_bytes=extraction.audio_size_bytes,
                        start_time=0.0,
                        duration=extraction.duration_seconds,
                    )
                ]
            else:
                split = self.splitter(
                    extraction.audio_path,
                    work_dir=work_dir,
                    target_chunk_size_mb=self.config.target_chunk_size_mb,
                    audio_bitrate_kbps=self.config.audio_bitrate_kbps,
                    ffmpeg_path=self.config.ffmpeg_path,
                    ffprobe_path=self.config.ffprobe_path,
                    timeout_seconds=self.config.segment_timeout_seconds,
                    probe_timeout_seconds=self.config.probe_timeout_seconds,
                )
                chunks = split

            return transcribe_chunked_audio(
                chunks,
                speech=self.speech,
                storage=self.storage,
                confidence=self.config.chunked_confidence,
                on_progress=on_progress,
                on_phase=tracker.report,
            )
        finally:
            cleanup_chunks(split)
            cleanup_audio_file(extraction.audio_path)
