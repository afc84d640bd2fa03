from __future__ import annotations

import codecs
import logging
import re
import signal
import subprocess
import time
import uuid
from pathlib import Path
from threading import Event, Timer
from typing import IO, cast

from video_transcribe_mcp.config import MB
from video_transcribe_mcp.errors import AudioExtractionError
from video_transcribe_mcp.services.ffmpeg import parse_duration, parse_position
from video_transcribe_mcp.types import AudioExtractionResult, ProgressSink

logger = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r"[\r\n]")

NO_AUDIO_MARKERS = ("does not contain any stream", "no audio")
DOWNLOAD_MARKERS = (
    "server returned",
    "http error",
    "connection refused",
    "connection timed out",
    "failed to resolve hostname",
    "name or service not known",
    "network is unreachable",
)
OOM_HINT = (
    "FFmpeg was killed (likely out of memory). "
    "The video may be too large for audio extraction in this environment."
)


def _notify(on_progress: ProgressSink | None, message: str) -> None:
    if on_progress is not None:
        on_progress(message)


def _remove(path: Path) -> None:
    path.unlink(missing_ok=True)


def classify_ffmpeg_failure(returncode: int | None, stderr: str) -> AudioExtractionError:
    """Map a failed ffmpeg run to an extraction error.

    Callers only see the returned error; how it was derived (stderr text,
    signal numbers) stays in here.
    """
    lowered = stderr.lower()
    if any(marker in lowered for marker in NO_AUDIO_MARKERS):
        return AudioExtractionError(
            "NO_AUDIO_STREAM",
            "Video has no audio stream",
            "The video file does not contain an audio track",
        )

    if returncode is None or returncode == -signal.SIGKILL:
        return AudioExtractionError("EXTRACTION_FAILED", "Audio extraction failed", OOM_HINT)

    if returncode < 0:
        try:
            signal_name = signal.Signals(-returncode).name
        except ValueError:
            signal_name = str(-returncode)
        return AudioExtractionError(
            "EXTRACTION_FAILED",
            "Audio extraction failed",
            f"FFmpeg was killed by signal {signal_name}",
        )

    if any(marker in lowered for marker in DOWNLOAD_MARKERS):
        last_line = next((line for line in reversed(stderr.strip().splitlines()) if line.strip()), "")
        return AudioExtractionError(
            "DOWNLOAD_FAILED",
            "Could not download video",
            last_line[:400] or f"FFmpeg exited with code {returncode}",
        )

    return AudioExtractionError(
        "EXTRACTION_FAILED",
        "Audio extraction failed",
        f"FFmpeg exited with code {returncode}",
    )


class _StderrMonitor:
    """Collects ffmpeg's stderr and turns duration/time announcements into progress messages."""

    def __init__(self, on_progress: ProgressSink | None) -> None:
        self.on_progress = on_progress
        self.duration = 0.0
        self._chunks: list[str] = []
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def consume(self, stream: IO[bytes]) -> None:
        while True:
            data = stream.read1(4096)  # type: ignore[attr-defined]
            if not data:
                break
            self._feed(self._decoder.decode(data))
        self._feed(self._decoder.decode(b"", final=True))
        if self._pending:
            self._handle_line(self._pending)
            self._pending = ""

    def _feed(self, text: str) -> None:
        if not text:
            return
        self._chunks.append(text)
        *lines, self._pending = _LINE_SPLIT_RE.split(self._pending + text)
        for line in lines:
            self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        if self.duration <= 0:
            announced = parse_duration(line)
            if announced is not None:
                self.duration = announced
                _notify(self.on_progress, f"Extracting audio ({round(announced)}s of audio)...")
                return

        position = parse_position(line)
        if position is not None and self.duration > 0:
            pct = min(99, round(position / self.duration * 100))
            _notify(self.on_progress, f"Extracting audio... {pct}%")


def extract_audio(
    video_url: str,
    *,
    output_dir: Path,
    timeout_seconds: float = 120,
    audio_bitrate: str = "64k",
    on_progress: ProgressSink | None = None,
    ffmpeg_path: str = "ffmpeg",
) -> AudioExtractionResult:
    """Pull a mono 16kHz MP3 track out of a video URL with ffmpeg.

    ffmpeg downloads the input itself. The run is capped to one thread and
    small probe buffers so it stays inside tight container memory limits, and
    it is killed outright after ``timeout_seconds``. Raises
    AudioExtractionError on every failure; any partial output is removed first.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"audio-{uuid.uuid4().hex[:10]}.mp3"

    _notify(on_progress, "Downloading and extracting audio track...")

    cmd = [
        ffmpeg_path,
        "-threads",
        "1",
        "-nostdin",
        "-probesize",
        "5000000",
        "-analyzeduration",
        "5000000",
        "-i",
        video_url,
        "-vn",
        "-acodec",
        "libmp3lame",
        "-ab",
        audio_bitrate,
        "-ac",
        "1",
        "-ar",
        "16000",
        "-y",
        str(output_path),
    ]
    logger.info("Starting ffmpeg: %s", " ".join(cmd)[:200])
    started = time.monotonic()

    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        _remove(output_path)
        logger.error("ffmpeg spawn failed: %s", exc)
        raise AudioExtractionError("EXTRACTION_FAILED", "Audio extraction failed", str(exc)) from exc

    timed_out = Event()

    def _kill() -> None:
        timed_out.set()
        process.kill()

    watchdog = Timer(timeout_seconds, _kill)
    watchdog.daemon = True
    watchdog.start()

    monitor = _StderrMonitor(on_progress)
    stderr_stream = cast(IO[bytes], process.stderr)
    try:
        monitor.consume(stderr_stream)
        returncode = process.wait()
    except BaseException:
        if process.poll() is None:
            process.kill()
            process.wait()
        _remove(output_path)
        raise
    finally:
        watchdog.cancel()
        stderr_stream.close()

    elapsed = time.monotonic() - started
    stderr = monitor.text

    if timed_out.is_set():
        _remove(output_path)
        logger.error("ffmpeg timed out after %.1fs", elapsed)
        raise AudioExtractionError(
            "TIMEOUT",
            "Audio extraction timed out",
            f"Extraction exceeded {timeout_seconds:g}s timeout",
        )

    if returncode != 0:
        _remove(output_path)
        logger.error("ffmpeg failed (code %s, %.1fs). stderr tail: %s", returncode, elapsed, stderr[-1000:])
        raise classify_ffmpeg_failure(returncode, stderr)

    try:
        size_bytes = output_path.stat().st_size
    except FileNotFoundError as exc:
        raise AudioExtractionError(
            "EXTRACTION_FAILED",
            "Audio extraction failed",
            "Output file not found after extraction",
        ) from exc

    logger.info(
        "Extracted %.2fMB audio in %.1fs (duration: %ds)",
        size_bytes / MB,
        elapsed,
        round(monitor.duration),
    )
    _notify(on_progress, f"Audio extracted: {size_bytes / MB:.2f}MB")

    return AudioExtractionResult(
        audio_path=str(output_path),
        audio_size_bytes=size_bytes,
        duration_seconds=monitor.duration,
        format="mp3",
    )


def cleanup_audio_file(audio_path: str | Path) -> None:
    path = Path(audio_path)
    if path.exists():
        path.unlink(missing_ok=True)
        logger.info("Cleaned up temp audio file: %s", path)
