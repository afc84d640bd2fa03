from __future__ import annotations

import logging
import math
import shutil
import subprocess
import uuid
from pathlib import Path

from video_transcribe_mcp.config import MB
from video_transcribe_mcp.errors import ChunkingError
from video_transcribe_mcp.services.ffmpeg import probe_duration
from video_transcribe_mcp.types import AudioChunk

logger = logging.getLogger(__name__)

CHUNK_PREFIX = "chunk_"
CHUNK_SUFFIX = ".mp3"


def target_chunk_duration(target_chunk_size_mb: float, audio_bitrate_kbps: int) -> int:
    """Seconds of audio that fit in the chunk byte budget at a constant bitrate."""
    bytes_per_second = audio_bitrate_kbps * 1000 / 8
    target_bytes = target_chunk_size_mb * MB
    return math.floor(target_bytes / bytes_per_second)


def split_audio_into_chunks(
    audio_path: str | Path,
    *,
    work_dir: Path,
    target_chunk_size_mb: float = 12,
    audio_bitrate_kbps: int = 64,
    ffmpeg_path: str = "ffmpeg",
    ffprobe_path: str = "ffprobe",
    timeout_seconds: float = 600,
    probe_timeout_seconds: float = 30,
) -> list[AudioChunk]:
    """Split extracted audio with ffmpeg's segment muxer, without re-encoding.

    Stream copy cuts on packet boundaries, so real chunk lengths drift from
    the target. Each chunk is probed and ``start_time`` is the running sum of
    the measured durations before it.
    """
    chunk_dir = work_dir / f"chunks-{uuid.uuid4().hex[:10]}"
    chunk_dir.mkdir(parents=True, exist_ok=True)

    segment_seconds = target_chunk_duration(target_chunk_size_mb, audio_bitrate_kbps)
    logger.info(
        "Splitting into ~%ss chunks (target %sMB at %skbps)",
        segment_seconds,
        target_chunk_size_mb,
        audio_bitrate_kbps,
    )

    cmd = [
        ffmpeg_path,
        "-i",
        str(audio_path),
        "-f",
        "segment",
        "-segment_time",
        str(segment_seconds),
        "-c",
        "copy",
        "-reset_timestamps",
        "1",
        "-y",
        str(chunk_dir / f"{CHUNK_PREFIX}%04d{CHUNK_SUFFIX}"),
    ]

    try:
        completed = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        shutil.rmtree(chunk_dir, ignore_errors=True)
        raise ChunkingError(f"FFmpeg chunking timed out after {timeout_seconds:g}s") from exc
    except OSError as exc:
        shutil.rmtree(chunk_dir, ignore_errors=True)
        raise ChunkingError(f"FFmpeg chunking could not start: {exc}") from exc

    if completed.returncode != 0:
        shutil.rmtree(chunk_dir, ignore_errors=True)
        stderr = completed.stderr or ""
        raise ChunkingError(f"FFmpeg chunking failed with code {completed.returncode}: {stderr[-300:]}")

    chunk_paths = sorted(
        path
        for path in chunk_dir.iterdir()
        if path.name.startswith(CHUNK_PREFIX) and path.name.endswith(CHUNK_SUFFIX)
    )

    chunks: list[AudioChunk] = []
    cumulative = 0.0
    for index, chunk_path in enumerate(chunk_paths):
        duration = probe_duration(str(chunk_path), ffprobe_path=ffprobe_path, timeout=probe_timeout_seconds)
        chunks.append(
            AudioChunk(
                index=index,
                path=str(chunk_path),
                size_bytes=chunk_path.stat().st_size,
                start_time=cumulative,
                duration=duration,
            )
        )
        cumulative += duration

    logger.info("Split into %d chunks, total duration: %ds", len(chunks), round(cumulative))
    return chunks


def cleanup_chunks(chunks: list[AudioChunk]) -> None:
    if not chunks:
        return
    chunk_dir = Path(chunks[0].path).parent
    shutil.rmtree(chunk_dir, ignore_errors=True)
    logger.info("Cleaned up chunk dir: %s", chunk_dir)
