from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from video_transcribe_mcp.services.ffmpeg import resolve_binary

MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class TranscriptionConfig:
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    speech_size_limit_bytes: int = 16 * MB
    target_chunk_size_mb: float = 12.0
    audio_bitrate_kbps: int = 64
    default_extraction_timeout_seconds: int = 300
    min_extraction_timeout_seconds: int = 180
    max_extraction_timeout_seconds: int = 3600
    segment_timeout_seconds: int = 600
    probe_timeout_seconds: int = 30
    direct_confidence: float = 95.0
    chunked_confidence: float = 90.0
    vision_confidence: float = 85.0

    def __post_init__(self) -> None:
        target_bytes = self.target_chunk_size_mb * MB
        if target_bytes >= self.speech_size_limit_bytes:
            raise ValueError(
                f"Chunk target ({self.target_chunk_size_mb}MB) must be below the speech backend "
                f"limit ({self.speech_size_limit_bytes / MB:.1f}MB)"
            )
        if self.audio_bitrate_kbps <= 0:
            raise ValueError("audio_bitrate_kbps must be positive")

    @property
    def audio_bitrate(self) -> str:
        return f"{self.audio_bitrate_kbps}k"


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    mcp_path: str
    health_path: str
    poll_interval_seconds: int
    data_dir: Path
    database_path: Path
    work_dir: Path
    speech_api_key: str
    speech_base_url: str
    vision_api_key: str | None
    vision_base_url: str
    vision_model: str
    storage_base_url: str | None
    storage_api_key: str | None
    stale_job_minutes: int
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    return float(raw)


def _normalized_path(path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def load_settings() -> Settings:
    load_dotenv()
    data_dir = Path(os.getenv("DATA_DIR", "/data")).resolve()
    database_path = Path(os.getenv("DATABASE_PATH", str(data_dir / "video_transcribe.sqlite3"))).resolve()
    work_dir = Path(os.getenv("WORK_DIR", str(data_dir / "_work"))).resolve()

    speech_api_key = os.getenv("SPEECH_API_KEY", "").strip()
    if not speech_api_key:
        raise RuntimeError("SPEECH_API_KEY is required")

    transcription = TranscriptionConfig(
        ffmpeg_path=resolve_binary("ffmpeg", os.getenv("FFMPEG_PATH")),
        ffprobe_path=resolve_binary("ffprobe", os.getenv("FFPROBE_PATH")),
        speech_size_limit_bytes=int(_as_float("SPEECH_SIZE_LIMIT_MB", 16.0) * MB),
        target_chunk_size_mb=_as_float("TARGET_CHUNK_SIZE_MB", 12.0),
        audio_bitrate_kbps=_as_int("AUDIO_BITRATE_KBPS", 64),
    )

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_as_int("PORT", 3000),
        mcp_path=_normalized_path(os.getenv("MCP_PATH", "/mcp")),
        health_path=_normalized_path(os.getenv("HEALTH_PATH", "/healthz")),
        poll_interval_seconds=_as_int("POLL_INTERVAL_SECONDS", 5),
        data_dir=data_dir,
        database_path=database_path,
        work_dir=work_dir,
        speech_api_key=speech_api_key,
        speech_base_url=os.getenv("SPEECH_BASE_URL", "https://api.assemblyai.com/v2").rstrip("/"),
        vision_api_key=os.getenv("VISION_API_KEY") or None,
        vision_base_url=os.getenv("VISION_BASE_URL", "https://api.openai.com").rstrip("/"),
        vision_model=os.getenv("VISION_MODEL", "gpt-4o"),
        storage_base_url=(os.getenv("STORAGE_BASE_URL") or "").rstrip("/") or None,
        storage_api_key=os.getenv("STORAGE_API_KEY") or None,
        stale_job_minutes=_as_int("STALE_JOB_MINUTES", 10),
        transcription=transcription,
    )
