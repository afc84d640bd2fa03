from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from video_transcribe_mcp.config import TranscriptionConfig
from video_transcribe_mcp.db.jobs import JobsRepository
from video_transcribe_mcp.db.transcripts import TranscriptsRepository
from video_transcribe_mcp.services.strategy import get_extraction_timeout, get_transcription_strategy
from video_transcribe_mcp.utils.url import is_remote_url, normalize_url

# Label and rough completion percentage shown for each pipeline phase.
PHASE_DISPLAY: dict[str, tuple[str, int]] = {
    "extracting_audio": ("Extracting audio", 15),
    "uploading_audio": ("Uploading audio", 40),
    "transcribing_primary": ("Transcribing", 60),
    "transcribing_alternate": ("Transcribing with vision model", 60),
    "processing_results": ("Processing", 90),
    "completed": ("Completed", 100),
}
TEXT_FORMATS = {"markdown": "transcript.md", "text": "transcript.txt"}
MAX_POLL_DELAY_SECONDS = 30.0


def poll_delay(poll_count: int) -> float:
    return min(2.0 ** max(poll_count - 1, 0), MAX_POLL_DELAY_SECONDS)


def describe_job(job: dict[str, Any]) -> dict[str, Any]:
    status = str(job.get("status") or "")
    phase = job.get("phase")
    if status == "completed":
        label, percent = PHASE_DISPLAY["completed"]
    elif phase in PHASE_DISPLAY:
        label, percent = PHASE_DISPLAY[phase]
    elif status == "processing":
        label, percent = "Starting", 10
    else:
        label, percent = status.capitalize() or "Unknown", 0

    return {
        "job_id": job["id"],
        "status": status,
        "phase": phase,
        "phase_label": label,
        "percent": percent,
        "progress": job.get("progress"),
        "strategy": job.get("strategy"),
        "strategy_reason": job.get("strategy_reason"),
        "method": job.get("method"),
        "error": job.get("error"),
        "video_url": job.get("video_url"),
        "created_at": job.get("created_at"),
        "completed_at": job.get("completed_at"),
        "transcript_path": job.get("result_path"),
        "poll_count": job.get("poll_count", 0),
    }


def _window(items: list[Any], offset: int, limit: int | None) -> list[Any]:
    offset = max(offset, 0)
    return items[offset:] if limit is None else items[offset:offset + max(limit, 0)]


class ToolRegistry:
    def __init__(
        self,
        jobs: JobsRepository,
        transcripts: TranscriptsRepository,
        config: TranscriptionConfig | None = None,
    ) -> None:
        self.jobs = jobs
        self.transcripts = transcripts
        self.config = config or TranscriptionConfig()

    def register(self, mcp: FastMCP) -> None:
        _ro = ToolAnnotations(readOnlyHint=True)

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True))
        def transcribe_video(video_url: str, file_size_bytes: int | None = None) -> dict[str, Any]:
            """Queue a video for transcription.

            Args:
                video_url: Publicly reachable http(s) URL of the video file
                file_size_bytes: Size of the file if known; picks the transcription strategy

            Returns:
                Job id and status, or the finished transcript when the URL was already transcribed.
            """
            if not is_remote_url(video_url):
                return {"error": "invalid_url", "message": "video_url must be an http(s) URL"}
            if file_size_bytes is not None and file_size_bytes < 0:
                return {"error": "invalid_file_size", "message": "file_size_bytes must not be negative"}

            normalized_url = normalize_url(video_url)

            done = self.transcripts.get_by_normalized_url(normalized_url)
            if done is not None:
                return {
                    "status": "completed",
                    "deduplicated": True,
                    "job_id": done["job_id"],
                    "method": done["method"],
                    "transcript_path": done["path"],
                }

            running = self.jobs.find_active_by_normalized_url(normalized_url)
            if running is not None:
                return {**describe_job(running), "deduplicated": True}

            job = self.jobs.enqueue(video_url, normalized_url, file_size_bytes)
            strategy = get_transcription_strategy(file_size_bytes, self.config)
            return {
                "job_id": job["id"],
                "status": job["status"],
                "deduplicated": False,
                "planned_strategy": strategy.method,
            }

        @mcp.tool(annotations=_ro)
        def preview_strategy(file_size_bytes: int | None = None) -> dict[str, Any]:
            """Show which transcription path a file of this size would take first."""
            strategy = get_transcription_strategy(file_size_bytes, self.config)
            return {
                "method": strategy.method,
                "reason": strategy.reason,
                "extraction_timeout_seconds": get_extraction_timeout(file_size_bytes, self.config),
                "speech_size_limit_bytes": self.config.speech_size_limit_bytes,
            }

        @mcp.tool(annotations=_ro)
        def job_status(job_id: str) -> dict[str, Any]:
            """Get a job's status, current phase and latest progress message.

            While the job is still running this waits before answering, longer
            on each repeated poll, so clients can call it in a tight loop.
            """
            job = self.jobs.get(job_id)
            if job is None:
                return {"error": "job_not_found", "job_id": job_id}

            if job["status"] in ("queued", "processing"):
                time.sleep(poll_delay(self.jobs.increment_poll_count(job_id)))
                job = self.jobs.get(job_id) or job

            return describe_job(job)

        @mcp.tool(annotations=_ro)
        def search_transcripts(query: str, limit: int = 10) -> dict[str, Any]:
            """Full-text search over stored transcripts."""
            hits = self.transcripts.search(query=query, limit=limit)
            return {"query": query, "count": len(hits), "results": hits}

        @mcp.tool(annotations=_ro)
        def list_transcripts(
            method: str | None = None,
            language: str | None = None,
            limit: int = 20,
        ) -> dict[str, Any]:
            items = self.transcripts.list_transcripts(method=method, language=language, limit=limit)
            return {"count": len(items), "items": items}

        @mcp.tool(annotations=_ro)
        def read_transcript(
            job_id: str,
            format: str = "markdown",
            offset: int = 0,
            limit: int | None = None,
        ) -> dict[str, Any]:
            """Read a finished transcript.

            Args:
                job_id: The job that produced the transcript
                format: "markdown", "text", or "json" (default: "markdown")
                offset: Lines (markdown/text) or segments (json) to skip
                limit: Max lines/segments to return. None returns all remaining.
            """
            transcript = self.transcripts.get_by_job_id(job_id)
            if transcript is None:
                return {"error": "transcript_not_found", "job_id": job_id}

            job_dir = Path(str(transcript["path"]))
            if format in TEXT_FORMATS:
                page = self._read_lines(job_dir / TEXT_FORMATS[format], offset, limit)
            elif format == "json":
                page = self._read_segments(job_dir / "transcript.json", offset, limit)
            else:
                return {
                    "error": "unsupported_format",
                    "supported_formats": [*TEXT_FORMATS, "json"],
                }
            return {"job_id": job_id, "format": format, **page, "metadata": transcript}

    @staticmethod
    def _read_lines(path: Path, offset: int, limit: int | None) -> dict[str, Any]:
        lines = path.read_text(encoding="utf-8").splitlines(keepends=True) if path.exists() else []
        page = _window(lines, offset, limit)
        return {
            "content": "".join(page),
            "total_lines": len(lines),
            "offset": offset,
            "lines_returned": len(page),
        }

    @staticmethod
    def _read_segments(path: Path, offset: int, limit: int | None) -> dict[str, Any]:
        payload = json.loads(path.read_text(encoding="utf-8")) if path.exists() else {}
        segments = payload.get("segments", [])
        page = _window(segments, offset, limit)
        return {
            "content": page,
            "language": payload.get("language"),
            "transcription_method": payload.get("method"),
            "total_segments": len(segments),
            "offset": offset,
            "segments_returned": len(page),
        }
