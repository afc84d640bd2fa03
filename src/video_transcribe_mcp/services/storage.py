from __future__ import annotations

import json
from pathlib import Path

from video_transcribe_mcp.types import TranscriptResult

METHOD_LABELS = {
    "direct_speech": "Speech backend (single pass)",
    "vision": "Vision backend",
    "chunked": "Speech backend (chunked audio)",
}


def _format_timestamp(seconds: float) -> str:
    whole = int(max(seconds, 0))
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def to_markdown(result: TranscriptResult, video_url: str | None = None) -> str:
    lines: list[str] = ["# Transcript", ""]

    meta_lines: list[str] = []
    if video_url:
        meta_lines.append(f"**Source**: {video_url}")
    if result.language:
        meta_lines.append(f"**Language**: {result.language}")
    if result.method:
        label = METHOD_LABELS.get(result.method, result.method)
        if result.chunk_count:
            label = f"{label}, {result.chunk_count} chunks"
        meta_lines.append(f"**Method**: {label}")
    if result.confidence is not None:
        meta_lines.append(f"**Confidence**: {result.confidence:g}")

    if meta_lines:
        lines.extend(meta_lines)
        lines.append("")
        lines.append("---")
        lines.append("")

    if not result.segments:
        lines.append(result.text or "")
        return "\n".join(lines).strip() + "\n"

    for segment in result.segments:
        lines.append(f"- [{_format_timestamp(segment.start)}] {segment.text}")

    return "\n".join(lines).strip() + "\n"


def to_payload(result: TranscriptResult) -> dict[str, object]:
    return {
        "text": result.text,
        "language": result.language,
        "method": result.method,
        "confidence": result.confidence,
        "chunk_count": result.chunk_count,
        "segments": [
            {"start": segment.start, "end": segment.end, "text": segment.text}
            for segment in result.segments
        ],
        "word_timestamps": [
            {"word": word.word, "start": word.start, "end": word.end}
            for word in result.word_timestamps
        ],
    }


class StorageService:
    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.transcripts_root = data_dir / "transcripts"
        self.transcripts_root.mkdir(parents=True, exist_ok=True)

    def persist(
        self,
        *,
        job_id: str,
        video_url: str,
        normalized_url: str,
        transcript: TranscriptResult,
    ) -> dict[str, object]:
        job_dir = self.transcripts_root / job_id
        job_dir.mkdir(parents=True, exist_ok=True)

        transcript_json_path = job_dir / "transcript.json"
        transcript_md_path = job_dir / "transcript.md"
        transcript_txt_path = job_dir / "transcript.txt"

        payload = to_payload(transcript)
        payload["video_url"] = video_url
        payload["normalized_url"] = normalized_url
        transcript_json_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        transcript_md_path.write_text(to_markdown(transcript, video_url=video_url), encoding="utf-8")
        transcript_txt_path.write_text((transcript.text or "").strip() + "\n", encoding="utf-8")

        return {
            "job_id": job_id,
            "path": str(job_dir),
            "transcript_md_path": str(transcript_md_path),
            "transcript_json_path": str(transcript_json_path),
            "transcript_txt_path": str(transcript_txt_path),
        }
