from __future__ import annotations

import json
from typing import Any

import httpx

from video_transcribe_mcp.errors import VisionBackendError
from video_transcribe_mcp.types import TranscriptResult, TranscriptSegment

SYSTEM_PROMPT = (
    "You are a professional transcriber. Transcribe all speech in the provided video verbatim. "
    "Return timestamped segments in seconds from the start of the video, in chronological order."
)

TRANSCRIPT_SCHEMA: dict[str, Any] = {
    "name": "video_transcript",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "full_text": {"type": "string"},
            "language": {"type": "string"},
            "segments": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "text": {"type": "string"},
                        "start": {"type": "number"},
                        "end": {"type": "number"},
                    },
                    "required": ["text", "start", "end"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["full_text", "language", "segments"],
        "additionalProperties": False,
    },
}


class VisionTranscriber:
    """Transcribes a whole video through a multimodal chat-completions model.

    No size ceiling applies, but calls are slow and expensive, so this is a
    fallback or the first choice only for videos the speech API can't take.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com",
        model: str = "gpt-4o",
        timeout_seconds: float = 900.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def transcribe(self, video_url: str, mime_type: str = "video/mp4") -> TranscriptResult:
        if not self.api_key:
            raise VisionBackendError("Vision backend is not configured (VISION_API_KEY missing)")

        request_payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Transcribe the speech in this video."},
                        {"type": "file_url", "file_url": {"url": video_url, "mime_type": mime_type}},
                    ],
                },
            ],
            "response_format": {"type": "json_schema", "json_schema": TRANSCRIPT_SCHEMA},
        }
        headers = {"authorization": f"Bearer {self.api_key}"}

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(
                    f"{self.base_url}/v1/chat/completions",
                    headers=headers,
                    json=request_payload,
                )
        except httpx.HTTPError as exc:
            raise VisionBackendError(f"Vision backend request failed: {exc}") from exc

        if response.status_code >= 400:
            raise VisionBackendError(f"Vision backend failed ({response.status_code}): {response.text[:400]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise VisionBackendError(f"Vision backend returned a non-JSON response: {response.text[:200]}") from exc
        return self._parse_response(payload)

    def _parse_response(self, payload: Any) -> TranscriptResult:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise VisionBackendError("Vision backend response has no message content") from exc

        if isinstance(content, str):
            try:
                data = json.loads(content)
            except json.JSONDecodeError as exc:
                raise VisionBackendError(f"Vision backend returned invalid JSON: {content[:200]}") from exc
        elif isinstance(content, dict):
            data = content
        else:
            raise VisionBackendError("Vision backend returned unexpected content type")
        if not isinstance(data, dict):
            raise VisionBackendError(f"Vision backend returned unexpected JSON: {type(data).__name__}")

        raw_segments = data.get("segments")
        segments: list[TranscriptSegment] = []
        for item in raw_segments if isinstance(raw_segments, list) else []:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip()
            if not text:
                continue
            segments.append(
                TranscriptSegment(
                    start=self._as_seconds(item.get("start")),
                    end=self._as_seconds(item.get("end")),
                    text=text,
                )
            )

        text = str(data.get("full_text") or "").strip()
        if not text and segments:
            text = " ".join(segment.text for segment in segments)
        if not text:
            raise VisionBackendError("Vision backend returned an empty transcript")

        language = data.get("language")
        return TranscriptResult(text=text, segments=segments, language=str(language) if language else None)

    @staticmethod
    def _as_seconds(value: object) -> float:
        try:
            return max(0.0, float(str(value))) if value is not None else 0.0
        except (TypeError, ValueError):
            return 0.0
