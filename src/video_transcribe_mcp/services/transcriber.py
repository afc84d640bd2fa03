from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from video_transcribe_mcp.config import MB
from video_transcribe_mcp.errors import SpeechBackendError
from video_transcribe_mcp.types import TranscriptResult, TranscriptSegment, WordTimestamp

logger = logging.getLogger(__name__)


class SpeechTranscriber:
    """Client for an AssemblyAI-compatible speech API that reads audio from a URL."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.assemblyai.com/v2",
        size_limit_bytes: int = 16 * MB,
        poll_interval_seconds: float = 3.0,
        timeout_seconds: float = 600.0,
        max_wait_seconds: float = 3600.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.size_limit_bytes = size_limit_bytes
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.max_wait_seconds = max_wait_seconds
        self.transport = transport

    def transcribe(self, audio_url: str, language: str | None = None) -> TranscriptResult:
        headers = {"authorization": self.api_key}
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                self._check_size(client, audio_url)
                transcript_id = self._start_transcript(client, headers, audio_url, language)
                payload = self._poll_transcript(client, headers, transcript_id)
        except httpx.HTTPError as exc:
            raise SpeechBackendError(f"Speech backend request failed: {exc}") from exc

        segments = self._extract_segments(payload.get("utterances"))
        words = self._extract_words(payload.get("words"))
        text = str(payload.get("text") or "").strip()
        if not text and segments:
            text = " ".join(segment.text for segment in segments).strip()

        detected = payload.get("language_code") or payload.get("language") or language
        return TranscriptResult(
            text=text,
            segments=segments,
            language=str(detected) if detected else None,
            word_timestamps=words,
        )

    def _check_size(self, client: httpx.Client, audio_url: str) -> None:
        try:
            response = client.head(audio_url, follow_redirects=True)
        except httpx.HTTPError as exc:
            logger.debug("HEAD pre-check failed for %s: %s", audio_url, exc)
            return
        if response.status_code >= 400:
            return

        content_length = response.headers.get("content-length")
        if not content_length or not content_length.isdigit():
            return
        size = int(content_length)
        if size > self.size_limit_bytes:
            raise SpeechBackendError(
                f"Audio is {size / MB:.1f}MB, over the speech backend limit of "
                f"{self.size_limit_bytes / MB:.0f}MB"
            )

    def _start_transcript(
        self,
        client: httpx.Client,
        headers: dict[str, str],
        audio_url: str,
        language: str | None,
    ) -> str:
        transcript_url = f"{self.base_url}/transcript"
        request_payload: dict[str, Any] = {
            "audio_url": audio_url,
            "speaker_labels": True,
            "punctuate": True,
            "format_text": True,
        }
        if language:
            request_payload["language_code"] = language
        else:
            request_payload["language_detection"] = True

        response = client.post(transcript_url, headers=headers, json=request_payload)
        if response.status_code >= 400:
            raise SpeechBackendError(
                f"Speech transcript create failed ({response.status_code}): {response.text[:400]}"
            )

        payload = self._decode(response)
        transcript_id = payload.get("id")
        if not transcript_id:
            raise SpeechBackendError("Speech transcript response missing id")
        return str(transcript_id)

    def _poll_transcript(
        self,
        client: httpx.Client,
        headers: dict[str, str],
        transcript_id: str,
    ) -> dict[str, Any]:
        transcript_url = f"{self.base_url}/transcript/{transcript_id}"
        started = time.monotonic()
        while True:
            response = client.get(transcript_url, headers=headers)
            if response.status_code >= 400:
                raise SpeechBackendError(
                    f"Speech transcript poll failed ({response.status_code}): {response.text[:400]}"
                )

            payload = self._decode(response)
            status =str(payload.get("status") or "").lower()
            if status == "completed":
                return dict(payload)
            if status == "error":
                message = payload.get("error") or "Speech backend reported error status"
                raise SpeechBackendError(str(message))

            if time.monotonic() - started >= self.max_wait_seconds:
                raise SpeechBackendError("Speech transcription polling timed out")

            time.sleep(self.poll_interval_seconds)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise SpeechBackendError(
                f"Speech backend returned a non-JSON response: {response.text[:200]}"
            ) from exc
        if not isinstance(payload, dict):
            raise SpeechBackendError(f"Speech backend returned unexpected JSON: {type(payload).__name__}")
        return payload

    def _extract_segments(self, utterances: object) -> list[TranscriptSegment]:
        if not isinstance(utterances, list):
            return []

        segments: list[TranscriptSegment] = []
        for item in utterances:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip()
            if not text:
                continue
            segments.append(
                TranscriptSegment(
                    start=self._ms_to_seconds(item.get("start")),
                    end=self._ms_to_seconds(item.get("end")),
                    text=text,
                )
            )
        return segments

    def _extract_words(self, words: object) -> list[WordTimestamp]:
        if not isinstance(words, list):
            return []

        result: list[WordTimestamp] = []
        for item in words:
            if not isinstance(item, dict):
                continue
            word = str(item.get("text") or "").strip()
            if not word:
                continue
            result.append(
                WordTimestamp(
                    word=word,
                    start=self._ms_to_seconds(item.get("start")),
                    end=self._ms_to_seconds(item.get("end")),
                )
            )
        return result

    @staticmethod
    def _ms_to_seconds(value: object) -> float:
        try:
            return float(str(value)) / 1000.0 if value is not None else 0.0
        except (TypeError, ValueError):
            return 0.0
