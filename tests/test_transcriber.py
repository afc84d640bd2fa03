import json

import httpx
import pytest

from video_transcribe_mcp.config import MB
from video_transcribe_mcp.errors import SpeechBackendError
from video_transcribe_mcp.services.transcriber import SpeechTranscriber

BASE_URL = "https://speech.example.com/v2"
AUDIO_URL = "https://cdn.example.com/audio.mp3"

COMPLETED = {
    "id": "t1",
    "status": "completed",
    "text": "Hello there. General Kenobi.",
    "language_code": "en",
    "utterances": [
        {"speaker": "A", "start": 0, "end": 1500, "text": "Hello there."},
        {"speaker": "B", "start": 1600, "end": 3200, "text": "General Kenobi."},
    ],
    "words": [
        {"text": "Hello", "start": 0, "end": 600},
        {"text": "there.", "start": 700, "end": 1500},
    ],
}


class SpeechApi:
    def __init__(self, *, content_length: int | None = 1024, statuses: list[dict] | None = None) -> None:
        self.content_length = content_length
        self.statuses = statuses or [{"id": "t1", "status": "processing"}, COMPLETED]
        self.created: list[dict] = []
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            headers = {} if self.content_length is None else {"content-length": str(self.content_length)}
            return httpx.Response(200, headers=headers)
        if request.method == "POST" and request.url.path == "/v2/transcript":
            assert request.headers["authorization"] == "key-123"
            self.created.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "t1", "status": "queued"})
        if request.method == "GET" and request.url.path == "/v2/transcript/t1":
            payload = self.statuses[min(self.polls, len(self.statuses) - 1)]
            self.polls += 1
            return httpx.Response(200, json=payload)
        return httpx.Response(404)


def _transcriber(api: SpeechApi) -> SpeechTranscriber:
    return SpeechTranscriber(
        api_key="key-123",
        base_url=BASE_URL,
        poll_interval_seconds=0,
        transport=httpx.MockTransport(api),
    )


def test_transcribe_polls_until_completed() -> None:
    api = SpeechApi()

    result = _transcriber(api).transcribe(AUDIO_URL)

    assert api.polls == 2
    assert api.created[0]["audio_url"] == AUDIO_URL
    assert api.created[0]["language_detection"] is True
    assert "language_code" not in api.created[0]
    assert result.text == "Hello there. General Kenobi."
    assert result.language == "en"
    assert [(s.start, s.end) for s in result.segments] == [(0.0, 1.5), (1.6, 3.2)]
    assert [w.word for w in result.word_timestamps] == ["Hello", "there."]
    assert result.word_timestamps[1].start == pytest.approx(0.7)


def test_language_hint_is_sent() -> None:
    api = SpeechApi()

    _transcriber(api).transcribe(AUDIO_URL, language="fr")

    assert api.created[0]["language_code"] == "fr"
    assert "language_detection" not in api.created[0]


def test_oversized_audio_is_rejected_before_submit() -> None:
    api = SpeechApi(content_length=17 * MB)

    with pytest.raises(SpeechBackendError, match="over the speech backend limit"):
        _transcriber(api).transcribe(AUDIO_URL)

    assert api.created == []


def test_missing_content_length_does_not_block() -> None:
    api = SpeechApi(content_length=None)

    result = _transcriber(api).transcribe(AUDIO_URL)

    assert result.text


def test_error_status_raises() -> None:
    api = SpeechApi(statuses=[{"id": "t1", "status": "error", "error": "Audio file could not be decoded"}])

    with pytest.raises(SpeechBackendError, match="could not be decoded"):
        _transcriber(api).transcribe(AUDIO_URL)


def test_create_failure_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(401, text="Unauthorized")

    transcriber = SpeechTranscriber(api_key="bad", base_url=BASE_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(SpeechBackendError, match="401"):
        transcriber.transcribe(AUDIO_URL)


def test_network_error_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return httpx.Response(200)
        raise httpx.ConnectError("connection refused", request=request)

    transcriber = SpeechTranscriber(api_key="k", base_url=BASE_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(SpeechBackendError, match="request failed"):
        transcriber.transcribe(AUDIO_URL)


@pytest.mark.parametrize(
    "create_response, poll_payload",
    [
        (httpx.Response(200, text="<html>bad gateway</html>"), None),
        (httpx.Response(200, json={"id": "t1", "status": "queued"}), ["not", "an", "object"]),
    ],
)
def test_malformed_backend_replies_raise_backend_error(create_response: httpx.Response, poll_payload: object) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return httpx.Response(200)
        if request.method == "POST":
            return create_response
        return httpx.Response(200, json=poll_payload)

    transcriber = SpeechTranscriber(
        api_key="k",
        base_url=BASE_URL,
        poll_interval_seconds=0,
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(SpeechBackendError, match="Speech backend returned"):
        transcriber.transcribe(AUDIO_URL)
