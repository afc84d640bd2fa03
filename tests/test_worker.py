import json
import time
from pathlib import Path

from video_transcribe_mcp.config import TranscriptionConfig
from video_transcribe_mcp.db.database import Database
from video_transcribe_mcp.db.jobs import JobsRepository
from video_transcribe_mcp.db.transcripts import TranscriptsRepository
from video_transcribe_mcp.errors import SpeechBackendError, VisionBackendError
from video_transcribe_mcp.pipeline import TranscriptionOrchestrator
from video_transcribe_mcp.services.storage import StorageService
from video_transcribe_mcp.types import TranscriptResult, TranscriptSegment
from video_transcribe_mcp.worker import BackgroundWorker


class FakeSpeech:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def transcribe(self, audio_url: str, language: str | None = None) -> TranscriptResult:
        if self.fail:
            raise SpeechBackendError("speech backend down")
        return TranscriptResult(
            text="hello world",
            segments=[TranscriptSegment(start=0.0, end=1.0, text="hello world")],
            language="en",
        )


class FailingVision:
    def transcribe(self, video_url: str, mime_type: str = "video/mp4") -> TranscriptResult:
        raise VisionBackendError("vision backend down")


def _worker(tmp_path: Path, speech: FakeSpeech) -> tuple[BackgroundWorker, JobsRepository, TranscriptsRepository]:
    db = Database(tmp_path / "test.sqlite3")
    jobs = JobsRepository(db)
    transcripts = TranscriptsRepository(db)
    orchestrator = TranscriptionOrchestrator(
        speech=speech,  # type: ignore[arg-type]
        vision=FailingVision(),  # type: ignore[arg-type]
        storage=None,  # type: ignore[arg-type]
        config=TranscriptionConfig(),
        work_root=tmp_path / "work",
    )
    worker = BackgroundWorker(
        jobs=jobs,
        transcripts=transcripts,
        orchestrator=orchestrator,
        storage=StorageService(tmp_path / "data"),
        poll_interval_seconds=5,
    )
    return worker, jobs, transcripts


def test_worker_processes_job(tmp_path: Path) -> None:
    worker, jobs, transcripts = _worker(tmp_path, FakeSpeech())

    job = jobs.enqueue("https://cdn.example.com/short.mp4", "https://cdn.example.com/short.mp4", 4 * 1024 * 1024)
    claimed = jobs.claim_next()
    assert claimed is not None

    worker._process_job(
        job_id=str(job["id"]),
        video_url="https://cdn.example.com/short.mp4",
        normalized_url="https://cdn.example.com/short.mp4",
        file_size_bytes=4 * 1024 * 1024,
    )

    status = jobs.get(str(job["id"]))
    assert status is not None
    assert status["status"] == "completed"
    assert status["phase"] == "completed"
    assert status["strategy"] == "direct_speech"
    assert status["method"] == "direct_speech"

    saved = transcripts.get_by_job_id(str(job["id"]))
    assert saved is not None
    assert saved["confidence"] == 95.0
    assert saved["word_count"] == 2
    transcript_dir = Path(str(saved["path"]))
    assert (transcript_dir / "transcript.md").exists()
    payload = json.loads((transcript_dir / "transcript.json").read_text(encoding="utf-8"))
    assert payload["method"] == "direct_speech"
    assert [word["word"] for word in payload["word_timestamps"]] == ["hello", "world"]


def test_worker_loop_marks_job_failed_when_every_path_fails(tmp_path: Path) -> None:
    worker, jobs, transcripts = _worker(tmp_path, FakeSpeech(fail=True))
    job = jobs.enqueue("https://cdn.example.com/short.mp4", "https://cdn.example.com/short.mp4", 1024)
    job_id = str(job["id"])

    worker.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            current = jobs.get(job_id)
            if current is not None and current["status"] == "failed":
                break
            time.sleep(0.05)
    finally:
        worker.stop()

    failed = jobs.get(job_id)
    assert failed is not None
    assert failed["status"] == "failed"
    assert failed["strategy"] == "direct_speech"
    assert "speech backend down" in failed["error"]
    assert "vision backend down" in failed["error"]
    assert transcripts.get_by_job_id(job_id) is None
