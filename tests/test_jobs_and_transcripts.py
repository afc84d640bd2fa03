from pathlib import Path

from video_transcribe_mcp.db.database import Database
from video_transcribe_mcp.db.jobs import JobsRepository
from video_transcribe_mcp.db.transcripts import TranscriptsRepository


def _upsert(repo: TranscriptsRepository, job_id: str, normalized_url: str, text: str, **overrides: object) -> None:
    fields: dict[str, object] = {
        "job_id": job_id,
        "normalized_url": normalized_url,
        "video_url": normalized_url,
        "path": f"/tmp/transcripts/{job_id}",
        "transcript_text": text,
        "language": "en",
        "method": "direct_speech",
        "chunk_count": None,
        "confidence": 95.0,
        "word_count": len(text.split()),
        "segment_count": 1,
    }
    fields.update(overrides)
    repo.upsert(**fields)  # type: ignore[arg-type]


def test_job_lifecycle(tmp_path: Path) -> None:
    db = Database(tmp_path / "test.sqlite3")
    jobs = JobsRepository(db)

    created = jobs.enqueue("https://example.com/v/1.mp4", "https://example.com/v/1.mp4", 50 * 1024 * 1024)
    assert created["status"] == "queued"
    assert created["file_size_bytes"] == 50 * 1024 * 1024
    assert created["phase"] is None

    claimed = jobs.claim_next()
    assert claimed is not None
    assert claimed["status"] == "processing"
    assert jobs.claim_next() is None

    job_id = str(claimed["id"])
    jobs.set_strategy(job_id, "vision_first", "File is 50.0MB (>16MB)")
    jobs.set_phase(job_id, "extracting_audio")
    jobs.set_progress(job_id, "Extracting audio... 42%")
    running = jobs.get(job_id)
    assert running is not None
    assert running["strategy"] == "vision_first"
    assert running["phase"] == "extracting_audio"
    assert running["progress"] == "Extracting audio... 42%"

    jobs.mark_completed(job_id, "chunked", "/tmp/transcripts/1")
    completed = jobs.get(job_id)
    assert completed is not None
    assert completed["status"] == "completed"
    assert completed["phase"] == "completed"
    assert completed["method"] == "chunked"
    assert completed["strategy"] == "vision_first"


def test_active_job_lookup_and_failure(tmp_path: Path) -> None:
    db = Database(tmp_path / "test.sqlite3")
    jobs = JobsRepository(db)

    job = jobs.enqueue("https://example.com/a.mp4", "https://example.com/a.mp4")
    active = jobs.find_active_by_normalized_url("https://example.com/a.mp4")
    assert active is not None
    assert active["id"] == job["id"]

    jobs.mark_failed(str(job["id"]), "All transcription paths failed")
    assert jobs.find_active_by_normalized_url("https://example.com/a.mp4") is None
    failed = jobs.get(str(job["id"]))
    assert failed is not None
    assert failed["status"] == "failed"
    assert failed["error"] == "All transcription paths failed"


def test_requeue_stale_processing_jobs(tmp_path: Path) -> None:
    db = Database(tmp_path / "test.sqlite3")
    jobs = JobsRepository(db)

    stale = jobs.enqueue("https://example.com/stale.mp4", "https://example.com/stale.mp4")
    jobs.claim_next()
    fresh = jobs.enqueue("https://example.com/fresh.mp4", "https://example.com/fresh.mp4")
    jobs.claim_next()
    db.conn.execute(
        "UPDATE jobs SET updated_at = datetime('now', '-30 minutes') WHERE id = ?",
        (stale["id"],),
    )
    db.conn.commit()

    assert jobs.requeue_stale(10) == 1

    requeued = jobs.get(str(stale["id"]))
    assert requeued is not None
    assert requeued["status"] == "queued"
    assert requeued["phase"] is None
    still_running = jobs.get(str(fresh["id"]))
    assert still_running is not None
    assert still_running["status"] == "processing"


def test_transcripts_search(tmp_path: Path) -> None:
    db = Database(tmp_path / "test.sqlite3")
    repo = TranscriptsRepository(db)

    _upsert(repo, "job-1", "https://example.com/1.mp4", "hello this is a transcription test")
    _upsert(repo, "job-2", "https://example.com/2.mp4", "something else entirely")

    results = repo.search("transcription", limit=5)
    assert len(results) == 1
    assert results[0]["job_id"] == "job-1"
    assert "[transcription]" in results[0]["snippet"]


def test_transcripts_replace_same_url_and_filter(tmp_path: Path) -> None:
    db = Database(tmp_path / "test.sqlite3")
    repo = TranscriptsRepository(db)

    _upsert(repo, "job-1", "https://example.com/1.mp4", "first attempt words")
    _upsert(
        repo,
        "job-2",
        "https://example.com/1.mp4",
        "second attempt words",
        method="chunked",
        chunk_count=3,
        language="de",
    )
    _upsert(repo, "job-3", "https://example.com/3.mp4", "another video")

    assert repo.get_by_job_id("job-1") is None
    latest = repo.get_by_normalized_url("https://example.com/1.mp4")
    assert latest is not None
    assert latest["job_id"] == "job-2"
    assert latest["chunk_count"] == 3
    assert repo.search("first") == []

    chunked = repo.list_transcripts(method="chunked")
    assert [item["job_id"] for item in chunked] == ["job-2"]
    english = repo.list_transcripts(language="en")
    assert [item["job_id"] for item in english] == ["job-3"]
