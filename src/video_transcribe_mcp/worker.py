from __future__ import annotations

import logging
from threading import Event, Thread

from video_transcribe_mcp.db.jobs import JobsRepository
from video_transcribe_mcp.db.transcripts import TranscriptsRepository
from video_transcribe_mcp.pipeline import TranscriptionOrchestrator
from video_transcribe_mcp.services.storage import StorageService

logger = logging.getLogger(__name__)


class BackgroundWorker:
    def __init__(
        self,
        *,
        jobs: JobsRepository,
        transcripts: TranscriptsRepository,
        orchestrator: TranscriptionOrchestrator,
        storage: StorageService,
        poll_interval_seconds: int,
        stale_job_minutes: int = 10,
    ) -> None:
        self.jobs = jobs
        self.transcripts = transcripts
        self.orchestrator = orchestrator
        self.storage = storage
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_job_minutes = stale_job_minutes
        self._stop_event = Event()
        self._thread = Thread(target=self._run_loop, name="video-transcribe-worker", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            requeued = self.jobs.requeue_stale(self.stale_job_minutes)
            if requeued:
                logger.warning("Re-queued %d stale processing job(s)", requeued)
            self._thread.start()

    def stop(self, timeout_seconds: float = 10.0) -> None:
        self._stop_event.set()
        self._thread.join(timeout=timeout_seconds)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            job = self.jobs.claim_next()
            if job is None:
                self._stop_event.wait(self.poll_interval_seconds)
                continue

            job_id = str(job["id"])
            try:
                logger.info("Processing job %s", job_id)
                self._process_job(
                    job_id=job_id,
                    video_url=str(job["video_url"]),
                    normalized_url=str(job["normalized_url"]),
                    file_size_bytes=job.get("file_size_bytes"),
                )
                logger.info("Completed job %s", job_id)
            except Exception as exc:  # pylint: disable=broad-except
                message = str(exc).strip() or "Unknown worker error"
                logger.exception("Job %s failed: %s", job_id, message)
                self.jobs.mark_failed(job_id, message[:2000])

    def _process_job(
        self,
        *,
        job_id: str,
        video_url: str,
        normalized_url: str,
        file_size_bytes: int | None,
    ) -> None:
        strategy = self.orchestrator.select_strategy(file_size_bytes)
        self.jobs.set_strategy(job_id, strategy.method, strategy.reason)

        result = self.orchestrator.run(
            video_url,
            file_size_bytes,
            strategy=strategy,
            on_phase=lambda phase: self.jobs.set_phase(job_id, phase),
            on_progress=lambda message: self.jobs.set_progress(job_id, message),
        )

        persisted = self.storage.persist(
            job_id=job_id,
            video_url=video_url,
            normalized_url=normalized_url,
            transcript=result,
        )

        self.transcripts.upsert(
            job_id=job_id,
            normalized_url=normalized_url,
            video_url=video_url,
            path=str(persisted["path"]),
            transcript_text=result.text,
            language=result.language,
            method=result.method,
            chunk_count=result.chunk_count,
            confidence=result.confidence,
            word_count=len(result.text.split()),
            segment_count=len(result.segments),
        )
        self.jobs.mark_completed(job_id, str(result.method), str(persisted["path"]))
