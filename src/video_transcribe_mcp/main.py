from __future__ import annotations

import atexit
import logging

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from video_transcribe_mcp.config import Settings, load_settings
from video_transcribe_mcp.db.database import Database
from video_transcribe_mcp.db.jobs import JobsRepository
from video_transcribe_mcp.db.transcripts import TranscriptsRepository
from video_transcribe_mcp.mcp_tools import ToolRegistry
from video_transcribe_mcp.pipeline import TranscriptionOrchestrator
from video_transcribe_mcp.services.ffmpeg import binary_available
from video_transcribe_mcp.services.object_storage import ObjectStorage
from video_transcribe_mcp.services.storage import StorageService
from video_transcribe_mcp.services.transcriber import SpeechTranscriber
from video_transcribe_mcp.services.vision import VisionTranscriber
from video_transcribe_mcp.worker import BackgroundWorker

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
logger = logging.getLogger(__name__)


class AppRuntime:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.database = Database(settings.database_path)
        self.jobs = JobsRepository(self.database)
        self.transcripts = TranscriptsRepository(self.database)
        self.storage = StorageService(settings.data_dir)

        if not settings.storage_base_url:
            logger.warning("STORAGE_BASE_URL is not set; chunked transcription uploads will fail")

        self.orchestrator = TranscriptionOrchestrator(
            speech=SpeechTranscriber(
                api_key=settings.speech_api_key,
                base_url=settings.speech_base_url,
                size_limit_bytes=settings.transcription.speech_size_limit_bytes,
            ),
            vision=VisionTranscriber(
                api_key=settings.vision_api_key,
                base_url=settings.vision_base_url,
                model=settings.vision_model,
            ),
            storage=ObjectStorage(
                base_url=settings.storage_base_url or "http://localhost",
                api_key=settings.storage_api_key,
            ),
            config=settings.transcription,
            work_root=settings.work_dir,
        )

        self.worker = BackgroundWorker(
            jobs=self.jobs,
            transcripts=self.transcripts,
            orchestrator=self.orchestrator,
            storage=self.storage,
            poll_interval_seconds=settings.poll_interval_seconds,
            stale_job_minutes=settings.stale_job_minutes,
        )

    def close(self) -> None:
        self.worker.stop()
        self.database.close()


def create_app(runtime: AppRuntime) -> FastMCP:
    mcp = FastMCP(name="video-transcribe-mcp")

    tools = ToolRegistry(runtime.jobs, runtime.transcripts, runtime.settings.transcription)
    tools.register(mcp)

    @mcp.custom_route(runtime.settings.health_path, methods=["GET"])
    async def health(_: Request) -> JSONResponse:
        config = runtime.settings.transcription
        return JSONResponse(
            {
                "ok": True,
                "worker_running": runtime.worker.is_running,
                "db_path": str(runtime.settings.database_path),
                "mcp_path": runtime.settings.mcp_path,
                "ffmpeg_path": config.ffmpeg_path,
                "ffmpeg_available": binary_available(config.ffmpeg_path),
                "ffprobe_available": binary_available(config.ffprobe_path),
                "speech_size_limit_bytes": config.speech_size_limit_bytes,
                "vision_configured": bool(runtime.settings.vision_api_key),
            }
        )

    return mcp


def cli() -> None:
    settings = load_settings()
    runtime = AppRuntime(settings)
    runtime.worker.start()
    atexit.register(runtime.close)

    app = create_app(runtime)
    logger.info("Starting MCP server on %s:%s%s", settings.host, settings.port, settings.mcp_path)
    app.run(
        transport="http",
        host=settings.host,
        port=settings.port,
        path=settings.mcp_path,
    )


if __name__ == "__main__":
    cli()
