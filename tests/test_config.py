from pathlib import Path

import pytest

from video_transcribe_mcp.config import MB, load_settings
from video_transcribe_mcp.services.ffmpeg import binary_available, resolve_binary


def test_load_settings_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SPEECH_API_KEY", "key-123")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
    monkeypatch.setenv("FFPROBE_PATH", "/opt/ffmpeg/bin/ffprobe")
    monkeypatch.setenv("SPEECH_SIZE_LIMIT_MB", "25")
    monkeypatch.setenv("MCP_PATH", "mcp")
    monkeypatch.setenv("STORAGE_BASE_URL", "https://storage.example.com/")
    for name in ("VISION_API_KEY", "DATABASE_PATH", "WORK_DIR"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.speech_api_key == "key-123"
    assert settings.database_path == tmp_path.resolve() / "video_transcribe.sqlite3"
    assert settings.work_dir == tmp_path.resolve() / "_work"
    assert settings.mcp_path == "/mcp"
    assert settings.storage_base_url == "https://storage.example.com"
    assert settings.vision_api_key is None
    assert settings.transcription.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
    assert settings.transcription.ffprobe_path == "/opt/ffmpeg/bin/ffprobe"
    assert settings.transcription.speech_size_limit_bytes == 25 * MB


def test_load_settings_requires_speech_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SPEECH_API_KEY", "  ")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))

    with pytest.raises(RuntimeError, match="SPEECH_API_KEY"):
        load_settings()


def test_resolve_binary_prefers_override(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_binary("ffmpeg", "/custom/ffmpeg") == "/custom/ffmpeg"
    monkeypatch.setattr("shutil.which", lambda _: None)
    assert resolve_binary("ffprobe") == "ffprobe"
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
    assert resolve_binary("ffprobe") == "/usr/bin/ffprobe"
    assert binary_available("ffprobe")
    monkeypatch.setattr("shutil.which", lambda _: None)
    assert not binary_available("ffprobe")
