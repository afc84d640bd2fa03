from __future__ import annotations

import logging
import re
import shutil
import subprocess

logger = logging.getLogger(__name__)

_TIMESTAMP_RE = r"(\d+):(\d+):(\d+(?:\.\d+)?)"
DURATION_RE = re.compile(rf"Duration:\s*{_TIMESTAMP_RE}")
TIME_RE = re.compile(rf"time=\s*{_TIMESTAMP_RE}")


def resolve_binary(name: str, override: str | None = None) -> str:
    """Pick the ffmpeg/ffprobe executable: explicit override, then PATH, then the bare name."""
    if override:
        return override
    found = shutil.which(name)
    if found:
        logger.info("Using system %s binary: %s", name, found)
        return found
    logger.warning("No %s binary found on PATH, falling back to bare '%s'", name, name)
    return name


def hms_to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_duration(line: str) -> float | None:
    match = DURATION_RE.search(line)
    if match is None:
        return None
    return hms_to_seconds(*match.groups())


def parse_position(line: str) -> float | None:
    match = TIME_RE.search(line)
    if match is None:
        return None
    return hms_to_seconds(*match.groups())


def probe_duration(path: str, *, ffprobe_path: str = "ffprobe", timeout: float = 30.0) -> float:
    """Return a media file's duration in seconds, or 0.0 when ffprobe can't tell."""
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        path,
    ]
    try:
        completed = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("ffprobe failed for %s: %s", path, exc)
        return 0.0

    try:
        return float(completed.stdout.strip())
    except ValueError:
        return 0.0


def binary_available(path: str) -> bool:
    return shutil.which(path) is not None
