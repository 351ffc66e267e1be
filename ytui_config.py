from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional

BASE_DIR = Path(__file__).resolve().parent

HOST = (os.getenv("YTDLP_UI_HOST") or os.getenv("HOST") or "127.0.0.1").strip()
PORT = int((os.getenv("YTDLP_UI_PORT") or os.getenv("PORT") or "8787").strip() or "8787")
PORT_ATTEMPTS = 15
LOG_LEVEL = (os.getenv("YTDLP_UI_LOG_LEVEL") or "INFO").strip().upper()

DOWNLOADS_DIR_OVERRIDE = (os.getenv("YTDLP_UI_DOWNLOADS_DIR") or "").strip() or None
INDEX_HTML_PATH = (os.getenv("YTDLP_UI_INDEX_HTML") or "").strip() or None

# Job log window and reconnect replay size.
LOG_CAP = 2000
REPLAY_LINES = 250

# yt-dlp reports "could not start" and "aborted" runs with this exit code on the wire.
SENTINEL_EXIT_CODE = -1

NAMESPACE = "ytdlp-ui"
ARCHIVE_NAME = ".ytdlp-archive.txt"
OUTPUT_TEMPLATE = "%(upload_date)s - %(title)s [%(id)s].%(ext)s"
AUDIO_FORMAT = "mp3"
CONTAINER_FORMAT = "mp4"
COOKIE_BROWSERS = ("chrome", "edge", "firefox")
WATCH_URL = "https://www.youtube.com/watch?v={}"


def resolve_ytdlp_command(requested: str = "yt-dlp") -> List[str]:
    """Return the argv prefix used to run yt-dlp.

    ``YTDLP_BIN`` wins; then a ``yt-dlp`` executable on PATH; finally the
    installed ``yt_dlp`` package run through the current interpreter.
    """
    override = (os.getenv("YTDLP_BIN") or "").strip()
    if override:
        return [override]
    if os.sep in requested or "/" in requested or "\\" in requested:
        return [requested]
    found = shutil.which(requested)
    if found:
        return [found]
    return [sys.executable, "-m", "yt_dlp"]


def default_downloads_dir() -> Path:
    """Pick the base downloads location: override, the user's Downloads, else cwd."""
    if DOWNLOADS_DIR_OVERRIDE:
        return Path(DOWNLOADS_DIR_OVERRIDE).expanduser()
    candidates: List[Optional[Path]] = [
        Path(os.environ["USERPROFILE"]) / "Downloads" if os.getenv("USERPROFILE") else None,
        Path.home() / "Downloads",
    ]
    for candidate in candidates:
        if candidate is not None and candidate.is_dir():
            return candidate
    return Path.cwd()


def namespace_dir(base: Path) -> Path:
    return Path(base) / NAMESPACE


def archive_path(base: Path) -> Path:
    return namespace_dir(base) / ARCHIVE_NAME


def job_output_dir(base: Path, job_id: str) -> Path:
    return namespace_dir(base) / job_id
