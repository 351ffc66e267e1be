"""FastAPI backend for ytdlp-ui, a local front-end for the yt-dlp CLI.

Endpoints:
- GET  /api/doctor            : checks that yt-dlp can be run
- GET  /api/info              : title, id and available heights for one URL
- GET  /api/list, /api/playlist : flat playlist/channel entries
- POST /api/download          : starts a download job
- GET  /api/events/{jobId}    : live job log as server-sent events
- GET  /api/files/{jobId}     : files produced by a job
- GET  /api/file/{jobId}/{name} : one produced file as an attachment

Run with:
    uvicorn server:app --host 127.0.0.1 --port 8787
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from yt_dlp.version import __version__ as YTDLP_PACKAGE_VERSION

from ytui_config import default_downloads_dir, resolve_ytdlp_command
from ytui_download import DownloadOrchestrator, DownloadRequest, is_valid_video_id, watch_url
from ytui_errors import BadRequest, LaunchFailure, RuntimeFailure
from ytui_files import file_download_url, list_job_files, resolve_job_file
from ytui_framing import LineFramer
from ytui_jobs import JobRegistry, QueueListener, format_sse
from ytui_launcher import Launcher, SubprocessLauncher, run_to_completion
from ytui_page import load_index_html

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

NOT_ALLOWED_MESSAGE = "Not allowed to download this video by the creator"
NO_STORE = {"Cache-Control": "no-store"}


def classify_info_failure(output: str) -> str:
    """Collapse any metadata failure into one user-facing message.

    Copyright blocks, private videos and network errors all read the same to
    the UI; the raw yt-dlp text is only logged.
    """
    if output.strip():
        logger.info("yt-dlp info failure: %s", output.strip().splitlines()[-1])
    return NOT_ALLOWED_MESSAGE


def extract_qualities(info: Any) -> List[int]:
    """Distinct positive format heights, highest first."""
    formats = info.get("formats") if isinstance(info, dict) else None
    heights = set()
    for fmt in formats if isinstance(formats, list) else []:
        height = fmt.get("height") if isinstance(fmt, dict) else None
        if isinstance(height, (int, float)) and not isinstance(height, bool) and height > 0 and height != float("inf"):
            heights.add(int(height))
    return sorted(heights, reverse=True)


def parse_flat_entries(stdout: str) -> List[Dict[str, str]]:
    """Turn ``--flat-playlist --dump-json`` output into video entries, skipping bad lines."""
    framer = LineFramer()
    videos: List[Dict[str, str]] = []
    for line in framer.feed(stdout) + framer.flush():
        text = line.strip()
        if not text:
            continue
        try:
            entry = json.loads(text)
        except ValueError:
            continue
        if not isinstance(entry, dict) or not is_valid_video_id(entry.get("id")):
            continue
        video_id = entry["id"]
        videos.append({"id": video_id, "title": str(entry.get("title") or ""), "url": watch_url(video_id)})
    return videos


def _require_url(url: Optional[str]) -> str:
    value = (url or "").strip()
    if not value:
        raise BadRequest("Missing url")
    return value


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=NO_STORE)


def install_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": message}``."""

    @app.exception_handler(BadRequest)
    async def _bad_request(_request: Request, exc: BadRequest) -> JSONResponse:
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if any(err.get("type") == "json_invalid" for err in errors):
            return _error_response(400, "Invalid JSON body")
        first = errors[0] if errors else {}
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        return _error_response(400, f"Invalid request: {where} {first.get('msg', '')}".strip())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unexpected(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while serving request")
        return _error_response(500, str(exc) or "Unexpected error")


def create_app(
    launcher: Optional[Launcher] = None,
    downloads_base_dir: Optional[Path] = None,
    index_html: Optional[str] = None,
) -> FastAPI:
    """Build the application with its own job registry and launcher."""
    launcher = launcher or SubprocessLauncher(resolve_ytdlp_command())
    downloads_base = Path(downloads_base_dir) if downloads_base_dir else default_downloads_dir()
    registry = JobRegistry()
    orchestrator = DownloadOrchestrator(registry, launcher, downloads_base)
    page = index_html if index_html is not None else load_index_html()

    app = FastAPI(title="ytdlp-ui", version=__version__)

    # The UI is usually served from this app, but allow a separately hosted page too.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.state.launcher = launcher
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.downloads_base = downloads_base

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(page, headers=NO_STORE)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True, "ytDlpPackage": YTDLP_PACKAGE_VERSION}

    @app.get("/api/doctor")
    async def doctor() -> Dict[str, Any]:
        """Report whether yt-dlp is runnable; failure is a normal 200 answer."""
        try:
            run = await run_to_completion(launcher, ["--version"])
        except LaunchFailure as exc:
            return {"ok": False, "ytDlpCommand": launcher.command, "message": f"Cannot spawn yt-dlp: {exc.describe()}"}
        if run.exit_code != 0:
            return {
                "ok": False,
                "ytDlpCommand": launcher.command,
                "message": f"yt-dlp exited {run.exit_code}. {run.output.strip()}".strip(),
            }
        return {"ok": True, "ytDlpCommand": launcher.command, "message": f"yt-dlp {run.stdout.strip()}".strip()}

    @app.get("/api/info")
    async def fetch_info(url: Optional[str] = Query(None, description="Video URL")) -> Dict[str, Any]:
        target = _require_url(url)
        try:
            run = await run_to_completion(launcher, ["-J", "--no-warnings", "--yes-playlist", target])
        except LaunchFailure as exc:
            return {"ok": False, "message": classify_info_failure(exc.describe())}
        if run.exit_code != 0:
            return {"ok": False, "message": classify_info_failure(run.output)}
        try:
            info = json.loads(run.stdout.strip())
        except ValueError:
            return {"ok": False, "message": "Could not read video info"}
        if not isinstance(info, dict):
            return {"ok": False, "message": "Could not read video info"}
        return {
            "ok": True,
            "title": str(info.get("title") or ""),
            "id": str(info.get("id") or ""),
            "qualities": extract_qualities(info),
            "mp3": True,
        }

    async def list_entries(url: Optional[str]) -> Dict[str, Any]:
        target = _require_url(url)
        try:
            run = await run_to_completion(
                launcher,
                ["--flat-playlist", "--dump-json", "--yes-playlist", target],
                check=True,
            )
        except LaunchFailure as exc:
            raise HTTPException(
                status_code=500,
                detail=f"Failed to run yt-dlp ({launcher.command}): {exc.describe()}. Set YTDLP_BIN to the full path to yt-dlp.",
            ) from exc
        except RuntimeFailure as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"videos": parse_flat_entries(run.stdout)}

    @app.get("/api/list")
    async def list_videos(url: Optional[str] = Query(None, description="Playlist or channel URL")) -> Dict[str, Any]:
        return await list_entries(url)

    @app.get("/api/playlist")
    async def playlist_videos(url: Optional[str] = Query(None, description="Playlist URL")) -> Dict[str, Any]:
        return await list_entries(url)

    @app.post("/api/download")
    async def download(body: Optional[DownloadRequest] = None) -> Dict[str, Any]:
        """Start a download job; launch failures show up in the job log, not here."""
        # A JSON null body is treated like an empty object.
        body = body if body is not None else DownloadRequest()
        run = await orchestrator.start(body)
        return {
            "jobId": run.job.id,
            "count": body.count,
            "downloadsDir": str(run.job.output_dir),
        }

    @app.get("/api/files/{job_id}")
    async def job_files(job_id: str) -> Dict[str, List[str]]:
        job = registry.get(job_id)
        files = list_job_files(job.output_dir) if job is not None else []
        return {"files": files, "downloadUrls": [file_download_url(job_id, name) for name in files]}

    @app.get("/api/file/{job_id}/{name:path}")
    async def job_file(job_id: str, name: str) -> FileResponse:
        job = registry.require(job_id)
        path = resolve_job_file(job.output_dir, name)
        if path is None:
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(
            path=path,
            media_type="application/octet-stream",
            filename=path.name,
            headers=NO_STORE,
        )

    @app.get("/api/events/{job_id}")
    async def job_events(job_id: str) -> StreamingResponse:
        """Replay the recent log, then stream new lines until the job is done."""
        registry.require(job_id)

        async def stream():
            listener = QueueListener()
            try:
                registry.attach_listener(job_id, listener)
                async for event in listener.events():
                    yield format_sse(event)
            finally:
                registry.detach_listener(job_id, listener)

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={**NO_STORE, "X-Accel-Buffering": "no"},
        )

    return app


app = create_app()


if __name__ == "__main__":
    from ytui_cli import main

    main()
