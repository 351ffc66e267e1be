"""Download jobs: request validation, yt-dlp arguments and process wiring."""
from __future__ import annotations

import asyncio
import enum
import logging
import math
import os
import re
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ytui_config import (
    AUDIO_FORMAT,
    CONTAINER_FORMAT,
    COOKIE_BROWSERS,
    OUTPUT_TEMPLATE,
    WATCH_URL,
    archive_path,
    job_output_dir,
)
from ytui_errors import BadRequest, LaunchFailure
from ytui_framing import iter_lines
from ytui_jobs import Aborted, Exited, FailedToStart, Job, JobRegistry
from ytui_launcher import Launcher, ProcessHandle

logger = logging.getLogger(__name__)

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")


def is_valid_video_id(value: Any) -> bool:
    return isinstance(value, str) and bool(VIDEO_ID_RE.match(value))


def watch_url(video_id: str) -> str:
    return WATCH_URL.format(video_id)


class DownloadRequest(BaseModel):
    """Body of ``POST /api/download``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: Optional[str] = None
    ids: List[Any] = Field(default_factory=list)
    quality: Optional[int] = None
    mp3: bool = False
    video_only: bool = Field(False, alias="videoOnly")
    cookies_from_browser: Optional[str] = Field(None, alias="cookiesFromBrowser")

    @field_validator("url", mode="before")
    @classmethod
    def strip_url(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("ids", mode="before")
    @classmethod
    def ids_as_list(cls, value: Any) -> List[Any]:
        return value if isinstance(value, list) else []

    @field_validator("quality", mode="before")
    @classmethod
    def height_cap(cls, value: Any) -> Optional[int]:
        # Anything that is not a positive finite number means "no cap".
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number) or number < 1:
            return None
        return int(math.floor(number))

    @field_validator("mp3", "video_only", mode="before")
    @classmethod
    def truthy(cls, value: Any) -> bool:
        # Checkbox-style values such as "on" or 1 count as true.
        return bool(value)

    @field_validator("cookies_from_browser", mode="before")
    @classmethod
    def cookie_source(cls, value: Any) -> Optional[str]:
        if value is None or value == "" or value is False:
            return None
        return str(value)

    @property
    def video_ids(self) -> List[str]:
        return [item for item in self.ids if is_valid_video_id(item)]

    @property
    def is_bulk(self) -> bool:
        return bool(self.video_ids)

    @property
    def count(self) -> int:
        return len(self.video_ids) if self.is_bulk else 1

    def validate_request(self) -> "DownloadRequest":
        if not self.is_bulk and not self.url:
            raise BadRequest("Missing url")
        if self.cookies_from_browser is not None and self.cookies_from_browser not in COOKIE_BROWSERS:
            raise BadRequest("cookiesFromBrowser must be one of: " + ", ".join(COOKIE_BROWSERS))
        return self


def build_download_args(
    request: DownloadRequest,
    job_dir: Path,
    archive: Path,
    list_file: Optional[Path] = None,
) -> List[str]:
    """Build the yt-dlp argument list for a download job."""
    args: List[str] = [
        "-i",
        "--yes-playlist",
        "--newline",
        "--no-warnings",
        "--download-archive",
        str(archive),
        "-P",
        str(job_dir),
        "-o",
        OUTPUT_TEMPLATE,
    ]

    if request.mp3:
        args.extend(["--extract-audio", "--audio-format", AUDIO_FORMAT])
    else:
        args.extend(["--merge-output-format", CONTAINER_FORMAT])

    height = request.quality
    if request.video_only and not request.mp3:
        selector = f"bestvideo[height<={height}]" if height else "bestvideo"
        args.extend(["-f", selector, "--remux-video", CONTAINER_FORMAT])
    elif height:
        args.extend(["-f", f"bestvideo[height<={height}]+bestaudio/best[height<={height}]"])

    if list_file is not None:
        args.extend(["-a", str(list_file)])
    else:
        args.append(request.url or "")

    if request.cookies_from_browser:
        args[:0] = ["--cookies-from-browser", request.cookies_from_browser]
    return args


def write_list_file(job_id: str, video_ids: List[str]) -> Path:
    """Write canonical watch URLs to a private temp file for ``-a``."""
    handle = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        prefix=f"ytdlp-ui-{job_id}-",
        suffix=".txt",
        delete=False,
    )
    with handle:
        handle.write("".join(watch_url(video_id) + "\n" for video_id in video_ids))
    return Path(handle.name)


def ensure_job_dir(path: Path) -> None:
    """Create the job directory; a failure here surfaces later through yt-dlp's own output."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Could not create job directory %s: %s", path, exc)


class RunState(str, enum.Enum):
    LAUNCHING = "launching"
    RUNNING = "running"
    TERMINAL = "terminal"


class DownloadRun:
    """One yt-dlp process driving one job, from launch to exit."""

    def __init__(
        self,
        registry: JobRegistry,
        launcher: Launcher,
        job: Job,
        args: List[str],
        list_file: Optional[Path] = None,
    ) -> None:
        self.registry = registry
        self.launcher = launcher
        self.job = job
        self.args = args
        self.list_file = list_file
        self.state = RunState.LAUNCHING
        self.task: Optional["asyncio.Task[None]"] = None

    async def launch(self) -> bool:
        """Start the process; on failure the job is finished with ``FailedToStart``."""
        try:
            handle = await self.launcher.launch(self.args, cwd=os.getcwd())
        except Exception as error:
            exc = error if isinstance(error, LaunchFailure) else LaunchFailure(self.launcher.command, error)
            logger.warning("Job %s: failed to start %s: %s", self.job.id, exc.command, exc.describe())
            self.registry.append_line(
                self.job.id,
                f"Failed to start yt-dlp ({exc.command}). Set YTDLP_BIN to the full path to yt-dlp. {exc.describe()}".strip(),
            )
            self._finish(FailedToStart(exc.describe()))
            return False
        self.state = RunState.RUNNING
        self.task = asyncio.ensure_future(self._pump(handle))
        return True

    async def _pump(self, handle: ProcessHandle) -> None:
        readers = [
            asyncio.ensure_future(self._forward(handle.stdout_chunks())),
            asyncio.ensure_future(self._forward(handle.stderr_chunks())),
        ]
        try:
            await asyncio.gather(*readers)
            exit_code = await handle.wait()
        except asyncio.CancelledError:
            await self._stop(handle, readers)
            self._finish(Aborted("cancelled"))
            raise
        except Exception as exc:
            logger.exception("Job %s: yt-dlp process error", self.job.id)
            self.registry.append_line(self.job.id, f"yt-dlp process error: {exc}".strip())
            await self._stop(handle, readers)
            self._finish(Aborted(str(exc)))
            return
        self._finish(Exited(exit_code))

    async def _stop(self, handle: ProcessHandle, readers: List["asyncio.Future[None]"]) -> None:
        """Kill the child and reap it once no reader is left running."""
        try:
            handle.kill()
        except OSError as exc:
            logger.warning("Job %s: could not kill yt-dlp: %s", self.job.id, exc)
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
        try:
            await handle.wait()
        except Exception:
            logger.debug("Job %s: waiting for killed yt-dlp failed", self.job.id, exc_info=True)

    async def _forward(self, chunks) -> None:
        async for line in iter_lines(chunks):
            if line.strip():
                self.registry.append_line(self.job.id, line)

    def abandon(self, outcome) -> None:
        """Finish a run that never reached the launcher."""
        self._finish(outcome)

    def _finish(self, outcome) -> None:
        if self.state is RunState.TERMINAL:
            return
        self.state = RunState.TERMINAL
        self.registry.complete(self.job.id, outcome)
        self._remove_list_file()

    def _remove_list_file(self) -> None:
        path, self.list_file = self.list_file, None
        if path is None:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove list file %s: %s", path, exc)


class DownloadOrchestrator:
    """Creates download jobs and keeps their pump tasks alive until they finish."""

    def __init__(self, registry: JobRegistry, launcher: Launcher, downloads_base: Path) -> None:
        self.registry = registry
        self.launcher = launcher
        self.downloads_base = Path(downloads_base)
        self.runs: Set[DownloadRun] = set()

    async def start(self, request: DownloadRequest) -> DownloadRun:
        request.validate_request()

        job = self.registry.create_job()
        job.output_dir = job_output_dir(self.downloads_base, job.id)
        ensure_job_dir(job.output_dir)

        list_file: Optional[Path] = None
        if request.is_bulk:
            try:
                list_file = write_list_file(job.id, request.video_ids)
            except OSError as exc:
                logger.error("Job %s: could not write video list: %s", job.id, exc)
                run = DownloadRun(self.registry, self.launcher, job, [])
                self.registry.append_line(job.id, f"Could not write the video list file: {exc}")
                run.abandon(FailedToStart(str(exc)))
                return run

        args = build_download_args(
            request,
            job.output_dir,
            archive_path(self.downloads_base),
            list_file=list_file,
        )
        run = DownloadRun(self.registry, self.launcher, job, args, list_file=list_file)
        logger.info("Job %s: starting download of %d item(s) into %s", job.id, request.count, job.output_dir)

        if await run.launch() and run.task is not None:
            self.runs.add(run)
            run.task.add_done_callback(lambda _task: self.runs.discard(run))
        return run

    async def wait_idle(self) -> None:
        """Wait for every running download to finish."""
        tasks = [run.task for run in list(self.runs) if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
