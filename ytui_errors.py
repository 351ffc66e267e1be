"""Error types shared by the job subsystem and the HTTP layer."""
from __future__ import annotations

from typing import Optional


class YtdlpUiError(Exception):
    """Base class for errors raised by ytdlp-ui."""


class BadRequest(YtdlpUiError):
    """Malformed or missing input; rendered as HTTP 400."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownJob(BadRequest):
    def __init__(self, job_id: str) -> None:
        super().__init__("Unknown jobId")
        self.job_id = job_id


class LaunchFailure(YtdlpUiError):
    """The external tool could not be started at all."""

    def __init__(self, command: str, cause: Optional[BaseException] = None) -> None:
        self.command = command
        self.cause = cause
        super().__init__(self.describe())

    def describe(self) -> str:
        if self.cause is None:
            return f"cannot start {self.command}"
        return str(self.cause) or type(self.cause).__name__


class RuntimeFailure(YtdlpUiError):
    """The external tool started but exited non-zero."""

    def __init__(self, exit_code: int, output: str = "") -> None:
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"yt-dlp failed (exit {exit_code}). {output.strip()}".strip())
