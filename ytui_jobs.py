"""In-memory job registry with bounded logs and live listener fan-out.

All mutation is expected to happen on the event loop thread; nothing here
takes a lock.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Deque, Dict, List, Optional, Set, Union

from ytui_config import LOG_CAP, REPLAY_LINES, SENTINEL_EXIT_CODE
from ytui_errors import UnknownJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Exited:
    """The process ran and exited on its own."""

    exit_code: int


@dataclass(frozen=True)
class FailedToStart:
    error: str

    @property
    def exit_code(self) -> int:
        return SENTINEL_EXIT_CODE


@dataclass(frozen=True)
class Aborted:
    """The process launched, but reading it or waiting on it failed."""

    error: str

    @property
    def exit_code(self) -> int:
        return SENTINEL_EXIT_CODE


Outcome = Union[Exited, FailedToStart, Aborted]


@dataclass(frozen=True)
class LogEvent:
    line: str

    name = "log"

    def payload(self) -> Dict[str, object]:
        return {"line": self.line}


@dataclass(frozen=True)
class DoneEvent:
    exit_code: int

    name = "done"

    def payload(self) -> Dict[str, object]:
        return {"exitCode": self.exit_code}


Event = Union[LogEvent, DoneEvent]


def format_sse(event: Event) -> str:
    return f"event: {event.name}\ndata: {json.dumps(event.payload())}\n\n"


class Listener:
    """A live subscriber to one job's events."""

    def send(self, event: Event) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Called once the listener will receive nothing more."""


class QueueListener(Listener):
    """Listener backed by an ``asyncio.Queue``, one per network connection."""

    def __init__(self) -> None:
        self.queue: "asyncio.Queue[Optional[Event]]" = asyncio.Queue()
        self.closed = False

    def send(self, event: Event) -> None:
        if not self.closed:
            self.queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)

    async def events(self) -> AsyncIterator[Event]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


@dataclass(eq=False)
class Job:
    id: str
    output_dir: Optional[Path] = None
    created_at: float = field(default_factory=time.time)
    lines: Deque[str] = field(default_factory=lambda: deque(maxlen=LOG_CAP))
    listeners: Set[Listener] = field(default_factory=set)
    terminal: Optional[Outcome] = None

    @property
    def done(self) -> bool:
        return self.terminal is not None

    @property
    def exit_code(self) -> Optional[int]:
        return None if self.terminal is None else self.terminal.exit_code

    def tail(self, count: int = REPLAY_LINES) -> List[str]:
        start = max(len(self.lines) - count, 0)
        return list(itertools.islice(self.lines, start, None))


class JobRegistry:
    """Maps job ids to jobs for the lifetime of the server process."""

    def __init__(self, replay_lines: int = REPLAY_LINES) -> None:
        self._jobs: Dict[str, Job] = {}
        self.replay_lines = replay_lines

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJob(job_id)
        return job

    def _new_id(self) -> str:
        while True:
            job_id = secrets.token_hex(8)
            if job_id not in self._jobs:
                return job_id

    def create_job(self, output_dir: Optional[Path] = None) -> Job:
        job = Job(id=self._new_id(), output_dir=output_dir)
        self._jobs[job.id] = job
        logger.info("Created job %s", job.id)
        return job

    def append_line(self, job_id: str, line: str) -> None:
        job = self._jobs.get(job_id)
        # Output callbacks can still fire after completion; both cases are ignored.
        if job is None or job.done:
            return
        job.lines.append(line)
        self._broadcast(job, LogEvent(line))

    def complete(self, job_id: str, outcome: Outcome) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.done:
            return
        job.terminal = outcome
        logger.info("Job %s finished with exit code %s", job_id, outcome.exit_code)
        self._broadcast(job, DoneEvent(outcome.exit_code))
        listeners = list(job.listeners)
        job.listeners.clear()
        for listener in listeners:
            _close_quietly(listener)

    def attach_listener(self, job_id: str, listener: Listener) -> Job:
        job = self.require(job_id)
        for line in job.tail(self.replay_lines):
            listener.send(LogEvent(line))
        if job.terminal is not None:
            listener.send(DoneEvent(job.terminal.exit_code))
            _close_quietly(listener)
            return job
        job.listeners.add(listener)
        return job

    def detach_listener(self, job_id: str, listener: Listener) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.listeners.discard(listener)

    def _broadcast(self, job: Job, event: Event) -> None:
        for listener in list(job.listeners):
            try:
                listener.send(event)
            except Exception:
                # A broken listener is dropped and told so; the rest still get the event.
                logger.debug("Dropping listener of job %s after send failure", job.id, exc_info=True)
                job.listeners.discard(listener)
                _close_quietly(listener)


def _close_quietly(listener: Listener) -> None:
    """Close a listener, logging instead of propagating a failure to close."""
    try:
        listener.close()
    except Exception:
        logger.debug("Listener close failed", exc_info=True)
