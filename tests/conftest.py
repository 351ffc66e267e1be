import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from server import create_app
from ytui_errors import LaunchFailure
from ytui_launcher import Launcher, ProcessHandle


class FakeHandle(ProcessHandle):
    """Replays canned output in small chunks, then reports an exit code."""

    def __init__(self, stdout=b"", stderr=b"", exit_code=0, chunk_size=7, wait_error=None):
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.chunk_size = chunk_size
        self.wait_error = wait_error
        self.killed = False

    async def _chunks(self, data):
        for start in range(0, len(data), self.chunk_size):
            yield data[start:start + self.chunk_size]
            await asyncio.sleep(0)

    def stdout_chunks(self):
        return self._chunks(self.stdout)

    def stderr_chunks(self):
        return self._chunks(self.stderr)

    async def wait(self):
        if self.wait_error is not None:
            raise self.wait_error
        return self.exit_code

    def kill(self):
        self.killed = True


class FakeLauncher(Launcher):
    """Pretends to be yt-dlp, answering according to the arguments it gets."""

    command = "fake-yt-dlp"

    def __init__(
        self,
        info_json=None,
        list_lines=(),
        download_lines=(),
        stderr_lines=(),
        exit_code=0,
        version="2025.01.15",
        wait_error=None,
    ):
        self.info_json = info_json
        self.list_lines = list(list_lines)
        self.download_lines = list(download_lines)
        self.stderr_lines = list(stderr_lines)
        self.exit_code = exit_code
        self.version = version
        self.wait_error = wait_error
        self.calls = []
        self.list_files = []

    async def launch(self, args, cwd=None):
        args = list(args)
        self.calls.append(args)
        if "-a" in args:
            self.list_files.append(Path(args[args.index("-a") + 1]).read_text(encoding="utf-8"))

        if "--version" in args:
            lines = [self.version]
        elif "-J" in args:
            lines = [json.dumps(self.info_json)] if self.info_json is not None else []
        elif "--flat-playlist" in args and "--dump-json" in args:
            lines = self.list_lines
        elif "--newline" in args:
            lines = self.download_lines
        else:
            lines = []

        stdout = "".join(line + "\n" for line in lines).encode("utf-8")
        stderr = "".join(line + "\n" for line in self.stderr_lines).encode("utf-8")
        return FakeHandle(stdout, stderr, self.exit_code, wait_error=self.wait_error)


class FailingLauncher(Launcher):
    command = "missing-yt-dlp"

    def __init__(self):
        self.calls = []

    async def launch(self, args, cwd=None):
        self.calls.append(list(args))
        raise LaunchFailure(self.command, FileNotFoundError(2, "No such file or directory", self.command))


@pytest.fixture
def downloads_dir(tmp_path):
    path = tmp_path / "Downloads"
    path.mkdir()
    return path


@pytest.fixture
def make_client(downloads_dir):
    clients = []

    def _make(launcher=None):
        launcher = launcher if launcher is not None else FakeLauncher()
        client = TestClient(create_app(launcher=launcher, downloads_base_dir=downloads_dir, index_html="<html>ui</html>"))
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


def read_events(client, job_id):
    """Collect ``(event, data)`` pairs from a job's event stream until it ends."""
    events = []
    with client.stream("GET", f"/api/events/{job_id}") as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        name = None
        for line in resp.iter_lines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                events.append((name, json.loads(line[len("data: "):])))
    return events
