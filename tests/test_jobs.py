import asyncio
import re

import pytest

from ytui_errors import UnknownJob
from ytui_jobs import (
    Aborted,
    DoneEvent,
    Exited,
    FailedToStart,
    JobRegistry,
    Listener,
    LogEvent,
    QueueListener,
    format_sse,
)


class RecordingListener(Listener):
    def __init__(self):
        self.events = []
        self.close_calls = 0

    def send(self, event):
        self.events.append(event)

    def close(self):
        self.close_calls += 1


class BrokenListener(RecordingListener):
    def send(self, event):
        raise ConnectionResetError("peer went away")


def test_job_ids_are_unique_lowercase_hex():
    registry = JobRegistry()
    ids = {registry.create_job().id for _ in range(200)}
    assert len(ids) == 200
    assert all(re.fullmatch(r"[0-9a-f]{16}", job_id) for job_id in ids)


def test_log_keeps_only_the_most_recent_2000_lines():
    registry = JobRegistry()
    job = registry.create_job()
    lines = [f"line {n}" for n in range(2600)]
    for line in lines:
        registry.append_line(job.id, line)
    assert list(job.lines) == lines[-2000:]


def test_attach_replays_last_250_lines_before_new_broadcasts():
    registry = JobRegistry()
    job = registry.create_job()
    lines = [f"line {n}" for n in range(400)]
    for line in lines:
        registry.append_line(job.id, line)

    listener = RecordingListener()
    registry.attach_listener(job.id, listener)
    registry.append_line(job.id, "fresh")

    assert listener.events == [LogEvent(line) for line in lines[-250:]] + [LogEvent("fresh")]


def test_attach_replays_everything_when_log_is_short():
    registry = JobRegistry()
    job = registry.create_job()
    registry.append_line(job.id, "a")
    registry.append_line(job.id, "b")
    listener = RecordingListener()
    registry.attach_listener(job.id, listener)
    assert listener.events == [LogEvent("a"), LogEvent("b")]
    assert listener in job.listeners


def test_complete_notifies_every_listener_exactly_once():
    registry = JobRegistry()
    job = registry.create_job()
    first, second = RecordingListener(), RecordingListener()
    registry.attach_listener(job.id, first)
    registry.attach_listener(job.id, second)

    registry.complete(job.id, Exited(3))
    registry.complete(job.id, Exited(0))
    registry.append_line(job.id, "late output")

    for listener in (first, second):
        assert listener.events == [DoneEvent(3)]
        assert listener.close_calls == 1
    assert job.listeners == set()
    assert job.terminal == Exited(3)
    assert list(job.lines) == []


def test_attach_to_finished_job_gets_replay_and_done_without_registering():
    registry = JobRegistry()
    job = registry.create_job()
    registry.append_line(job.id, "output")
    registry.complete(job.id, FailedToStart("no binary"))

    listener = RecordingListener()
    registry.attach_listener(job.id, listener)

    assert listener.events == [LogEvent("output"), DoneEvent(-1)]
    assert listener.close_calls == 1
    assert listener not in job.listeners


def test_attach_unknown_job_raises():
    with pytest.raises(UnknownJob):
        JobRegistry().attach_listener("missing", RecordingListener())


def test_unknown_ids_are_ignored_by_append_complete_and_detach():
    registry = JobRegistry()
    registry.append_line("missing", "x")
    registry.complete("missing", Exited(0))
    registry.detach_listener("missing", RecordingListener())
    assert len(registry) == 0


def test_detach_is_idempotent_and_stops_delivery():
    registry = JobRegistry()
    job = registry.create_job()
    listener = RecordingListener()
    registry.attach_listener(job.id, listener)
    registry.detach_listener(job.id, listener)
    registry.detach_listener(job.id, listener)
    registry.append_line(job.id, "not for you")
    registry.complete(job.id, Exited(0))
    registry.detach_listener(job.id, listener)
    assert listener.events == []


def test_broken_listener_is_dropped_and_closed():
    registry = JobRegistry()
    job = registry.create_job()
    broken, healthy = BrokenListener(), RecordingListener()
    registry.attach_listener(job.id, broken)
    registry.attach_listener(job.id, healthy)

    registry.append_line(job.id, "hello")

    assert broken not in job.listeners
    assert broken.close_calls == 1
    assert healthy.events == [LogEvent("hello")]


def test_outcomes_map_to_wire_exit_codes():
    assert Exited(0).exit_code == 0
    assert Exited(-9).exit_code == -9
    assert FailedToStart("x").exit_code == -1
    assert Aborted("x").exit_code == -1


def test_format_sse():
    assert format_sse(LogEvent("50%")) == 'event: log\ndata: {"line": "50%"}\n\n'
    assert format_sse(DoneEvent(0)) == 'event: done\ndata: {"exitCode": 0}\n\n'


def test_queue_listener_drains_until_done():
    async def scenario():
        registry = JobRegistry()
        job = registry.create_job()
        registry.append_line(job.id, "before")
        listener = QueueListener()
        registry.attach_listener(job.id, listener)

        async def produce():
            await asyncio.sleep(0)
            registry.append_line(job.id, "after")
            registry.complete(job.id, Exited(0))

        producer = asyncio.ensure_future(produce())
        received = [event async for event in listener.events()]
        await producer
        return received

    assert asyncio.run(scenario()) == [LogEvent("before"), LogEvent("after"), DoneEvent(0)]
