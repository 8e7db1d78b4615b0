"""
Tests for command execution, output splitting, forwarding and rate limiting.
"""

import shutil
import threading
import time

import pytest

from command_module import executor
from command_module.executor import CommandRunner, OutputForwarder, Outcome, split_output_lines
from command_module.transport import EventRateLimiter, LOCALFILE_MQ


class RecordingTransport:
    def __init__(self, fail_on=None):
        self.sent = []
        self.fail_on = fail_on or set()

    def send(self, message, location, category=LOCALFILE_MQ):
        if message in self.fail_on:
            raise OSError("queue full")
        self.sent.append((category, location, message))


class FakeTime:
    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_split_output_lines():
    assert split_output_lines("line1\nline2\n") == ["line1", "line2"]
    assert split_output_lines("a\n\n\nb") == ["a", "b"]
    assert split_output_lines("") == []
    assert split_output_lines(None) == []


def test_runner_success_captures_stdout_and_stderr():
    result = CommandRunner().run("echo out; echo err 1>&2", timeout=10)

    assert result.outcome == Outcome.SUCCESS
    assert result.exit_status == 0
    assert split_output_lines(result.output) == ["out", "err"]


def test_runner_nonzero_exit_keeps_output():
    result = CommandRunner().run("echo partial; exit 3", timeout=10)

    assert result.outcome == Outcome.NONZERO_EXIT
    assert result.exit_status == 3
    assert result.output == "partial\n"
    assert result.forwardable


def test_runner_without_capture():
    result = CommandRunner().run("echo hidden", capture_output=False, timeout=10)

    assert result.outcome == Outcome.SUCCESS
    assert result.output is None


def test_runner_timeout():
    result = CommandRunner().run("sleep 5", timeout=1)

    assert result.outcome == Outcome.TIMEOUT
    assert result.exit_status is None
    assert not result.forwardable
    assert result.duration_seconds < 5


@pytest.mark.skipif(shutil.which("setsid") is None, reason="setsid not available")
def test_runner_timeout_is_bounded_when_child_leaves_process_group():
    # The detached sleep keeps the output pipe open after the group is killed.
    result = CommandRunner().run("setsid sleep 8; sleep 8", timeout=1)

    assert result.outcome == Outcome.TIMEOUT
    assert result.duration_seconds < 4


def test_runner_spawn_error(monkeypatch):
    def broken_popen(*args, **kwargs):
        raise OSError("no shell")

    monkeypatch.setattr(executor.subprocess, "Popen", broken_popen)
    result = CommandRunner().run("echo hello", timeout=10)

    assert result.outcome == Outcome.SPAWN_ERROR
    assert "no shell" in result.error


def test_forwarder_sends_each_line_with_extended_tag():
    transport = RecordingTransport()
    forwarder = OutputForwarder(transport, EventRateLimiter(1000), "command_demo")

    assert forwarder.forward("one\ntwo\n") == 2
    assert transport.sent == [
        (LOCALFILE_MQ, "command_demo", "one"),
        (LOCALFILE_MQ, "command_demo", "two"),
    ]


def test_forwarder_continues_after_send_failure():
    transport = RecordingTransport(fail_on={"bad"})
    forwarder = OutputForwarder(transport, EventRateLimiter(1000), "command_demo")

    assert forwarder.forward("good\nbad\nalso good") == 2
    assert [m for _, _, m in transport.sent] == ["good", "also good"]


def test_rate_limiter_spacing():
    fake = FakeTime()
    limiter = EventRateLimiter(4, clock=fake.clock, sleep=fake.sleep)

    assert limiter.spacing_usec == 250000
    for _ in range(3):
        limiter.acquire()

    assert fake.sleeps == [0.25, 0.25]


def test_rate_limiter_does_not_bank_idle_time():
    fake = FakeTime()
    limiter = EventRateLimiter(2, clock=fake.clock, sleep=fake.sleep)

    limiter.acquire()
    fake.now = 10.0
    limiter.acquire()
    limiter.acquire()

    assert fake.sleeps == [0.5]


def test_rate_limiter_serializes_threads():
    fake = FakeTime()
    slots = [fake.now]

    def sleep_and_record(seconds):
        fake.sleep(seconds)
        slots.append(fake.now)

    limiter = EventRateLimiter(10, clock=fake.clock, sleep=sleep_and_record)

    def worker():
        for _ in range(25):
            limiter.acquire()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(slots) == 100
    gaps = [later - earlier for earlier, later in zip(slots, slots[1:])]
    assert all(gap == pytest.approx(0.1) for gap in gaps)


def test_rate_limiter_holds_budget_across_threads():
    limiter = EventRateLimiter(50)
    granted = []
    lock = threading.Lock()

    def worker():
        for _ in range(5):
            limiter.acquire()
            with lock:
                granted.append(time.monotonic())

    started = time.monotonic()
    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(granted) == 20
    # 20 sends at 50 per second need at least 19 spacings of 20ms.
    assert max(granted) - started >= 19 * 0.02 - 0.005


def test_rate_limiter_rejects_non_positive_budget():
    with pytest.raises(ValueError):
        EventRateLimiter(0)
