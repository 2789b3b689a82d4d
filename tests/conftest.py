"""Shared fixtures: controllable clock and Popen-like fake processes."""

import io
import os

import pytest

from agent_wake.metrics import metrics


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStdin(io.BytesIO):
    """Captures injected bytes; getvalue() stays readable after close."""

    def __init__(self):
        super().__init__()
        self.written = b""

    def write(self, data):
        self.written += bytes(data)
        return super().write(data)


class BrokenStdin(FakeStdin):
    def write(self, data):
        raise BrokenPipeError(32, "Broken pipe")


class FakeProc:
    """Minimal subprocess.Popen stand-in."""

    def __init__(self, pid, args=("claude", "--input-format", "stream-json"), stdout=None):
        self.pid = pid
        self.args = list(args)
        self.stdin = FakeStdin()
        self.stdout = stdout
        self.returncode = None

    def poll(self):
        return self.returncode

    def exit(self, code=0):
        self.returncode = code


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def piped_proc():
    """FakeProc whose stdout is the read end of a real pipe; yields (proc, write_fd)."""
    r, w = os.pipe()
    stdout = os.fdopen(r, "rb", buffering=0)
    proc = FakeProc(4242, stdout=stdout)
    yield proc, w
    for closer in (stdout.close, lambda: os.close(w)):
        try:
            closer()
        except OSError:
            pass
