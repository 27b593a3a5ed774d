from pathlib import Path
from typing import Callable, List, Optional

import pytest

from mbxcore.clock import Clock
from mbxcore.paths import MailboxPaths
from mbxcore.store import MemoryStore
from mbxhost.client import MailboxClient
from mbxsrv.executor import ExecResult, Executor
from mbxsrv.server import MailboxServer


class FakeClock(Clock):
    """Virtual time. Every sleep advances the clock and then runs the hooks."""

    def __init__(self):
        self.t = 0.0
        self.sleeps: List[float] = []
        self.hooks: List[Callable[[], object]] = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds
        for hook in list(self.hooks):
            hook()

    def timestamp(self) -> str:
        return "2026-01-01 00:00:00"


class RecordingExecutor(Executor):
    """Understands ECHO lines, records every script it is handed."""

    def __init__(self, code: Optional[int] = 0, error: Optional[str] = None):
        self.code = code
        self.error = error
        self.scripts: List[str] = []

    def run(self, script: str) -> ExecResult:
        self.scripts.append(script)
        out = []
        for line in script.splitlines():
            head, _, rest = line.strip().partition(" ")
            if head.upper() == "ECHO":
                out.append(rest + "\r\n")
        return ExecResult(output="".join(out), code=self.code, error=self.error)


@pytest.fixture
def paths() -> MailboxPaths:
    return MailboxPaths.from_dir(Path("/mbx"))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def guest_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def host_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def server(store, paths, executor, guest_clock) -> MailboxServer:
    return MailboxServer(store, paths, executor, clock=guest_clock)


@pytest.fixture
def client(store, paths, host_clock) -> MailboxClient:
    return MailboxClient(store, paths, clock=host_clock)


def deposit(store: MemoryStore, paths: MailboxPaths, text: str) -> None:
    """Put a command in CMD.TXT the way the host does."""
    store.write_text(paths.cmd_new, text)
    store.rename(paths.cmd_new, paths.cmd_txt)
