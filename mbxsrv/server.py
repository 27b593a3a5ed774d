#!/usr/bin/env python3
"""
mbxshell Guest Server (mailbox poller)

Responsibilities:
- Claim CMD.TXT by renaming it to CMD.RUN
- Resume a CMD.RUN left behind by a crash
- Run the claimed script through the Executor
- Publish OUT.TXT first, then RC.TXT
- Keep STA.TXT and LOG.TXT current
- Exit only on a stop directive or an external stop request
"""

import argparse
import errno
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Optional, Tuple

from mbxcore import config
from mbxcore.clock import Clock, SystemClock
from mbxcore.crypto import fingerprint
from mbxcore.errors import ClaimFailure, EmptyCommand, ExecutionFailure, MailboxError, PayloadTooLarge, PublishFailure
from mbxcore.paths import MailboxPaths
from mbxcore.protocol import (
    FAREWELL,
    MAX_PAYLOAD,
    ServerState,
    Stop,
    format_error,
    format_lines,
    format_return_code,
    parse_directive,
    payload_size,
)
from mbxcore.reporter import Reporter
from mbxcore.store import FileSystemStore, MailboxStore

from .executor import ExecResult, Executor, ShellExecutor

logger = logging.getLogger("mbxsrv.server")

CLAIM_RETRIES = 20
CLAIM_BACKOFF = 0.05
# A peer claim whose timestamp has not moved for this long is treated as abandoned
STALE_CLAIM_AFTER = 300.0


class MailboxServer:
    def __init__(
        self,
        store: MailboxStore,
        paths: MailboxPaths,
        executor: Executor,
        reporter: Optional[Reporter] = None,
        clock: Optional[Clock] = None,
        idle_interval: float = config.DEFAULT_POLL_MS / 1000.0,
        claim_retries: int = CLAIM_RETRIES,
        claim_backoff: float = CLAIM_BACKOFF,
        stale_claim_after: float = STALE_CLAIM_AFTER,
        max_payload: int = MAX_PAYLOAD,
        encoding: str = "utf-8",
        stop_check: Optional[Callable[[], bool]] = None,
    ):
        self.store = store
        self.paths = paths
        self.executor = executor
        self.clock = clock or SystemClock()
        self.reporter = reporter or Reporter(store, paths, self.clock)
        self.idle_interval = idle_interval
        self.claim_retries = claim_retries
        self.claim_backoff = claim_backoff
        self.stale_claim_after = stale_claim_after
        self.max_payload = max_payload
        self.encoding = encoding
        self.stop_check = stop_check

        self.state: Optional[ServerState] = None
        self._stop = threading.Event()
        self._started = False
        self._recovering = False
        self._owns_claim = False
        self._cleanup_claim = False
        self._peer_claim: Optional[Tuple[Optional[int], float]] = None

    # -- lifecycle --

    @property
    def stopped(self) -> bool:
        return self.state is ServerState.STOPPED

    def request_stop(self) -> None:
        """Ask the loop to stop after the current tick. Safe from other threads."""
        self._stop.set()

    def start(self) -> None:
        """Announce readiness and look for a claim left by a previous run."""
        self._started = True
        self.reporter.log("MBXSRV starting")
        self._transition(ServerState.READY)
        if self.store.exists(self.paths.cmd_run):
            self.reporter.log("Found stale CMD.RUN; will process it")
            self._recovering = True

    def run(self) -> int:
        """Poll until stopped. Returns the process exit code."""
        while self.tick():
            self.clock.sleep(self.idle_interval)
        return 0

    def tick(self) -> bool:
        """One poll. Returns False once the server has stopped."""
        if not self._started:
            self.start()
        if self.stopped:
            return False

        if self._stop.is_set() or (self.stop_check is not None and self.stop_check()):
            self.reporter.log("Stop requested; exiting")
            self._publish(format_lines(FAREWELL), 0)
            self._finish()
            return False

        try:
            self._poll()
        except (OSError, ValueError, MailboxError) as e:
            self.reporter.error(f"poll failed: {e}")
            self._transition(ServerState.READY)

        return not self.stopped

    def _poll(self) -> None:
        if self._cleanup_claim:
            self._release()
            if self._cleanup_claim:
                return

        if self.store.exists(self.paths.cmd_run):
            if not (self._owns_claim or self._recovering or self._peer_claim_abandoned()):
                return
        else:
            self._recovering = False
            if not self.store.exists(self.paths.cmd_txt) or not self.claim():
                self._peer_claim = None
                return

        self._peer_claim = None
        self.process()

    def _peer_claim_abandoned(self) -> bool:
        """
        Watch a CMD.RUN this server did not take. A live peer removes its
        claim once the job ends, and jobs are bounded by the executor timeout.
        A claim still sitting unchanged after `stale_claim_after` seconds is
        assumed abandoned and resumed here.
        """
        stamp = self.store.mtime(self.paths.cmd_run)
        now = self.clock.now()
        if self._peer_claim is None or self._peer_claim[0] != stamp:
            if self._peer_claim is None:
                self.reporter.log("CMD.RUN held by another server; not claiming")
            self._peer_claim = (stamp, now)
            return False

        if now - self._peer_claim[1] < self.stale_claim_after:
            return False

        self.reporter.warn(f"CMD.RUN unchanged for {now - self._peer_claim[1]:.0f}s; resuming abandoned claim")
        self._recovering = True
        return True

    def _finish(self) -> None:
        self._transition(ServerState.STOPPED)
        self.reporter.log("MBXSRV stopped")

    def _transition(self, state: ServerState) -> None:
        if state is self.state:
            return
        previous = self.state.name if self.state else "-"
        self.state = state
        self.reporter.set_status(state)
        self.reporter.log(f"STATE {previous} -> {state.name}", logging.DEBUG)

    # -- claim --

    def claim(self) -> bool:
        """
        Rename CMD.TXT to CMD.RUN. The rename is the only guard against two
        servers taking the same command, so it never degrades to a copy.
        """
        self._transition(ServerState.CLAIMING)
        last_error: Optional[OSError] = None

        for _ in range(self.claim_retries):
            if not self.store.exists(self.paths.cmd_txt):
                self._transition(ServerState.READY)
                return False
            try:
                self.store.rename(self.paths.cmd_txt, self.paths.cmd_run, fallback=False)
            except FileNotFoundError:
                # Someone else renamed it first
                self._transition(ServerState.READY)
                return False
            except OSError as e:
                last_error = e
                self.clock.sleep(self.claim_backoff)
                continue

            self._owns_claim = True
            self.reporter.log("Claimed CMD.TXT -> CMD.RUN")
            return True

        failure = ClaimFailure(f"gave up after {self.claim_retries} tries ({last_error})")
        self.reporter.warn(str(failure))
        self._transition(ServerState.READY)
        return False

    # -- execution --

    def process(self) -> None:
        """Handle the command sitting in CMD.RUN."""
        self._transition(ServerState.RUNNING)

        try:
            text = self.store.read_text(self.paths.cmd_run)
        except FileNotFoundError:
            self.reporter.warn("CMD.RUN vanished before it could be read")
            self._owns_claim = self._recovering = False
            self._transition(ServerState.READY)
            return
        except OSError as e:
            self.reporter.error(f"failed to read CMD.RUN ({e})")
            self._publish_error("failed to read CMD.RUN", e.errno or 0)
            self._release()
            self._transition(ServerState.READY)
            return

        directive = parse_directive(text)
        if directive is None:
            empty = EmptyCommand("CMD file is empty")
            self.reporter.error("CMD.RUN empty")
            self._publish_error(str(empty))
        elif isinstance(directive, Stop):
            self.reporter.log(f"Received {directive.keyword}")
            self._publish(format_lines(FAREWELL), 0)
            self._release()
            self._finish()
            return
        else:
            self._execute(directive.text)

        self._release()
        self._transition(ServerState.READY)

    def _execute(self, script: str) -> None:
        size = payload_size(script, self.encoding)
        if size > self.max_payload:
            too_large = PayloadTooLarge(size, self.max_payload)
            self.reporter.error(str(too_large))
            self._publish_error(str(too_large), errno.EFBIG)
            return

        self.reporter.log(f"Executing job (payload={size} bytes, sha256={fingerprint(script, self.encoding)})")
        try:
            result = self.executor.run(script)
        except Exception as e:
            logger.exception("executor raised")
            result = ExecResult(error=f"{type(e).__name__}: {e}")

        output = result.output
        if result.error:
            self.reporter.warn(f"executor: {result.error}")
            if not output:
                output = format_error(f"execution failed: {result.error}")

        code = result.code
        if code is None:
            self.reporter.warn(str(ExecutionFailure("no return code captured; publishing 1")))
            code = 1

        self.reporter.log(f"Job finished rc={code}")
        self._publish(output, code)

    # -- publishing --

    def _publish(self, output: str, code: int) -> None:
        # OUT.TXT is what the host watches, so it lands first
        self._publish_file(self.paths.out_new, self.paths.out_txt, output)
        self._publish_file(self.paths.rc_new, self.paths.rc_txt, format_return_code(code))

    def _publish_error(self, reason: str, err: int = 0) -> None:
        self._publish(format_error(reason, err), 1)

    def _publish_file(self, staging: Path, final: Path, content: str) -> bool:
        try:
            self.store.atomic_publish(staging, final, content)
            return True
        except (OSError, ValueError) as e:
            # UnicodeError is a ValueError and carries no errno
            failure = PublishFailure(f"failed to publish {final.name} (errno={getattr(e, 'errno', None) or 0})")
            self.reporter.warn(str(failure))
            return False

    def _release(self) -> None:
        """Delete CMD.RUN; if that fails, keep retrying on later ticks rather than re-running it."""
        self._owns_claim = self._recovering = False
        try:
            self.store.remove(self.paths.cmd_run)
            self._cleanup_claim = False
        except OSError as e:
            self.reporter.warn(f"failed to remove CMD.RUN ({e})")
            self._cleanup_claim = True


def esc_pressed() -> bool:
    """True if ESC is waiting in the console buffer (Windows consoles only)."""
    if os.name != "nt":
        return False
    import msvcrt

    while msvcrt.kbhit():
        if msvcrt.getch() == b"\x1b":
            return True
    return False


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="mbxsrv: guest-side mailbox command server")
    parser.add_argument("directory", nargs="?", default=".",
                        help="Shared mailbox folder (default: current directory)")
    parser.add_argument("--poll-ms", type=int, default=config.POLL_MS,
                        help="Idle poll interval in ms, 10-2000 (default: %(default)s)")
    parser.add_argument("--timeout", type=float, default=config.EXEC_TIMEOUT,
                        help="Seconds a single job may run (default: %(default)s)")
    parser.add_argument("--max-payload", type=int, default=MAX_PAYLOAD,
                        help="Largest accepted command in bytes (default: %(default)s)")
    parser.add_argument("--merge-stderr", action="store_true", default=config.MERGE_STDERR,
                        help="Capture stderr into OUT.TXT as well")
    parser.add_argument("--encoding", default=config.ENCODING,
                        help="Text encoding of mailbox files (default: %(default)s)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log state transitions to the console")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    root = Path(args.directory)
    if not root.is_dir():
        print(f"[!] Shared folder does not exist: {root}", file=sys.stderr)
        return 2

    poll_ms = config.clamp_poll_ms(args.poll_ms)
    if poll_ms != args.poll_ms:
        print(f"[!] Poll interval {args.poll_ms}ms out of range; using {poll_ms}ms", file=sys.stderr)

    paths = MailboxPaths.from_dir(root)
    store = FileSystemStore(encoding=args.encoding)
    executor = ShellExecutor(root, timeout=args.timeout, merge_stderr=args.merge_stderr, encoding=args.encoding)
    server = MailboxServer(
        store,
        paths,
        executor,
        idle_interval=poll_ms / 1000.0,
        max_payload=args.max_payload,
        encoding=args.encoding,
        stop_check=esc_pressed,
    )

    def _on_signal(signum, _frame):
        print(f"\n[i] Signal {signum} received; stopping after current job")
        server.request_stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    print("[i] mbxsrv v0.1")
    print(f"[+] Serving mailbox in {root.resolve()} (poll {poll_ms}ms)")
    if os.name == "nt":
        print("[i] Press ESC to stop.")

    rc = server.run()
    print("[i] mbxsrv stopped")
    return rc


if __name__ == "__main__":
    sys.exit(main())
