"""
mbxshell Host Client
Submits one command at a time and waits for the guest's reply.

The only completion signal is OUT.TXT changing its timestamp. RC.TXT is
published right after it, so the client grants it a short grace period
before reporting the code as unknown.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from mbxcore.clock import Clock, SystemClock
from mbxcore.crypto import fingerprint
from mbxcore.errors import MailboxTimeout
from mbxcore.paths import MailboxPaths
from mbxcore.protocol import first_line, format_lines, parse_return_code
from mbxcore.store import MailboxStore

logger = logging.getLogger("mbxhost.client")

RC_GRACE = 0.2
RC_GRACE_POLL = 0.02


@dataclass
class Reply:
    output: str
    return_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.return_code == 0


def _changed(before: Optional[int], now: Optional[int]) -> bool:
    if now is None:
        return False
    return before is None or now != before


class MailboxClient:
    def __init__(
        self,
        store: MailboxStore,
        paths: MailboxPaths,
        clock: Optional[Clock] = None,
        rc_grace: float = RC_GRACE,
        rc_grace_poll: float = RC_GRACE_POLL,
        encoding: str = "utf-8",
    ):
        self.store = store
        self.paths = paths
        self.clock = clock or SystemClock()
        self.rc_grace = rc_grace
        self.rc_grace_poll = rc_grace_poll
        self.encoding = encoding

    def send(self, command: str, timeout: float = 5.0, poll_interval: float = 0.05) -> Reply:
        """
        Deposit `command` as CMD.TXT and wait for a fresh OUT.TXT.

        Raises MailboxTimeout if nothing is published within `timeout`
        seconds; CMD.TXT is left for the guest in that case. OSError from
        writing the command propagates unchanged.
        """
        out_before = self.store.mtime(self.paths.out_txt)
        rc_before = self.store.mtime(self.paths.rc_txt)

        self._deposit(command)
        start = self.clock.now()

        while True:
            if _changed(out_before, self.store.mtime(self.paths.out_txt)):
                try:
                    output = self.store.read_text(self.paths.out_txt)
                except FileNotFoundError:
                    # Caught between remove and rename on the guest side
                    output = None
                if output is not None:
                    return Reply(output, self._read_return_code(rc_before))

            if self.clock.now() - start > timeout:
                raise MailboxTimeout(
                    f"Timeout waiting for OUT.TXT after {timeout:.1f}s. "
                    f"Is mbxsrv running in {self.paths.root}?"
                )
            self.clock.sleep(poll_interval)

    def stop(self, timeout: float = 5.0, poll_interval: float = 0.05) -> Reply:
        """Ask the guest server to exit."""
        return self.send("EXIT", timeout, poll_interval)

    def status(self) -> Optional[str]:
        """Current STA.TXT token, or None if the guest never wrote one."""
        try:
            return first_line(self.store.read_text(self.paths.sta_txt))
        except FileNotFoundError:
            return None

    def log_tail(self, lines: int = 20) -> List[str]:
        try:
            text = self.store.read_text(self.paths.log_txt)
        except FileNotFoundError:
            return []
        return text.splitlines()[-lines:]

    def _deposit(self, command: str) -> None:
        text = format_lines(*command.splitlines())

        self.store.remove(self.paths.cmd_new)
        self.store.write_text(self.paths.cmd_new, text)
        self.store.rename(self.paths.cmd_new, self.paths.cmd_txt)
        logger.debug("Deposited CMD.TXT (sha256=%s)", fingerprint(text, self.encoding))

    def _read_return_code(self, rc_before: Optional[int]) -> Optional[int]:
        if _changed(rc_before, self.store.mtime(self.paths.rc_txt)):
            return self._parse_rc_file()

        deadline = self.clock.now() + self.rc_grace
        while self.clock.now() < deadline:
            self.clock.sleep(self.rc_grace_poll)
            if _changed(rc_before, self.store.mtime(self.paths.rc_txt)):
                return self._parse_rc_file()

        logger.debug("RC.TXT not updated within %.2fs; return code unknown", self.rc_grace)
        return None

    def _parse_rc_file(self) -> Optional[int]:
        try:
            return parse_return_code(self.store.read_text(self.paths.rc_txt))
        except FileNotFoundError:
            return None
