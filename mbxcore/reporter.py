"""
Status and log files.

STA.TXT holds a single token describing what the guest is doing; LOG.TXT is
an append-only trail. Neither is read by the protocol itself, so failures
here are reported and otherwise ignored.
"""

import logging
from typing import Optional

from .clock import Clock, SystemClock
from .paths import MailboxPaths
from .protocol import ServerState, format_lines
from .store import MailboxStore

logger = logging.getLogger("mbxcore.reporter")


class Reporter:
    def __init__(self, store: MailboxStore, paths: MailboxPaths, clock: Optional[Clock] = None):
        self.store = store
        self.paths = paths
        self.clock = clock or SystemClock()

    def log(self, message: str, level: int = logging.INFO) -> None:
        """Append one timestamped line to LOG.TXT and mirror it to the logger."""
        logger.log(level, message)
        line = f"[{self.clock.timestamp()}] {message}"
        try:
            self.store.append_text(self.paths.log_txt, format_lines(line))
        except OSError as e:
            logger.warning("failed to append to %s: %s", self.paths.log_txt, e)

    def warn(self, message: str) -> None:
        self.log(f"WARN: {message}", logging.WARNING)

    def error(self, message: str) -> None:
        self.log(f"ERROR: {message}", logging.ERROR)

    def set_status(self, state: ServerState) -> None:
        try:
            self.store.atomic_publish(self.paths.sta_new, self.paths.sta_txt, format_lines(state.value))
        except OSError as e:
            self.log(f"WARN: failed to write STA.TXT ({e})", logging.WARNING)
