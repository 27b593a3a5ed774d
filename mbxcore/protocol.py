"""
mbxshell Protocol Definitions (Shared)
File formats and directive parsing for host <-> guest communication.

All files are line-oriented text terminated with CRLF, so a DOS guest can
read and write them with stock tools.

# Host -> Guest (CMD.NEW, renamed to CMD.TXT)
#   dir /w
#   echo done
#
# First non-empty trimmed line is the directive. EXIT or QUIT (any case)
# stops the server; anything else is run as a script.

# Guest -> Host (OUT.NEW, renamed to OUT.TXT)
#   raw captured stdout, or on failure:
#   ERROR: CMD file is empty
#   errno=0

# Guest -> Host (RC.NEW, renamed to RC.TXT)
#   0
#
# Absent or unparseable means "unknown", never zero.

# Guest status (STA.NEW, renamed to STA.TXT)
#   READY | CLAIMING | RUNNING | BYE
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

EOL = "\r\n"

STOP_KEYWORDS = frozenset({"EXIT", "QUIT"})
FAREWELL = "MBXSRV BYE"

# Max bytes of command text handed to the executor
MAX_PAYLOAD = 32 * 1024

_RC_PATTERN = re.compile(r"^\s*([+-]?\d+)")


class ServerState(Enum):
    READY = "READY"
    CLAIMING = "CLAIMING"
    RUNNING = "RUNNING"
    STOPPED = "BYE"


@dataclass(frozen=True)
class Stop:
    keyword: str


@dataclass(frozen=True)
class Execute:
    text: str


Directive = Union[Stop, Execute]


def first_line(text: str) -> Optional[str]:
    """Return the first non-empty trimmed line of `text`, if any."""
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line
    return None


def is_stop_keyword(line: str) -> bool:
    return line.strip().upper() in STOP_KEYWORDS


def parse_directive(text: str) -> Optional[Directive]:
    """
    Classify a command file's content.

    Returns None when there is no non-empty line at all, Stop when the
    directive line is a stop keyword, and Execute carrying the whole text
    otherwise.
    """
    line = first_line(text)
    if line is None:
        return None
    if is_stop_keyword(line):
        return Stop(line.upper())
    return Execute(text)


def parse_return_code(text: str) -> Optional[int]:
    """Parse RC.TXT content; whitespace is tolerated, garbage yields None."""
    match = _RC_PATTERN.match(text)
    if not match:
        return None
    return int(match.group(1))


def format_lines(*lines: str) -> str:
    return "".join(line + EOL for line in lines)


def format_error(reason: str, err: int = 0) -> str:
    """Body of OUT.TXT when the command could not be executed."""
    return format_lines(f"ERROR: {reason}", f"errno={err}")


def format_return_code(code: int) -> str:
    return format_lines(str(code))


def payload_size(text: str, encoding: str = "utf-8") -> int:
    return len(text.encode(encoding, errors="replace"))
