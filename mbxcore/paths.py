"""
Mailbox file names.

Every mailbox is a fixed set of 8.3 names inside one shared directory, so a
DOS guest can address them without long-filename support.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class MailboxPaths:
    """The files that make up one mailbox rooted at `root`."""

    root: Path
    cmd_new: Path
    cmd_txt: Path
    cmd_run: Path
    out_new: Path
    out_txt: Path
    rc_new: Path
    rc_txt: Path
    sta_new: Path
    sta_txt: Path
    log_txt: Path

    @classmethod
    def from_dir(cls, root: Union[str, Path]) -> "MailboxPaths":
        root = Path(root)
        return cls(
            root=root,
            cmd_new=root / "CMD.NEW",
            cmd_txt=root / "CMD.TXT",
            cmd_run=root / "CMD.RUN",
            out_new=root / "OUT.NEW",
            out_txt=root / "OUT.TXT",
            rc_new=root / "RC.NEW",
            rc_txt=root / "RC.TXT",
            sta_new=root / "STA.NEW",
            sta_txt=root / "STA.TXT",
            log_txt=root / "LOG.TXT",
        )
