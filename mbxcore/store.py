"""
Mailbox Store (filesystem primitives)

The shared folder is the only channel between host and guest, so every
protocol step is expressed as one of these operations. Consistency contract:
- a final name only ever appears through rename, never through a direct write
- at most one writer per file at a time
- "does not exist" is a normal answer, not an error

FileSystemStore talks to the real folder; MemoryStore is an in-memory
equivalent with the same semantics for exercising the protocol without disk.
"""

import errno
import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger("mbxcore.store")


class MailboxStore(ABC):
    """Operations the protocol needs from the shared folder."""

    @abstractmethod
    def exists(self, path: Path) -> bool:
        ...

    @abstractmethod
    def mtime(self, path: Path) -> Optional[int]:
        """Comparable modification stamp, or None when the file is absent."""

    @abstractmethod
    def read_text(self, path: Path) -> str:
        ...

    @abstractmethod
    def write_text(self, path: Path, text: str) -> None:
        """
        Plain (non-atomic) write. Only used for staging names.

        Characters the mailbox encoding cannot represent are written as its
        replacement character rather than failing the write.
        """

    @abstractmethod
    def append_text(self, path: Path, text: str) -> None:
        ...

    @abstractmethod
    def remove(self, path: Path) -> None:
        """Delete `path`; a missing file is not an error."""

    @abstractmethod
    def rename(self, src: Path, dst: Path, fallback: bool = True) -> None:
        """
        Move `src` over `dst`, replacing an existing `dst` in one step.

        A missing source always raises FileNotFoundError. Any other rename
        failure falls back to copy-then-delete when `fallback` is set.
        """

    def atomic_publish(self, staging: Path, final: Path, content: str) -> None:
        """
        Make `content` visible under `final` without readers ever seeing a
        partial file.

        Raises OSError if the write or the rename fails; in that case the
        result must be treated as not published.
        """
        self.remove(staging)
        self.write_text(staging, content)
        self.remove(final)
        self.rename(staging, final)


class FileSystemStore(MailboxStore):
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def exists(self, path: Path) -> bool:
        return os.path.exists(path)

    def mtime(self, path: Path) -> Optional[int]:
        try:
            return os.stat(path).st_mtime_ns
        except OSError:
            return None

    def read_text(self, path: Path) -> str:
        with open(path, "r", encoding=self.encoding, errors="replace", newline="") as f:
            return f.read()

    def write_text(self, path: Path, text: str) -> None:
        with open(path, "w", encoding=self.encoding, errors="replace", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

    def append_text(self, path: Path, text: str) -> None:
        with open(path, "a", encoding=self.encoding, errors="replace", newline="") as f:
            f.write(text)

    def remove(self, path: Path) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def rename(self, src: Path, dst: Path, fallback: bool = True) -> None:
        try:
            os.replace(src, dst)
            return
        except FileNotFoundError:
            raise
        except OSError as e:
            if not fallback or not os.path.exists(src):
                raise
            logger.debug("rename %s -> %s failed (%s); copying instead", src, dst, e)

        shutil.copyfile(src, dst)
        try:
            os.remove(src)
        except OSError:
            # Never leave the same content under both names
            self.remove(dst)
            raise


class MemoryStore(MailboxStore):
    """
    Dict-backed store. Timestamps come from a counter bumped on every write,
    so two consecutive publishes always compare different.
    """

    def __init__(self):
        self.files: Dict[Path, Tuple[str, int]] = {}
        self.faults: Dict[Tuple[str, Path], List[Exception]] = {}
        self._version = 0

    def inject_fault(self, op: str, path: Path, exc: Exception, times: int = 1) -> None:
        """Make the next `times` calls of `op` on `path` raise `exc`."""
        self.faults.setdefault((op, Path(path)), []).extend([exc] * times)

    def _check(self, op: str, path: Path) -> None:
        pending = self.faults.get((op, Path(path)))
        if pending:
            raise pending.pop(0)

    def _bump(self) -> int:
        self._version += 1
        return self._version

    def exists(self, path: Path) -> bool:
        return Path(path) in self.files

    def mtime(self, path: Path) -> Optional[int]:
        entry = self.files.get(Path(path))
        return entry[1] if entry else None

    def read_text(self, path: Path) -> str:
        self._check("read", path)
        entry = self.files.get(Path(path))
        if entry is None:
            raise FileNotFoundError(errno.ENOENT, "No such file", str(path))
        return entry[0]

    def write_text(self, path: Path, text: str) -> None:
        self._check("write", path)
        self.files[Path(path)] = (text, self._bump())

    def append_text(self, path: Path, text: str) -> None:
        self._check("append", path)
        old = self.files.get(Path(path), ("", 0))[0]
        self.files[Path(path)] = (old + text, self._bump())

    def remove(self, path: Path) -> None:
        self._check("remove", path)
        self.files.pop(Path(path), None)

    def rename(self, src: Path, dst: Path, fallback: bool = True) -> None:
        src, dst = Path(src), Path(dst)
        if src not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", str(src))
        self._check("rename", src)
        self.files[dst] = self.files.pop(src)
