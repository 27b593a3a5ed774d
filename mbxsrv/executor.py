"""
Command execution boundary.

The server only ever talks to an Executor: hand it a script, get back the
captured output and a completion code. ShellExecutor is the stock backend,
running the script through the platform's command interpreter.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger("mbxsrv.executor")

TIMEOUT_NOTE = "[mbxsrv] execution timed out"
# How long to keep reading stdout after the job was killed
DRAIN_TIMEOUT = 1.0


@dataclass
class ExecResult:
    """What came back from one job. `code` is None when none could be captured."""

    output: str = ""
    code: Optional[int] = None
    error: Optional[str] = None


class Executor(ABC):
    @abstractmethod
    def run(self, script: str) -> ExecResult:
        """Run `script` to completion and report what it produced."""


class ShellExecutor(Executor):
    """
    Run a script as a job file in `workdir`.

    - Windows: `%COMSPEC% /C MBXJOB.BAT`, with an `@echo off` wrapper
    - elsewhere: `/bin/sh MBXJOB.SH`

    The interpreter's exit status is the completion code, which for both
    shells is the status of the last command in the script.
    """

    def __init__(
        self,
        workdir: Union[str, Path],
        timeout: float = 60.0,
        merge_stderr: bool = False,
        encoding: str = "utf-8",
    ):
        self.workdir = Path(workdir)
        self.timeout = timeout
        self.merge_stderr = merge_stderr
        self.encoding = encoding

    @property
    def job_path(self) -> Path:
        return self.workdir / ("MBXJOB.BAT" if os.name == "nt" else "MBXJOB.SH")

    def _command(self) -> List[str]:
        if os.name == "nt":
            comspec = os.environ.get("COMSPEC") or "COMMAND.COM"
            return [comspec, "/C", self.job_path.name]
        return ["/bin/sh", self.job_path.name]

    def _write_job(self, script: str) -> None:
        if os.name == "nt":
            body = "@echo off\r\nrem MBXSRV job wrapper\r\n" + script
            newline = "\r\n"
        else:
            body = "# MBXSRV job wrapper\n" + script
            newline = "\n"
        text = newline.join(body.splitlines()) + newline
        with open(self.job_path, "w", encoding=self.encoding, newline="") as f:
            f.write(text)

    def run(self, script: str) -> ExecResult:
        try:
            self._write_job(script)
        except OSError as e:
            return ExecResult(error=f"failed to write {self.job_path.name}: {e}")

        cmd = self._command()
        logger.debug("Executing job: %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self.merge_stderr else subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                cwd=str(self.workdir),
                start_new_session=os.name != "nt",
            )
        except OSError as e:
            self._cleanup()
            return ExecResult(error=f"failed to start {cmd[0]}: {e}")

        try:
            raw, _ = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            raw = self._drain(proc)
            output = self._decode(raw)
            if output and not output.endswith("\n"):
                output += "\r\n"
            return ExecResult(output=output + TIMEOUT_NOTE + "\r\n", error="timeout")
        finally:
            self._cleanup()

        return ExecResult(output=self._decode(raw), code=proc.returncode)

    def _drain(self, proc: subprocess.Popen) -> Optional[bytes]:
        try:
            raw, _ = proc.communicate(timeout=DRAIN_TIMEOUT)
            return raw
        except subprocess.TimeoutExpired as e:
            # A detached descendant outside the process group still holds the pipe
            logger.warning("stdout still open %.1fs after kill; abandoning it", DRAIN_TIMEOUT)
            proc.stdout.close()
            proc.wait()
            return e.output

    def _kill(self, proc: subprocess.Popen) -> None:
        # The shell may have children holding stdout open; take the whole group
        if os.name == "nt":
            proc.kill()
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _decode(self, raw: Optional[bytes]) -> str:
        return (raw or b"").decode(self.encoding, errors="replace")

    def _cleanup(self) -> None:
        try:
            os.remove(self.job_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("could not remove %s: %s", self.job_path, e)
