#!/usr/bin/env python3
"""
mbxshell Host Controller (CLI)

Responsibilities:
- One-shot mode: send a single command and exit with its return code
- Interactive mode: REPL that forwards each line to the guest
- Show guest status and log tail on request
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from mbxcore import config
from mbxcore.errors import MailboxTimeout
from mbxcore.paths import MailboxPaths
from mbxcore.protocol import is_stop_keyword
from mbxcore.store import FileSystemStore

from .client import MailboxClient, Reply

PROMPT = "dos> "
LOCAL_EXIT = "exit"
QUIT_GUEST = "quit-guest"


class Controller:
    def __init__(self, client: MailboxClient, timeout: float, poll_interval: float):
        self.client = client
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.last_rc: Optional[int] = None
        self.failed = False

    def exit_code(self) -> int:
        """Last captured return code, else 0/1 for success/failure."""
        if self.last_rc is not None:
            return self.last_rc
        return 1 if self.failed else 0

    def run_command(self, command: str) -> Optional[Reply]:
        """Send one command and print the reply. Failures are printed, not raised."""
        try:
            reply = self.client.send(command, self.timeout, self.poll_interval)
        except MailboxTimeout as e:
            print(f"[!] {e}", file=sys.stderr)
            self.last_rc, self.failed = None, True
            return None
        except OSError as e:
            print(f"[!] Mailbox I/O error: {e}", file=sys.stderr)
            self.last_rc, self.failed = None, True
            return None

        self.last_rc, self.failed = reply.return_code, False
        self.show_reply(reply)
        return reply

    def show_reply(self, reply: Reply):
        output = reply.output.replace("\r\n", "\n")
        sys.stdout.write(output)
        if output and not output.endswith("\n"):
            sys.stdout.write("\n")
        if reply.return_code is not None:
            print(f"[RC] {reply.return_code}")
        sys.stdout.flush()

    def show_status(self):
        status = self.client.status()
        print(f"[i] Guest status: {status or 'unknown'}")

    def show_log(self, lines: int = 20):
        tail = self.client.log_tail(lines)
        if not tail:
            print("[i] LOG.TXT is empty or missing")
        for line in tail:
            print(line)

    def show_help(self):
        """Show help text."""
        print(f"""
mbxhost commands:
  <command>     Run a command (or batch line) on the guest
  status        Show the guest's STA.TXT
  log           Show the last lines of LOG.TXT
  {QUIT_GUEST:<13} Stop the guest server and leave
  EXIT / QUIT   Same as {QUIT_GUEST}
  {LOCAL_EXIT:<13} Leave the REPL, guest keeps running
  help          Show this help
""")

    def interactive_shell(self) -> int:
        print(f"mbxhost REPL. Shared folder: {self.client.paths.root}")
        print(f"Type guest commands. '{LOCAL_EXIT}' leaves, '{QUIT_GUEST}' stops the guest. 'help' for more.")

        while True:
            try:
                line = input(PROMPT)
            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                print(f"\n[i] Use '{LOCAL_EXIT}' to leave.")
                continue

            stripped = line.strip()
            if not stripped:
                continue

            # Built-in controller commands
            if stripped == LOCAL_EXIT:
                break
            elif stripped == "help":
                self.show_help()
                continue
            elif stripped == "status":
                self.show_status()
                continue
            elif stripped == "log":
                self.show_log()
                continue

            if stripped == QUIT_GUEST:
                self.run_command("EXIT")
                break

            self.run_command(line)
            if is_stop_keyword(stripped):
                break

        return self.exit_code()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="mbxhost: send commands to an mbxsrv guest through a shared folder")
    parser.add_argument("directory",
                        help="Shared mailbox folder")
    parser.add_argument("--cmd", "-c",
                        help="Run a single command and exit with its return code")
    parser.add_argument("--timeout", "-t", type=int, default=config.TIMEOUT_MS,
                        help="Milliseconds to wait for a reply (default: %(default)s)")
    parser.add_argument("--poll", type=int, default=config.HOST_POLL_MS,
                        help="Milliseconds between polls (default: %(default)s)")
    parser.add_argument("--status", action="store_true",
                        help="Print the guest status and exit")
    parser.add_argument("--encoding", default=config.ENCODING,
                        help="Text encoding of mailbox files (default: %(default)s)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    root = Path(args.directory)
    if not root.is_dir():
        print(f"[!] Shared folder does not exist: {root}", file=sys.stderr)
        return 2
    if args.timeout <= 0 or args.poll <= 0:
        print("[!] --timeout and --poll must be positive", file=sys.stderr)
        return 2

    client = MailboxClient(FileSystemStore(encoding=args.encoding), MailboxPaths.from_dir(root),
                           encoding=args.encoding)
    controller = Controller(client, args.timeout / 1000.0, args.poll / 1000.0)

    if args.status:
        controller.show_status()
        return 0

    if args.cmd is not None:
        controller.run_command(args.cmd)
        return controller.exit_code()

    return controller.interactive_shell()


if __name__ == "__main__":
    sys.exit(main())
