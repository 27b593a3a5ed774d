"""
mbxsrv: the guest side of the mailbox.
"""

from .executor import ExecResult, Executor, ShellExecutor
from .server import MailboxServer

__all__ = ["ExecResult", "Executor", "MailboxServer", "ShellExecutor"]
