"""
mbxshell core: the pieces both sides of the mailbox share.
"""

from .errors import (
    ClaimFailure,
    EmptyCommand,
    ExecutionFailure,
    MailboxError,
    MailboxTimeout,
    PayloadTooLarge,
    PublishFailure,
)
from .paths import MailboxPaths
from .store import FileSystemStore, MailboxStore, MemoryStore

__all__ = [
    "ClaimFailure",
    "EmptyCommand",
    "ExecutionFailure",
    "FileSystemStore",
    "MailboxError",
    "MailboxPaths",
    "MailboxStore",
    "MailboxTimeout",
    "MemoryStore",
    "PayloadTooLarge",
    "PublishFailure",
]
