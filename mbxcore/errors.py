"""
Error taxonomy for the mailbox protocol.

Primitive file failures are plain OSError; everything here sits one level
above that and is always recoverable for the guest loop.
"""


class MailboxError(Exception):
    """Base class for protocol-level failures."""


class ClaimFailure(MailboxError):
    """Renaming CMD.TXT -> CMD.RUN kept failing until retries ran out."""


class EmptyCommand(MailboxError):
    """The claimed command has no non-empty line."""


class PayloadTooLarge(MailboxError):
    """The claimed command exceeds the payload ceiling."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"payload too large ({size} bytes > {limit})")
        self.size = size
        self.limit = limit


class ExecutionFailure(MailboxError):
    """The executor could not run the job or produce a return code."""


class PublishFailure(MailboxError):
    """A result file could not be written or renamed into place."""


class MailboxTimeout(MailboxError):
    """
    No fresh OUT.TXT appeared before the host gave up waiting.

    Not an OSError subclass, so `except OSError` handlers for mailbox I/O
    never catch it.
    """
