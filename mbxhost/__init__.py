"""
mbxhost: the host side of the mailbox.
"""

from .client import MailboxClient, Reply

__all__ = ["MailboxClient", "Reply"]
