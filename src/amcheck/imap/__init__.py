"""IMAP access: the mailbox session and header parsing."""

from .client import ImapStore
from .parsing import header_to_item

__all__ = ["ImapStore", "header_to_item"]
