"""amcheck - mailbox triage and monitoring over IMAP.

This package moves matching mail into a storage mailbox and then runs
per-handler decision trees over it to alert on, delete, or sign off groups
of messages.
"""

__version__ = "0.1.0"

from amcheck.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
