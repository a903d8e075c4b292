"""Interfaces the engine needs from the mail store.

The evaluator and action executor only ever talk to these protocols, so the
IMAP session can be swapped for an in-memory fake in tests.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Protocol

from amcheck.models import TextCondition


class ContentOracle(Protocol):
    """Answers body questions without loading bodies up front."""

    def search_bodies(self, uids: Collection[int], condition: TextCondition) -> set[int]:
        """Return the subset of ``uids`` whose body satisfies ``condition``."""
        ...

    def fetch_bodies(self, uids: Collection[int]) -> dict[int, bytes]:
        """Return the raw body of every uid in ``uids``.

        Raises:
            BodyFetchError: If fewer bodies than requested came back.
        """
        ...


class MailMutator(Protocol):
    """Mutating operations used by actions."""

    def delete(self, uids: Collection[int]) -> None:
        """Flag ``uids`` as deleted and expunge them in one batch."""
        ...


class MailStore(ContentOracle, MailMutator, Protocol):
    """Everything a selection phase needs from a mailbox session."""

    def select(self, mailbox: str) -> None: ...

    def search(self, *criteria: str) -> list[int]: ...

    def fetch_headers(self, uids: Collection[int]) -> dict[int, bytes]: ...

    def ensure_mailbox(self, mailbox: str) -> None: ...

    def move(self, uids: Collection[int], mailbox: str) -> None: ...
