"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from amcheck.exceptions import ImapError
from amcheck.models import Item, TextCondition

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for ImapStore that records every call."""

    def __init__(
        self,
        headers: dict[int, bytes] | None = None,
        bodies: dict[int, bytes] | None = None,
    ) -> None:
        self.headers = dict(headers or {})
        self.bodies = dict(bodies or {})
        self.search_answer: set[int] | None = None
        self.fail_delete = False
        self.capabilities = ("IMAP4REV1", "MOVE")

        self.selected: list[str] = []
        self.searches: list[tuple[str, ...]] = []
        self.search_bodies_calls: list[tuple[list[int], TextCondition]] = []
        self.fetch_bodies_calls: list[list[int]] = []
        self.deleted: list[list[int]] = []
        self.moved: list[tuple[list[int], str]] = []
        self.ensured: list[str] = []

    def select(self, mailbox: str) -> None:
        self.selected.append(mailbox)

    def search(self, *criteria: str) -> list[int]:
        self.searches.append(criteria)
        return sorted(self.headers)

    def fetch_headers(self, uids: Collection[int]) -> dict[int, bytes]:
        return {uid: self.headers[uid] for uid in uids if uid in self.headers}

    def search_bodies(self, uids: Collection[int], condition: TextCondition) -> set[int]:
        self.search_bodies_calls.append((sorted(uids), condition))
        if self.search_answer is not None:
            return self.search_answer & set(uids)

        test = any if condition.mode == "any" else all
        return {
            uid
            for uid in uids
            if test(s.encode() in self.bodies.get(uid, b"") for s in condition.strings)
        }

    def fetch_bodies(self, uids: Collection[int]) -> dict[int, bytes]:
        self.fetch_bodies_calls.append(sorted(uids))
        return {uid: self.bodies[uid] for uid in uids if uid in self.bodies}

    def delete(self, uids: Collection[int]) -> None:
        if self.fail_delete:
            raise ImapError("IMAP STORE returned NO: mailbox is read-only")
        self.deleted.append(sorted(uids))
        for uid in uids:
            self.headers.pop(uid, None)

    def ensure_mailbox(self, mailbox: str) -> None:
        self.ensured.append(mailbox)

    def move(self, uids: Collection[int], mailbox: str) -> None:
        self.moved.append((sorted(uids), mailbox))


def header_block(sender: str, subject: str, date: str) -> bytes:
    """Build a raw header block like the one fetched for each mail."""
    return f"From: {sender}\r\nSubject: {subject}\r\nDate: {date}\r\n\r\n".encode()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep tests away from any settings files or AMCHECK_ variables on the host."""
    from amcheck.config import get_settings

    for name in ("AMCHECK_ENVIRONMENT", "AMCHECK_IMAP_SERVER", "AMCHECK_LOGIN", "AMCHECK_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings_dir = tmp_path / "settings"
    settings_dir.mkdir()
    monkeypatch.setenv("AMCHECK_SETTINGS_DIR", str(settings_dir))
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield settings_dir
    get_settings.cache_clear()
    structlog.reset_defaults()


@pytest.fixture
def now() -> datetime:
    """A fixed "now" for date based nodes."""
    return NOW


@pytest.fixture
def make_item():
    """Factory for Items; ``age_days`` is measured back from NOW."""

    def _make(
        uid: int,
        subject: str = "Cron <root@host> backup",
        sender: str = '"root" <root@example.com>',
        age_days: float = 0,
    ) -> Item:
        return Item(
            uid=uid,
            sender=sender,
            subject=subject,
            timestamp=NOW - timedelta(days=age_days),
        )

    return _make


@pytest.fixture
def store() -> FakeStore:
    """An empty fake mail store."""
    return FakeStore()


@pytest.fixture
def store_factory():
    """The FakeStore class, for tests that need several or pre-filled stores."""
    return FakeStore


@pytest.fixture
def headers():
    """The header block builder."""
    return header_block
