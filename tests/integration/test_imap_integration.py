"""Integration tests against a live IMAP server.

These run only when AMCHECK_IT_IMAP_SERVER, AMCHECK_IT_LOGIN and
AMCHECK_IT_PASSWORD point at a disposable test account.
"""

import os

import pytest

from amcheck.config import Settings
from amcheck.engine import move_to_storage
from amcheck.engine.selector import load_items
from amcheck.imap import ImapStore

pytestmark = pytest.mark.integration

SERVER = os.environ.get("AMCHECK_IT_IMAP_SERVER")


@pytest.fixture
def live_settings() -> Settings:
    if not SERVER:
        pytest.skip("AMCHECK_IT_IMAP_SERVER is not set")
    return Settings(
        imap_server=SERVER,
        login=os.environ.get("AMCHECK_IT_LOGIN", ""),
        password=os.environ.get("AMCHECK_IT_PASSWORD", ""),
        environment=os.environ.get("AMCHECK_IT_ENVIRONMENT", "test"),
    )


class TestImapIntegration:
    """Read-only checks against a real mailbox."""

    def test_inbox_headers_parse(self, live_settings) -> None:
        with ImapStore(live_settings) as store:
            store.select("INBOX")
            uids = sorted(store.search("ALL"), reverse=True)[:20]
            items = load_items(store, uids)

        assert len(items) <= len(uids)
        assert all(item.timestamp.tzinfo is not None for item in items)

    def test_move_dry_run_leaves_inbox_untouched(self, live_settings) -> None:
        with ImapStore(live_settings) as store:
            store.select("INBOX")
            before = store.search("ALL")
            move_to_storage(store, [], dry_run=True, environment=live_settings.environment)
            after = store.search("ALL")

        assert before == after
