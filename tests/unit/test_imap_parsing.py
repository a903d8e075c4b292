"""Unit tests for IMAP header parsing helpers."""

from datetime import datetime, timedelta, timezone

import pytest
from structlog.testing import capture_logs

from amcheck.exceptions import MailFormatError
from amcheck.imap.parsing import addresses_to_string, header_to_item, parse_date


def test_header_to_item_parses_basic_fields(headers) -> None:
    raw = headers(
        "Cron Daemon <root@host.example>",
        "Cron <root@host> backup",
        "Fri, 15 Mar 2024 10:00:00 +0100",
    )

    item = header_to_item(17, raw)

    assert item is not None
    assert item.uid == 17
    assert item.sender == '"Cron Daemon" <root@host.example>'
    assert item.subject == "Cron <root@host> backup"
    assert item.timestamp == datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)
    assert item.timestamp.utcoffset() == timedelta(hours=1)


def test_multiple_addresses_are_joined(headers) -> None:
    raw = headers("a@example.com, Bob <b@example.com>", "s", "Fri, 15 Mar 2024 10:00:00 +0000")

    item = header_to_item(1, raw)

    assert item is not None
    assert item.sender == '"" <a@example.com>, "Bob" <b@example.com>'


def test_encoded_words_are_decoded(headers) -> None:
    raw = headers(
        "=?utf-8?q?Caf=C3=A9?= <cafe@example.com>",
        "=?utf-8?b?w5xiZXJ3YWNodW5n?=",
        "Fri, 15 Mar 2024 10:00:00 +0000",
    )

    item = header_to_item(1, raw)

    assert item is not None
    assert item.sender == '"Café" <cafe@example.com>'
    assert item.subject == "Überwachung"


def test_folded_subject_is_unfolded() -> None:
    raw = (
        b"From: root@example.com\r\n"
        b"Subject: a very long\r\n subject line\r\n"
        b"Date: Fri, 15 Mar 2024 10:00:00 +0000\r\n\r\n"
    )

    item = header_to_item(1, raw)

    assert item is not None
    assert item.subject == "a very long subject line"


@pytest.mark.parametrize(
    "raw",
    [
        b"Subject: no sender\r\nDate: Fri, 15 Mar 2024 10:00:00 +0000\r\n\r\n",
        b"From: root@example.com\r\nDate: Fri, 15 Mar 2024 10:00:00 +0000\r\n\r\n",
        b"From: root@example.com\r\nSubject: \xff\xfe\r\nDate: Fri, 15 Mar 2024 10:00:00 +0000\r\n\r\n",
        b'From: "Ren\xe9" <r@example.com>\r\nSubject: s\r\nDate: Fri, 15 Mar 2024 10:00:00 +0000\r\n\r\n',
        b"From: root@example.com\r\nSubject: s\r\nDate: Fri, 15 M\xe4r 2024 10:00:00 +0000\r\n\r\n",
        b"From: root@example.com\r\nSubject: no date\r\n\r\n",
        b"From: root@example.com\r\nSubject: bad date\r\nDate: yesterday-ish\r\n\r\n",
        b"From: undisclosed-recipients:;\r\nSubject: s\r\nDate: Fri, 15 Mar 2024 10:00:00 +0000\r\n\r\n",
    ],
    ids=[
        "no-from",
        "no-subject",
        "subject-not-utf8",
        "from-not-utf8",
        "date-not-utf8",
        "no-date",
        "bad-date",
        "no-addresses",
    ],
)
def test_malformed_mail_is_dropped_with_one_warning(raw: bytes) -> None:
    with capture_logs() as logs:
        item = header_to_item(99, raw)

    assert item is None
    assert len(logs) == 1
    assert logs[0]["event"] == "bad_email_skipped"
    assert logs[0]["log_level"] == "warning"
    assert logs[0]["uid"] == 99


def test_drop_warning_keeps_salvaged_fields() -> None:
    raw = b"From: root@example.com\r\nSubject: kept\r\n\r\n"

    with capture_logs() as logs:
        header_to_item(5, raw)

    assert logs[0]["subject"] == "kept"
    assert logs[0]["sender"] == '"" <root@example.com>'
    assert "Date" in logs[0]["date"]


def test_date_without_zone_is_utc() -> None:
    parsed = parse_date("Fri, 15 Mar 2024 10:00:00 -0000")

    assert parsed.tzinfo is not None
    assert parsed.utcoffset() == timedelta(0)


def test_address_without_host_is_rejected() -> None:
    with pytest.raises(MailFormatError):
        addresses_to_string("root")


@pytest.mark.parametrize(
    ("raw", "field", "reason"),
    [
        (b"From: root@example.com\r\nSubject: caf\xe9\r\nDate: x\r\n\r\n", "subject", "Subject"),
        (b'From: "Ren\xe9" <r@example.com>\r\nSubject: s\r\nDate: x\r\n\r\n', "sender", "From"),
    ],
)
def test_eight_bit_header_is_reported_as_not_utf8(raw: bytes, field: str, reason: str) -> None:
    with capture_logs() as logs:
        header_to_item(3, raw)

    assert logs[0][field] == f"Message {reason} was not valid utf-8"
