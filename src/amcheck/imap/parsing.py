"""Helpers for parsing IMAP header blocks into internal models."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.errors import HeaderParseError
from email.header import Header, decode_header, make_header
from email.parser import HeaderParser
from email.policy import compat32
from email.utils import getaddresses, parsedate_to_datetime

import structlog

from amcheck.exceptions import MailFormatError
from amcheck.models import Item

logger = structlog.get_logger()

HEADER_FIELDS = ("FROM", "SUBJECT", "DATE")

_FOLD = re.compile(r"\r?\n(?=[ \t])")


def _text(value: str | Header | None, what: str) -> str:
    if value is None:
        raise MailFormatError(f"No {what} found")
    # compat32 hands back a Header instead of a str for raw 8-bit values.
    if not isinstance(value, str):
        raise MailFormatError(f"Message {what} was not valid utf-8")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise MailFormatError(f"Message {what} was not valid utf-8") from exc
    return _FOLD.sub("", value)


def decode_words(value: str) -> str:
    """Decode RFC 2047 encoded words, e.g. ``=?utf-8?q?Caf=C3=A9?=``."""
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeDecodeError, ValueError) as exc:
        raise MailFormatError(f"Could not decode header {value!r}") from exc


def address_to_string(name: str, address: str) -> str:
    """Render one address as ``"Name" <local@host>``."""
    local, sep, host = address.rpartition("@")
    if not sep or not local:
        raise MailFormatError("Address Local Part Missing")
    if not host:
        raise MailFormatError("Address Host Missing")
    return f'"{decode_words(name)}" <{local}@{host}>'


def addresses_to_string(value: str | None) -> str:
    """Render a From header as a comma separated list of addresses.

    Raises:
        MailFormatError: If there is no address or one cannot be rendered.
    """
    pairs = [(name, addr) for name, addr in getaddresses([_text(value, "From")]) if name or addr]
    if not pairs:
        raise MailFormatError("No addresses found")
    return ", ".join(address_to_string(name, addr) for name, addr in pairs)


def parse_date(value: str | None) -> datetime:
    """Parse an RFC 2822 Date header; a ``-0000`` zone is taken as UTC."""
    raw = _text(value, "Date")
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError, OverflowError) as exc:
        raise MailFormatError(f"Date formatting error: {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def header_to_item(uid: int, raw: bytes) -> Item | None:
    """Convert a fetched header block to an Item.

    Args:
        uid: UID the header was fetched for.
        raw: The ``BODY[HEADER.FIELDS (FROM SUBJECT DATE)]`` bytes.

    Returns:
        The Item, or None if the mail is unusable. Unusable mails are reported
        with a single warning that includes whatever could be parsed.
    """
    message = HeaderParser(policy=compat32).parsestr(raw.decode("utf-8", errors="surrogateescape"))

    fields: dict[str, object] = {}
    errors: dict[str, str] = {}
    parsers = {
        "sender": lambda: addresses_to_string(message.get("From")),
        "subject": lambda: decode_words(_text(message.get("Subject"), "Subject")),
        "timestamp": lambda: parse_date(message.get("Date")),
    }
    for name, parse in parsers.items():
        try:
            fields[name] = parse()
        except MailFormatError as exc:
            errors[name] = str(exc)

    if errors:
        logger.warning(
            "bad_email_skipped",
            uid=uid,
            sender=errors.get("sender", fields.get("sender")),
            subject=errors.get("subject", fields.get("subject")),
            date=errors.get("timestamp", str(fields.get("timestamp"))),
        )
        return None

    return Item(uid=uid, **fields)
