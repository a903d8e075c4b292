"""IMAP session implementation.

This module provides the mail store the engine talks to. It wraps a single
``imaplib`` connection and addresses every mail by UID, so identifiers stay
valid after a delete action expunges part of the mailbox.

Notes:
    ``imaplib`` is synchronous and the session is not safe for concurrent
    use; the whole run drives it from one thread.
"""

from __future__ import annotations

import imaplib
import re
import ssl
from collections.abc import Callable, Collection, Iterable
from typing import Any

import structlog

from amcheck.config import Environment, Settings
from amcheck.exceptions import AuthenticationError, BodyFetchError, ConfigurationError, ImapError
from amcheck.imap.parsing import HEADER_FIELDS
from amcheck.models import TextCondition

logger = structlog.get_logger()

ConnectionFactory = Callable[..., Any]

_UID = re.compile(rb"\bUID (\d+)")
_EMPTY_LITERAL = re.compile(rb"BODY\[[^\]]*\] (?:\"\"|NIL)")

HEADER_ITEM = f"BODY.PEEK[HEADER.FIELDS ({' '.join(HEADER_FIELDS)})]"
BODY_ITEM = "BODY.PEEK[TEXT]"


def uid_set(uids: Iterable[int]) -> str:
    """Render uids as a compact IMAP sequence set, e.g. ``1:3,7``."""
    ordered = sorted(set(uids))
    if not ordered:
        raise ValueError("An IMAP sequence set cannot be empty")

    ranges: list[str] = []
    start = prev = ordered[0]
    for uid in ordered[1:]:
        if uid == prev + 1:
            prev = uid
            continue
        ranges.append(str(start) if start == prev else f"{start}:{prev}")
        start = prev = uid
    ranges.append(str(start) if start == prev else f"{start}:{prev}")
    return ",".join(ranges)


def quote(value: str) -> str:
    """Quote a string for use in an IMAP command."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_text_query(condition: TextCondition) -> str:
    """Build a SEARCH key for a body condition.

    ``any`` folds the terms with prefix ``OR`` (``OR OR BODY a BODY b BODY c``);
    ``all`` simply juxtaposes them, which IMAP reads as AND.
    """
    if not condition.strings:
        raise ValueError("A body condition needs at least one string")

    terms = [f"BODY {quote(s)}" for s in condition.strings]
    if condition.mode == "any":
        return "OR " * (len(terms) - 1) + " ".join(terms)
    return " ".join(terms)


def parse_search_response(data: list[Any]) -> list[int]:
    """Parse the untagged SEARCH reply into uids."""
    uids: list[int] = []
    for chunk in data:
        if not chunk:
            continue
        if isinstance(chunk, bytes):
            chunk = chunk.decode("ascii", errors="ignore")
        uids.extend(int(token) for token in str(chunk).split() if token.isdigit())
    return uids


def parse_fetch_response(data: list[Any]) -> dict[int, bytes]:
    """Collect the literal of each FETCH reply, keyed by UID.

    ``imaplib`` returns each message as a ``(meta, literal)`` tuple followed by
    a closing ``bytes`` chunk; servers may put ``UID n`` in either.
    """
    result: dict[int, bytes] = {}
    for index, part in enumerate(data):
        if isinstance(part, bytes):
            # Empty bodies come back as a quoted string instead of a literal.
            uid = _UID.search(part)
            if uid is not None and _EMPTY_LITERAL.search(part):
                result[int(uid.group(1))] = b""
            continue
        if not isinstance(part, tuple) or len(part) < 2:
            continue
        meta, literal = part[0], part[1]
        match = _UID.search(meta)
        if match is None and index + 1 < len(data) and isinstance(data[index + 1], bytes):
            match = _UID.search(data[index + 1])
        if match is None:
            raise ImapError(f"FETCH reply without UID: {meta!r}")
        result[int(match.group(1))] = literal
    return result


class ImapStore:
    """IMAP mailbox session.

    Use as a context manager; entering connects and logs in, leaving logs out.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        connection_factory: ConnectionFactory = imaplib.IMAP4_SSL,
    ) -> None:
        """Initialize the store.

        Args:
            settings: Application settings. If None, uses default settings.
            connection_factory: Called as ``factory(host, port, ssl_context=...)``.
        """
        from amcheck.config import get_settings

        self.settings = settings or get_settings()
        self._connection_factory = connection_factory
        self._imap: Any | None = None
        self.selected: str | None = None

    def __enter__(self) -> ImapStore:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.logout()

    def connect(self) -> None:
        """Connect to the server and authenticate.

        Raises:
            ConfigurationError: If no server or login is configured.
            AuthenticationError: If the server refuses the credentials.
            ImapError: If the connection cannot be established.
        """
        if self._imap is not None:
            return

        if not self.settings.imap_server or not self.settings.login:
            raise ConfigurationError("imap_server and login must be configured.")

        context = ssl.create_default_context()
        if self.settings.environment is Environment.TEST:
            # Test servers run on self-signed certificates.
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        logger.info(
            "imap_connecting",
            server=self.settings.imap_server,
            port=self.settings.imap_port,
            environment=self.settings.environment.value,
        )
        try:
            imap = self._connection_factory(
                self.settings.imap_server, self.settings.imap_port, ssl_context=context
            )
        except (OSError, imaplib.IMAP4.error) as exc:
            logger.exception("imap_connect_failed", error=str(exc))
            raise ImapError(f"Could not connect to {self.settings.imap_server}: {exc}") from exc

        if self.settings.log_level == "TRACE":
            imap.debug = 4

        try:
            imap.login(self.settings.login, self.settings.password.get_secret_value())
        except imaplib.IMAP4.error as exc:
            logger.exception("imap_login_failed", login=self.settings.login)
            raise AuthenticationError(f"Can't authenticate as {self.settings.login}: {exc}") from exc

        self._imap = imap
        logger.info("imap_connected", login=self.settings.login)

    def logout(self) -> None:
        """Log out; a session that never connected is left alone."""
        if self._imap is None:
            return
        imap, self._imap = self._imap, None
        self.selected = None
        self._run("LOGOUT", imap.logout)
        logger.info("imap_logged_out")

    def select(self, mailbox: str) -> None:
        """Select ``mailbox`` read-write."""
        self._run("SELECT", self._session().select, quote(mailbox))
        self.selected = mailbox
        logger.debug("mailbox_selected", mailbox=mailbox)

    def search(self, *criteria: str) -> list[int]:
        """Return the uids in the selected mailbox matching ``criteria``."""
        data = self._run("SEARCH", self._session().uid, "SEARCH", None, *criteria)
        uids = parse_search_response(data)
        logger.debug("imap_search", criteria=" ".join(criteria), results=len(uids))
        return uids

    def fetch_headers(self, uids: Collection[int]) -> dict[int, bytes]:
        """Fetch the From, Subject and Date header block of each uid."""
        if not uids:
            return {}
        data = self._run("FETCH", self._session().uid, "FETCH", uid_set(uids), f"(UID {HEADER_ITEM})")
        return parse_fetch_response(data)

    def fetch_bodies(self, uids: Collection[int]) -> dict[int, bytes]:
        """Fetch the raw text of each body without setting ``\\Seen``.

        Raises:
            BodyFetchError: If fewer bodies came back than were requested.
        """
        if not uids:
            return {}
        data = self._run("FETCH", self._session().uid, "FETCH", uid_set(uids), f"(UID {BODY_ITEM})")
        bodies = parse_fetch_response(data)
        if len(bodies) < len(set(uids)):
            raise BodyFetchError(f"Requested {len(set(uids))} bodies, server returned {len(bodies)}")
        return bodies

    def search_bodies(self, uids: Collection[int], condition: TextCondition) -> set[int]:
        """Return the uids among ``uids`` whose body satisfies ``condition``.

        The test runs on the server, so no body is transferred.
        """
        if not uids:
            return set()
        query = build_text_query(condition)
        found = self.search("UID", uid_set(uids), query)
        return set(found) & set(uids)

    def delete(self, uids: Collection[int]) -> None:
        """Flag ``uids`` as deleted and expunge them.

        With UIDPLUS only ``uids`` are expunged. Without it a plain EXPUNGE
        runs, which also removes any other mail already flagged ``\\Deleted``
        in the selected mailbox.
        """
        if not uids:
            return
        imap = self._session()
        seqset = uid_set(uids)
        self._run("STORE", imap.uid, "STORE", seqset, "+FLAGS.SILENT", r"(\Deleted)")
        self._expunge(seqset)
        logger.info("mails_deleted", mailbox=self.selected, count=len(uids))

    def ensure_mailbox(self, mailbox: str) -> None:
        """Create ``mailbox`` unless it already exists."""
        data = self._run("LIST", self._session().list, '""', quote(mailbox))
        if any(data):
            return
        logger.info("mailbox_missing_creating", mailbox=mailbox)
        self._run("CREATE", self._session().create, quote(mailbox))

    def move(self, uids: Collection[int], mailbox: str) -> None:
        """Move ``uids`` out of the selected mailbox into ``mailbox``.

        Falls back to COPY, ``\\Deleted`` and EXPUNGE on servers without MOVE.
        """
        if not uids:
            return
        imap = self._session()
        seqset = uid_set(uids)
        if "MOVE" in getattr(imap, "capabilities", ()):
            self._run("MOVE", imap.uid, "MOVE", seqset, quote(mailbox))
        else:
            self._run("COPY", imap.uid, "COPY", seqset, quote(mailbox))
            self._run("STORE", imap.uid, "STORE", seqset, "+FLAGS.SILENT", r"(\Deleted)")
            self._expunge(seqset)
        logger.info("mails_moved", source=self.selected, target=mailbox, count=len(uids))

    def _expunge(self, seqset: str) -> None:
        imap = self._session()
        if "UIDPLUS" in getattr(imap, "capabilities", ()):
            self._run("EXPUNGE", imap.uid, "EXPUNGE", seqset)
        else:
            self._run("EXPUNGE", imap.expunge)

    def _session(self) -> Any:
        if self._imap is None:
            raise ImapError("IMAP session is not connected. Call ImapStore.connect() first.")
        return self._imap

    def _run(self, command: str, method: Callable[..., Any], *args: Any) -> list[Any]:
        try:
            status, data = method(*args)
        except (OSError, imaplib.IMAP4.error) as exc:
            logger.exception("imap_command_failed", command=command, error=str(exc))
            raise ImapError(f"IMAP {command} failed: {exc}") from exc

        if status not in ("OK", "BYE"):
            detail = " | ".join(
                d.decode("utf-8", errors="replace") if isinstance(d, bytes) else str(d)
                for d in data or []
                if d is not None
            )
            logger.error("imap_command_rejected", command=command, status=status, detail=detail)
            raise ImapError(f"IMAP {command} returned {status}: {detail}")
        return list(data or [])
