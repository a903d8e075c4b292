"""The two selection phases: move new mail to storage, then check storage.

Empty filter lists mean different things in the two phases. During ``move``
an empty matcher set is ignored (it would otherwise sweep the whole INBOX
into storage); during ``check`` a handler with no filters selects every
stored mail. Existing configurations rely on both behaviours.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from amcheck.config import Environment
from amcheck.engine.actions import ActionExecutor
from amcheck.engine.evaluator import Clock, TreeEvaluator, days_ago, local_now
from amcheck.engine.filters import matches
from amcheck.engine.ports import MailStore
from amcheck.exceptions import AmcheckError
from amcheck.imap.parsing import header_to_item
from amcheck.models import FilterCondition, Handler, Item

logger = structlog.get_logger()

INBOX = "INBOX"
TEST_SINCE = "01-Jan-2000"

# IMAP dates use English month names whatever the locale.
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass
class CheckReport:
    """Outcome of a check run, per handler.

    ``completed`` handlers ran their whole tree, whatever actions fired;
    an alert is a result, not an error. ``errored`` handlers were cut short
    by a fatal error.
    """

    completed: list[str] = field(default_factory=list)
    errored: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errored


def since_criterion(environment: Environment, days_back: int, clock: Clock = local_now) -> str:
    """Return the SINCE date for the move phase, e.g. ``02-Sep-2023``.

    The test environment statically goes back far enough to cover everything.
    """
    if environment is Environment.TEST:
        return TEST_SINCE
    since = days_ago(clock(), days_back)
    return f"{since.day:02d}-{_MONTHS[since.month - 1]}-{since.year}"


def load_items(store: MailStore, uids: Sequence[int]) -> list[Item]:
    """Fetch headers for ``uids`` and keep the mails that parse.

    The result follows the order of ``uids``.
    """
    headers = store.fetch_headers(uids)
    items: list[Item] = []
    for uid in uids:
        raw = headers.get(uid)
        if raw is None:
            logger.warning("header_missing", uid=uid)
            continue
        item = header_to_item(uid, raw)
        if item is not None:
            logger.debug("mail_loaded", uid=uid, sender=item.sender, subject=item.subject)
            items.append(item)
    return items


def move_to_storage(
    store: MailStore,
    matcher_sets: Sequence[Sequence[FilterCondition]],
    *,
    dry_run: bool = False,
    environment: Environment = Environment.PROD,
    days_back: int = 60,
    storage_mailbox: str = "amcheck_storage",
    clock: Clock = local_now,
) -> int:
    """Move recent INBOX mail matched by any matcher set into storage.

    Returns:
        Number of mails that matched (moved, or would have been in dry-run).

    Raises:
        AmcheckError: If the store fails; nothing is retried.
    """
    store.select(INBOX)

    since = since_criterion(environment, days_back, clock)
    logger.debug("imap_search_string", since=since)
    uids = store.search("SINCE", since)
    items = load_items(store, uids)

    active_sets = [s for s in matcher_sets if s]
    if len(active_sets) != len(matcher_sets):
        logger.debug("empty_matcher_sets_ignored", count=len(matcher_sets) - len(active_sets))

    storables = [
        item.uid
        for item in items
        if any(matches(matcher_set, item, store) for matcher_set in active_sets)
    ]

    if not storables:
        logger.info("no_mails_to_move")
    elif dry_run:
        logger.info("move_skipped_dry_run", count=len(storables))
    else:
        store.ensure_mailbox(storage_mailbox)
        logger.info("moving_mails_to_storage", count=len(storables), mailbox=storage_mailbox)
        store.move(storables, storage_mailbox)

    return len(storables)


def check_storage(
    store: MailStore,
    handlers: Sequence[Handler],
    *,
    dry_run: bool = False,
    storage_mailbox: str = "amcheck_storage",
    fetch_limit: int = 2000,
    alert_detail_limit: int = 9,
    clock: Clock = local_now,
) -> CheckReport:
    """Run every handler against the most recent stored mail.

    A fatal error inside one handler is logged and ends that handler only;
    the others still run.

    Raises:
        AmcheckError: If the storage mailbox cannot be loaded at all.
    """
    store.select(storage_mailbox)

    uids = sorted(store.search("ALL"), reverse=True)
    if len(uids) > fetch_limit:
        logger.debug("imap_search_trimmed", found=len(uids), kept=fetch_limit)
        uids = uids[:fetch_limit]
    items = load_items(store, uids)
    logger.info("storage_loaded", mailbox=storage_mailbox, mails=len(items))

    report = CheckReport()
    for handler in handlers:
        log = logger.bind(handler=handler.name)
        executor = ActionExecutor(
            store,
            handler.name,
            dry_run=dry_run,
            alert_detail_limit=alert_detail_limit,
        )
        evaluator = TreeEvaluator(store, executor, clock)
        try:
            selected = [item for item in items if matches(handler.filters, item, store)]
            log.info("handler_selected", selected=len(selected), total=len(items))
            evaluator.evaluate(handler.tree, selected)
        except AmcheckError as exc:
            log.exception("handler_failed", error=str(exc))
            report.errored.append(handler.name)
        else:
            report.completed.append(handler.name)
        finally:
            # Later handlers must not see mail that is gone from the server.
            if executor.deleted:
                items = [item for item in items if item.uid not in executor.deleted]

    return report
