"""Terminal actions of a decision tree."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from amcheck.engine.ports import MailMutator
from amcheck.models import ActionKind, Item

logger = structlog.get_logger()


@dataclass(frozen=True)
class ActionResult:
    """Record of one action execution."""

    kind: ActionKind
    count: int
    uids: tuple[int, ...]


@dataclass
class ActionExecutor:
    """Performs the action of a terminal node for one handler.

    Attributes:
        store: Where deletions go.
        handler_name: Name used in every log line and alert.
        dry_run: Report what would happen instead of alerting or deleting.
        alert_detail_limit: Maximum number of mails described per alert.
        results: Every action executed so far, in order.
        deleted: Uids removed from the store by this executor.
    """

    store: MailMutator
    handler_name: str
    dry_run: bool = False
    alert_detail_limit: int = 9
    results: list[ActionResult] = field(default_factory=list)
    deleted: set[int] = field(default_factory=set)

    def execute(self, kind: ActionKind, items: Sequence[Item]) -> None:
        """Run ``kind`` against ``items``.

        An empty ``items`` is meaningful: ``success`` and ``alert`` still
        fire with a count of zero.

        Raises:
            ImapError: If a deletion fails on the server.
        """
        self.results.append(ActionResult(kind, len(items), tuple(i.uid for i in items)))

        if kind is ActionKind.NOTHING:
            logger.debug("action_nothing", handler=self.handler_name, count=len(items))
        elif kind is ActionKind.SUCCESS:
            logger.info("check_passed", handler=self.handler_name, count=len(items))
        elif kind is ActionKind.ALERT:
            self._alert(items)
        elif kind is ActionKind.DELETE:
            self._delete(items)
        else:
            raise ValueError(f"Unsupported action: {kind}")

    def _alert(self, items: Sequence[Item]) -> None:
        if self.dry_run:
            logger.info("alert_suppressed_dry_run", handler=self.handler_name, count=len(items))
            return

        logger.warning("check_failed", handler=self.handler_name, count=len(items))
        for item in items[: self.alert_detail_limit]:
            logger.warning(
                "check_failed_details",
                handler=self.handler_name,
                sender=item.sender,
                subject=item.subject,
                date=item.timestamp.isoformat(),
            )

        omitted = len(items) - self.alert_detail_limit
        if omitted > 0:
            logger.warning(
                "check_failed_details_truncated",
                handler=self.handler_name,
                omitted=omitted,
            )

    def _delete(self, items: Sequence[Item]) -> None:
        if not items:
            return

        uids = [item.uid for item in items]
        if self.dry_run:
            logger.info("delete_skipped_dry_run", handler=self.handler_name, uids=uids)
            return

        logger.info("deleting_mails", handler=self.handler_name, count=len(uids))
        self.store.delete(uids)
        self.deleted.update(uids)
