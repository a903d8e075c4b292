"""Recursive decision tree evaluation.

Split nodes partition the working set into two disjoint sides, keeping the
incoming order within each side. A side is only descended into when it is
non-empty, unless the node's empty policy names it: that is how a tree says
"alert even though nothing landed here". Count nodes never split; they hand
the whole set to exactly one child. Action nodes always fire, even for an
empty set.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

import structlog

from amcheck.engine.actions import ActionExecutor
from amcheck.engine.filters import fetch_texts, matches
from amcheck.engine.ports import ContentOracle
from amcheck.exceptions import DateSubtractionError
from amcheck.models import (
    ActionNode,
    BodyAllNode,
    BodyAnyNode,
    BodyRegexNode,
    CountNode,
    DateNode,
    DecisionTree,
    EmptyNode,
    EmptyPolicy,
    Item,
    MatchNode,
)

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Return the current local time with its UTC offset."""
    return datetime.now().astimezone()


def days_ago(now: datetime, days: int) -> datetime:
    """Return ``now`` minus ``days`` days.

    Raises:
        DateSubtractionError: If the result is not representable.
    """
    try:
        return now - timedelta(days=days)
    except OverflowError as exc:
        raise DateSubtractionError(days) from exc


class TreeEvaluator:
    """Walks a decision tree depth-first against a working set."""

    def __init__(
        self,
        oracle: ContentOracle,
        executor: ActionExecutor,
        clock: Clock = local_now,
    ) -> None:
        """Initialize the evaluator.

        Args:
            oracle: Answers body conditions.
            executor: Runs the actions at the leaves.
            clock: Source of "now" for date nodes.
        """
        self.oracle = oracle
        self.executor = executor
        self.clock = clock

    def evaluate(self, tree: DecisionTree, items: Sequence[Item], path: str = "root") -> None:
        """Evaluate ``tree`` against ``items``.

        Args:
            tree: The (sub)tree to run.
            items: The working set reaching this node.
            path: Dotted location of the node, used in log lines.

        Raises:
            AmcheckError: On any run-level failure below this node.
        """
        if isinstance(tree, EmptyNode):
            return

        if isinstance(tree, ActionNode):
            logger.debug("action_node_reached", path=path, action=tree.action.value, count=len(items))
            self.executor.execute(tree.action, items)
            return

        if isinstance(tree, CountNode):
            self._evaluate_count(tree, items, path)
            return

        if isinstance(tree, MatchNode):
            side_a, side_b = _partition(items, lambda item: matches(tree.matchers, item, self.oracle))
        elif isinstance(tree, DateNode):
            threshold = days_ago(self.clock(), tree.days)
            side_a, side_b = _partition(items, lambda item: item.timestamp < threshold)
        elif isinstance(tree, (BodyAnyNode, BodyAllNode)):
            if not tree.strings:
                logger.warning("body_node_without_strings", path=path, kind=tree.kind)
                return
            found: set[int] = set()
            if items:
                found = self.oracle.search_bodies([i.uid for i in items], tree.text_condition())
            side_a, side_b = _partition(items, lambda item: item.uid in found)
        elif isinstance(tree, BodyRegexNode):
            side_a, side_b = self._split_body_regex(tree, items)
        else:
            raise TypeError(f"Unknown decision tree node: {type(tree).__name__}")

        logger.debug(
            "node_partitioned",
            path=path,
            kind=tree.kind,
            side_a=len(side_a),
            side_b=len(side_b),
        )

        child_a, child_b = tree.children()
        if side_a or tree.empty_policy is EmptyPolicy.SIDE_A:
            self.evaluate(child_a, side_a, f"{path}.{tree.kind}.a")
        if side_b or tree.empty_policy is EmptyPolicy.SIDE_B:
            self.evaluate(child_b, side_b, f"{path}.{tree.kind}.b")

    def _evaluate_count(self, tree: CountNode, items: Sequence[Item], path: str) -> None:
        size = len(items)
        if size > tree.count:
            branch, child = "greater", tree.greater
        elif size < tree.count:
            branch, child = "less", tree.less
        else:
            branch, child = "equal", tree.equal

        logger.debug("count_node_dispatched", path=path, count=size, threshold=tree.count, branch=branch)
        self.evaluate(child, items, f"{path}.count.{branch}")

    def _split_body_regex(
        self, tree: BodyRegexNode, items: Sequence[Item]
    ) -> tuple[list[Item], list[Item]]:
        if not items:
            return [], []

        texts = fetch_texts(self.oracle, items)
        return _partition(items, lambda item: tree.pattern.search(texts[item.uid]) is not None)


def _partition(
    items: Sequence[Item], predicate: Callable[[Item], bool]
) -> tuple[list[Item], list[Item]]:
    matched: list[Item] = []
    unmatched: list[Item] = []
    for item in items:
        (matched if predicate(item) else unmatched).append(item)
    return matched, unmatched
