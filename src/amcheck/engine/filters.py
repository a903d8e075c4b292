"""Filter predicate evaluation.

A list of filter conditions is an AND: every ``Match`` must be found and no
``UnMatch`` may be found. The empty list matches everything.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from amcheck.engine.ports import ContentOracle
from amcheck.exceptions import BodyDecodeError, BodyFetchError
from amcheck.models import FilterCondition, Item, MatchField

logger = structlog.get_logger()


def decode_body(item: Item, raw: bytes) -> str:
    """Decode a fetched body as UTF-8.

    Raises:
        BodyDecodeError: If the body is not valid UTF-8.
    """
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise BodyDecodeError(
            f"Message body was not valid utf-8 (uid {item.uid}, from {item.sender!r}, "
            f"subject {item.subject!r}): {exc}"
        ) from exc


def fetch_texts(oracle: ContentOracle, items: Sequence[Item]) -> dict[int, str]:
    """Fetch and decode the bodies of ``items`` in one batch.

    Raises:
        BodyFetchError: If any requested body is missing from the reply.
        BodyDecodeError: If a body is not valid UTF-8.
    """
    bodies = oracle.fetch_bodies([item.uid for item in items])
    missing = [item.uid for item in items if item.uid not in bodies]
    if missing:
        raise BodyFetchError(
            f"Requested {len(items)} bodies but {len(missing)} were missing: {missing}"
        )
    return {item.uid: decode_body(item, bodies[item.uid]) for item in items}


def _field_text(field: MatchField, item: Item, oracle: ContentOracle | None) -> str:
    if field is MatchField.SUBJECT:
        return item.subject
    if field is MatchField.FROM:
        return item.sender

    # Body conditions cost one round-trip per mail; prefer body nodes for bulk work.
    if oracle is None:
        raise ValueError("A body condition needs a content oracle")
    return fetch_texts(oracle, [item])[item.uid]


def condition_holds(condition: FilterCondition, item: Item, oracle: ContentOracle | None = None) -> bool:
    """Return whether the pattern of ``condition`` is found, ignoring polarity."""
    text = _field_text(condition.field, item, oracle)
    found = condition.pattern.search(text) is not None
    if not found and condition.field is MatchField.BODY:
        logger.debug("body_not_matched", uid=item.uid, pattern=condition.pattern.pattern)
    return found


def matches(
    conditions: Sequence[FilterCondition],
    item: Item,
    oracle: ContentOracle | None = None,
) -> bool:
    """Return True if ``item`` satisfies every condition in ``conditions``.

    Args:
        conditions: Conditions checked in order; the first failure short-circuits.
        item: The mail to test.
        oracle: Needed only when a condition targets the body.
    """
    for condition in conditions:
        if condition_holds(condition, item, oracle) == condition.negated:
            return False

    logger.debug(
        "mail_matched",
        uid=item.uid,
        sender=item.sender,
        subject=item.subject,
        conditions=len(conditions),
    )
    return True
