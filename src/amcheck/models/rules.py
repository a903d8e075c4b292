"""Rule configuration models: filter conditions, decision trees and handlers.

Everything here is loaded once per run (usually from the TOML settings file)
and never mutated afterwards. Trees are a closed tagged union keyed on
``kind``; every splitting node owns its two children outright.

A tree in TOML looks like::

    [[handlers]]
    name = "cron"
    filters = [{ kind = "match", field = "from", pattern = "root@" }]

    [handlers.tree]
    kind = "count"
    count = 1
    greater = { kind = "action", action = "success" }
    equal = { kind = "action", action = "success" }
    less = { kind = "action", action = "alert" }
"""

from __future__ import annotations

from enum import Enum
from re import Pattern
from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatchField(str, Enum):
    """The part of a mail a filter condition looks at."""

    SUBJECT = "subject"
    FROM = "from"
    BODY = "body"


class ActionKind(str, Enum):
    """What a terminal node does with the mails that reach it."""

    ALERT = "alert"
    DELETE = "delete"
    SUCCESS = "success"
    NOTHING = "nothing"


class EmptyPolicy(str, Enum):
    """Whether a splitting node still visits a child whose subset is empty.

    Side A is the first child of a node (``matched``/``older``), side B the
    second (``unmatched``/``younger``).
    """

    NONE = "none"
    SIDE_A = "side_a"
    SIDE_B = "side_b"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Match(_Frozen):
    """Satisfied when ``pattern`` is found in ``field``."""

    negated: ClassVar[bool] = False

    kind: Literal["match"] = "match"
    field: MatchField
    pattern: Pattern[str]


class UnMatch(_Frozen):
    """Satisfied when ``pattern`` is not found in ``field``."""

    negated: ClassVar[bool] = True

    kind: Literal["unmatch"] = "unmatch"
    field: MatchField
    pattern: Pattern[str]


FilterCondition = Annotated[Union[Match, UnMatch], Field(discriminator="kind")]


class TextCondition(_Frozen):
    """A body condition the store can evaluate server-side."""

    mode: Literal["any", "all"]
    strings: list[str] = Field(default_factory=list)


class EmptyNode(_Frozen):
    kind: Literal["empty"] = "empty"


class ActionNode(_Frozen):
    kind: Literal["action"] = "action"
    action: ActionKind


class _SplitNode(_Frozen):
    """A node that partitions its working set into two sides."""

    empty_policy: EmptyPolicy = EmptyPolicy.NONE

    def children(self) -> tuple[DecisionTree, DecisionTree]:
        """Return (side A, side B)."""
        raise NotImplementedError


class MatchNode(_SplitNode):
    kind: Literal["match"] = "match"
    matchers: list[FilterCondition] = Field(default_factory=list)
    matched: DecisionTree = Field(default_factory=EmptyNode)
    unmatched: DecisionTree = Field(default_factory=EmptyNode)

    def children(self) -> tuple[DecisionTree, DecisionTree]:
        return self.matched, self.unmatched


class DateNode(_SplitNode):
    """Mails strictly older than ``days`` go to ``older``, the rest to ``younger``."""

    kind: Literal["date"] = "date"
    days: int
    older: DecisionTree = Field(default_factory=EmptyNode)
    younger: DecisionTree = Field(default_factory=EmptyNode)

    def children(self) -> tuple[DecisionTree, DecisionTree]:
        return self.older, self.younger


class CountNode(_Frozen):
    """Routes the whole working set by its size; never splits it."""

    kind: Literal["count"] = "count"
    count: int
    greater: DecisionTree = Field(default_factory=EmptyNode)
    less: DecisionTree = Field(default_factory=EmptyNode)
    equal: DecisionTree = Field(default_factory=EmptyNode)


class _BodySearchNode(_SplitNode):
    """A node whose body test the store runs server-side."""

    mode: ClassVar[Literal["any", "all"]]

    strings: list[str] = Field(default_factory=list)
    matched: DecisionTree = Field(default_factory=EmptyNode)
    unmatched: DecisionTree = Field(default_factory=EmptyNode)

    @field_validator("strings")
    @classmethod
    def _check_ascii(cls, strings: list[str]) -> list[str]:
        # IMAP SEARCH is sent without a CHARSET, which means US-ASCII.
        for s in strings:
            if not s.isascii():
                raise ValueError(f"body search strings must be ASCII: {s!r}")
        return strings

    def children(self) -> tuple[DecisionTree, DecisionTree]:
        return self.matched, self.unmatched

    def text_condition(self) -> TextCondition:
        return TextCondition(mode=self.mode, strings=self.strings)


class BodyAnyNode(_BodySearchNode):
    """Matched when the body contains at least one of ``strings``."""

    mode: ClassVar[Literal["any", "all"]] = "any"

    kind: Literal["body_any"] = "body_any"


class BodyAllNode(_BodySearchNode):
    """Matched when the body contains every one of ``strings``."""

    mode: ClassVar[Literal["any", "all"]] = "all"

    kind: Literal["body_all"] = "body_all"


class BodyRegexNode(_SplitNode):
    """Matched when ``pattern`` is found in the fetched body text."""

    kind: Literal["body_regex"] = "body_regex"
    pattern: Pattern[str]
    matched: DecisionTree = Field(default_factory=EmptyNode)
    unmatched: DecisionTree = Field(default_factory=EmptyNode)

    def children(self) -> tuple[DecisionTree, DecisionTree]:
        return self.matched, self.unmatched


DecisionTree = Annotated[
    Union[
        EmptyNode,
        ActionNode,
        MatchNode,
        DateNode,
        CountNode,
        BodyAnyNode,
        BodyAllNode,
        BodyRegexNode,
    ],
    Field(discriminator="kind"),
]

_TREE_MODELS = (
    MatchNode,
    DateNode,
    CountNode,
    _BodySearchNode,
    BodyAnyNode,
    BodyAllNode,
    BodyRegexNode,
)
for _model in _TREE_MODELS:
    _model.model_rebuild()


class Handler(_Frozen):
    """A named rule-set: a top-level selection plus one decision tree."""

    name: str
    filters: list[FilterCondition] = Field(default_factory=list)
    tree: DecisionTree = Field(default_factory=EmptyNode)
