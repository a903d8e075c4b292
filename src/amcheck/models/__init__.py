"""Data models for amcheck.

This package contains the Pydantic models for mail items and rule
configuration.
"""

from amcheck.models.item import Item
from amcheck.models.rules import (
    ActionKind,
    ActionNode,
    BodyAllNode,
    BodyAnyNode,
    BodyRegexNode,
    CountNode,
    DateNode,
    DecisionTree,
    EmptyNode,
    EmptyPolicy,
    FilterCondition,
    Handler,
    Match,
    MatchField,
    MatchNode,
    TextCondition,
    UnMatch,
)

__all__ = [
    "ActionKind",
    "ActionNode",
    "BodyAllNode",
    "BodyAnyNode",
    "BodyRegexNode",
    "CountNode",
    "DateNode",
    "DecisionTree",
    "EmptyNode",
    "EmptyPolicy",
    "FilterCondition",
    "Handler",
    "Item",
    "Match",
    "MatchField",
    "MatchNode",
    "TextCondition",
    "UnMatch",
]
