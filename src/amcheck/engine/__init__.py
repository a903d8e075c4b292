"""Rule evaluation engine.

This package contains the filter predicates, the decision tree evaluator,
the terminal actions and the two selection phases built on them.
"""

from .actions import ActionExecutor, ActionResult
from .evaluator import TreeEvaluator
from .filters import matches
from .selector import CheckReport, check_storage, move_to_storage

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "CheckReport",
    "TreeEvaluator",
    "check_storage",
    "matches",
    "move_to_storage",
]
