"""Epic -> Story -> Task -> Subtask tree and its progress rollup."""

from phaseflow.hierarchy.aggregator import (
    NodeUpdate,
    ProgressAggregator,
    RollupResult,
    apply_leaf_change,
)
from phaseflow.hierarchy.models import WorkNode, WorkTree

__all__ = [
    "NodeUpdate",
    "ProgressAggregator",
    "RollupResult",
    "apply_leaf_change",
    "WorkNode",
    "WorkTree",
]
