"""Shard count calculation, dependency-aware assignment and matrix expansion."""

from shardplan.sharding.assigner import AssignmentStrategy, ShardAssigner, assign
from shardplan.sharding.expander import ShardKeys, expand
from shardplan.sharding.graph import (
    ComponentNode,
    decompose,
    ordered_components,
    size_ceiling,
    split_if_needed,
)
from shardplan.sharding.matrix import RunnerMatrix, RunnerShardPlan, build_runner_matrix
from shardplan.sharding.shard_count import ShardConfig, shard_count

__all__ = [
    "AssignmentStrategy",
    "ComponentNode",
    "RunnerMatrix",
    "RunnerShardPlan",
    "ShardAssigner",
    "ShardConfig",
    "ShardKeys",
    "assign",
    "build_runner_matrix",
    "decompose",
    "expand",
    "ordered_components",
    "shard_count",
    "size_ceiling",
    "split_if_needed",
]
