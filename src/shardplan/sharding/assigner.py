"""Locality-aware greedy assignment of components to shards.

Components arrive heaviest first (see :mod:`shardplan.sharding.graph`) and
are placed one at a time. Each placement prefers the shard that already
holds most of the component's features, then the least loaded shard, then
the smallest, then the lowest index. A soft size cap keeps shards within
``ceil(total_items / shard_count)`` items; when nothing fits, every shard is
considered so no item is ever dropped.

This is a single greedy pass, not an optimal bin packing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from shardplan.errors import InvalidShardCountError, InvalidShardIndexError
from shardplan.sharding.graph import (
    ComponentNode,
    canonical_items,
    ordered_components,
    size_ceiling,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class AssignmentStrategy(Enum):
    """How the assigner ranks candidate shards."""

    LOCALITY = "locality"
    """Always rank by ``(-overlap, load, size, index)``."""

    BALANCED = "balanced"
    """Prefer locality while a shard stays under the target load, then balance load."""


@dataclass
class _ShardState:
    """Running totals for one shard during a pass."""

    features: set[str] = field(default_factory=set)
    load: int = 0
    size: int = 0


def _overlap(features: Sequence[str], shard_features: set[str]) -> int:
    return sum(1 for feature in features if feature in shard_features)


def _validate_shard_count(shard_count: int) -> None:
    if isinstance(shard_count, bool) or not isinstance(shard_count, int) or shard_count < 1:
        raise InvalidShardCountError(shard_count)


def _eligible_indices(
    shards: list[_ShardState], component: ComponentNode, max_shard_size: int
) -> list[int]:
    eligible = [
        index
        for index, state in enumerate(shards)
        if state.size + component.size <= max_shard_size
    ]
    if eligible:
        return eligible
    logger.debug(
        "No shard has room for %s (size %d, cap %d); considering all shards",
        component.representative,
        component.size,
        max_shard_size,
    )
    return list(range(len(shards)))


def _locality_choice(
    shards: list[_ShardState], component: ComponentNode, candidates: list[int]
) -> int:
    return min(
        candidates,
        key=lambda index: (
            -_overlap(component.features, shards[index].features),
            shards[index].load,
            shards[index].size,
            index,
        ),
    )


def _balanced_choice(
    shards: list[_ShardState],
    component: ComponentNode,
    candidates: list[int],
    target_load: float,
) -> int:
    under_target = [
        index for index in candidates if shards[index].load + component.weight <= target_load
    ]
    if under_target:
        return _locality_choice(shards, component, under_target)
    return min(
        candidates,
        key=lambda index: (
            shards[index].load + component.weight,
            -_overlap(component.features, shards[index].features),
            shards[index].size,
            index,
        ),
    )


# ── Public API ────────────────────────────────────────────────────


def assign(
    components: Sequence[ComponentNode],
    shard_count: int,
    *,
    strategy: AssignmentStrategy = AssignmentStrategy.LOCALITY,
) -> dict[str, int]:
    """Place *components*, in order, onto ``shard_count`` shards.

    Args:
        components: Components in placement order.
        shard_count: Number of shards (at least 1).
        strategy: Candidate ranking; see :class:`AssignmentStrategy`.

    Returns:
        Mapping of item name to zero-based shard index. Members of one
        component always share an index.

    Raises:
        InvalidShardCountError: If *shard_count* is below 1.
    """
    _validate_shard_count(shard_count)

    shards = [_ShardState() for _ in range(shard_count)]
    total_items = sum(component.size for component in components)
    max_shard_size = size_ceiling(total_items, shard_count)
    target_load = sum(component.weight for component in components) / shard_count

    assignment: dict[str, int] = {}
    for component in components:
        candidates = _eligible_indices(shards, component, max_shard_size)
        if strategy is AssignmentStrategy.BALANCED:
            chosen = _balanced_choice(shards, component, candidates, target_load)
        else:
            chosen = _locality_choice(shards, component, candidates)

        for member in component.members:
            assignment[member] = chosen

        state = shards[chosen]
        state.features.update(component.features)
        state.load += component.weight
        state.size += component.size

    return assignment


class ShardAssigner:
    """Assign named items to shards for a fixed shard count.

    Inputs are canonicalized (de-duplicated and sorted) first, so reordered
    or repeated item lists produce the same assignment. The full assignment
    for the most recent item set is kept and reused for per-shard reads;
    asking for a different set replaces it.
    """

    def __init__(
        self,
        shard_count: int,
        features_by_item: Mapping[str, Iterable[str]] | None = None,
        adjacency_graph: Mapping[str, Iterable[str]] | None = None,
        *,
        strategy: AssignmentStrategy = AssignmentStrategy.LOCALITY,
    ) -> None:
        _validate_shard_count(shard_count)
        self.shard_count = shard_count
        self.strategy = strategy
        self._features_by_item = features_by_item or {}
        self._adjacency_graph = adjacency_graph or {}
        self._cached_key: tuple[str, ...] | None = None
        self._cached: dict[str, int] = {}

    def assignments(self, item_ids: Iterable[str]) -> dict[str, int]:
        """Return the zero-based shard index of every distinct item."""
        key = tuple(canonical_items(item_ids))
        if key != self._cached_key:
            components = ordered_components(
                key, self._adjacency_graph, self._features_by_item, self.shard_count
            )
            self._cached = assign(components, self.shard_count, strategy=self.strategy)
            self._cached_key = key
        return dict(self._cached)

    def shards(self, item_ids: Iterable[str]) -> list[list[str]]:
        """Return the members of every shard, in shard order."""
        canonical = canonical_items(item_ids)
        assignment = self.assignments(canonical)
        result: list[list[str]] = [[] for _ in range(self.shard_count)]
        for item in canonical:
            result[assignment[item]].append(item)
        return result

    def shard_items(self, item_ids: Iterable[str], shard_index: int) -> list[str]:
        """Return the items of the one-based *shard_index*, sorted.

        Raises:
            InvalidShardIndexError: If *shard_index* is outside ``[1, shard_count]``.
        """
        if (
            isinstance(shard_index, bool)
            or not isinstance(shard_index, int)
            or not 1 <= shard_index <= self.shard_count
        ):
            raise InvalidShardIndexError(shard_index, self.shard_count)
        return self.shards(item_ids)[shard_index - 1]

    def shard_members(
        self,
        objects: Iterable[_T],
        shard_index: int,
        key: Callable[[_T], str],
    ) -> list[_T]:
        """Shard arbitrary objects by the name *key* returns.

        Objects keep their input order; only the first object per name is
        returned.
        """
        objects = list(objects)
        selected = set(self.shard_items([key(obj) for obj in objects], shard_index))
        seen: set[str] = set()
        result: list[_T] = []
        for obj in objects:
            name = key(obj)
            if name in selected and name not in seen:
                seen.add(name)
                result.append(obj)
        return result
