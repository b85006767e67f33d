"""Dependency graph decomposition into schedulable components.

Items that depend on each other in a cycle are kept together as one
strongly connected component (SCC) so the assigner can place them on the
same shard. Components are ordered heaviest first, with the representative
name as the final tie-break, so the order never depends on input order.

Oversized components, where a single cycle would hold more items than a
shard is allowed to carry, are broken back into singletons.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

import networkx as nx

from shardplan.errors import InvalidShardCountError

logger = logging.getLogger(__name__)

Lookup = Mapping[str, Iterable[str]] | Callable[[str], Iterable[str]] | None
"""Either a mapping or a function from item name to related names."""

# ── Data models ───────────────────────────────────────────────────


@dataclass(frozen=True)
class ComponentNode:
    """A group of items that is scheduled as one unit."""

    members: tuple[str, ...]
    """Member item names, sorted."""

    representative: str
    """Lexicographically smallest member."""

    features: tuple[str, ...]
    """Sorted unique union of member features."""

    weight: int
    """Sum over members of ``max(feature_count, 1)``."""

    size: int
    """Number of members."""

    member_features: Mapping[str, tuple[str, ...]] = field(
        default_factory=dict, compare=False, repr=False
    )
    """Raw feature list per member, kept so the node can be split later."""


# ── Helpers ───────────────────────────────────────────────────────


def _lookup(source: Lookup, name: str) -> tuple[str, ...]:
    if source is None:
        return ()
    if isinstance(source, Mapping):
        values = source.get(name) or ()
    else:
        values = source(name) or ()
    return tuple(values)


def canonical_items(item_names: Iterable[str]) -> list[str]:
    """De-duplicate and sort item names."""
    return sorted(set(item_names))


def size_ceiling(total_items: int, shard_count: int) -> int:
    """Largest number of items one shard should hold: ``max(ceil(n / k), 1)``."""
    if shard_count < 1:
        raise InvalidShardCountError(shard_count)
    return max(math.ceil(total_items / shard_count), 1)


def build_component_node(
    members: Iterable[str],
    member_features: Mapping[str, tuple[str, ...]],
) -> ComponentNode:
    """Build a :class:`ComponentNode` from member names and their features."""
    sorted_members = tuple(sorted(members))
    own_features = {member: member_features.get(member, ()) for member in sorted_members}
    features = tuple(sorted({f for values in own_features.values() for f in values}))
    weight = sum(max(len(values), 1) for values in own_features.values())
    return ComponentNode(
        members=sorted_members,
        representative=sorted_members[0],
        features=features,
        weight=weight,
        size=len(sorted_members),
        member_features=own_features,
    )


def restricted_adjacency(
    item_names: Iterable[str],
    dependency_lookup: Lookup,
) -> dict[str, list[str]]:
    """Return the in-scope dependency graph.

    Edges pointing outside *item_names* are dropped; each adjacency list is
    de-duplicated and sorted.
    """
    items = canonical_items(item_names)
    in_scope = set(items)
    return {
        item: sorted({dep for dep in _lookup(dependency_lookup, item) if dep in in_scope})
        for item in items
    }


def component_sort_key(component: ComponentNode) -> tuple[int, int, str]:
    """Heaviest first, then most features, then by representative name."""
    return (-component.weight, -len(component.features), component.representative)


# ── Public API ────────────────────────────────────────────────────


def decompose(
    item_names: Iterable[str],
    dependency_lookup: Lookup,
    feature_lookup: Lookup,
) -> list[ComponentNode]:
    """Partition items into strongly connected components.

    Args:
        item_names: Items in scheduling scope (duplicates are ignored).
        dependency_lookup: Item name to the names it depends on.
        feature_lookup: Item name to its locality tags.

    Returns:
        Components sorted by :func:`component_sort_key`.
    """
    adjacency = restricted_adjacency(item_names, dependency_lookup)

    graph: nx.DiGraph = nx.DiGraph()
    graph.add_nodes_from(adjacency)
    graph.add_edges_from((item, dep) for item, deps in adjacency.items() for dep in deps)

    member_features = {item: _lookup(feature_lookup, item) for item in adjacency}
    components = [
        build_component_node(members, member_features)
        for members in nx.strongly_connected_components(graph)
    ]
    components.sort(key=component_sort_key)
    return components


def split_if_needed(component: ComponentNode, max_component_size: int) -> list[ComponentNode]:
    """Break *component* into singletons when it exceeds *max_component_size*.

    Singletons are ordered by ``(-max(feature_count, 1), name)``. Components
    that fit, including every singleton, are returned unchanged.
    """
    if component.size <= max_component_size or component.size == 1:
        return [component]

    logger.debug(
        "Splitting component %s (%d members) above size ceiling %d",
        component.representative,
        component.size,
        max_component_size,
    )
    ordered = sorted(
        component.members,
        key=lambda member: (-max(len(component.member_features.get(member, ())), 1), member),
    )
    return [build_component_node([member], component.member_features) for member in ordered]


def ordered_components(
    item_names: Iterable[str],
    dependency_lookup: Lookup,
    feature_lookup: Lookup,
    shard_count: int,
) -> list[ComponentNode]:
    """Decompose, split oversized components and return the final placement order."""
    items = canonical_items(item_names)
    ceiling = size_ceiling(len(items), shard_count)
    components = [
        piece
        for component in decompose(items, dependency_lookup, feature_lookup)
        for piece in split_if_needed(component, ceiling)
    ]
    components.sort(key=component_sort_key)
    return components
