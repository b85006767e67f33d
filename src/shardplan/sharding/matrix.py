"""Runner matrix generation.

Composes the shard count calculation, dependency-aware assignment and row
expansion for every active runner. Each runner is planned from its own
load and item slice only, so runners never influence one another.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from shardplan.errors import InvalidShardConfigError, InvalidShardIndexError, ShardingError
from shardplan.models.runner import MatrixRow, Runner
from shardplan.sharding.assigner import AssignmentStrategy, ShardAssigner
from shardplan.sharding.expander import ShardKeys, expand
from shardplan.sharding.graph import canonical_items
from shardplan.sharding.shard_count import ShardConfig, shard_count

logger = logging.getLogger(__name__)


@dataclass
class RunnerShardPlan:
    """Shard layout computed for one runner."""

    runner: Runner
    """The runner being planned."""

    load: int
    """Load measurement the shard count was derived from."""

    shard_count: int
    """Number of shards the runner is split into."""

    shards: list[list[str]] = field(default_factory=list)
    """Item names per shard; ``shards[i]`` is shard ``i + 1``."""

    def shard(self, shard_index: int) -> list[str]:
        """Return the items of the one-based *shard_index*."""
        if not 1 <= shard_index <= self.shard_count:
            raise InvalidShardIndexError(shard_index, self.shard_count)
        return self.shards[shard_index - 1]


def _coerce_runner(runner: Runner | tuple[str, Mapping[str, Any]]) -> Runner:
    if isinstance(runner, Runner):
        return runner
    return Runner.from_pair(runner)


class RunnerMatrix:
    """Build CI matrix rows for a set of active runners.

    Args:
        active_runners: Ordered runners (or ``(runner_id, spec)`` pairs).
        item_names: Items in scope for the job.
        load_by_runner: Load per runner id. Runners missing here use the
            size of their item slice.
        items_by_runner: Optional per-runner compatible item slice. Runners
            missing here see every item in *item_names*.
        dependencies: Item name to the item names it depends on.
        features: Item name to its locality tags.
        config: Shard count parameters.
        keys: Preset pair of shard field names.
        shard_count_key: Overrides the count field name from *keys*.
        shard_index_key: Overrides the index field name from *keys*.
        sharded: When False, rows are the bare runner specs.
        omit_single_shard_keys: Drop the shard fields for single-shard runners.
        strategy: Shard ranking used by the assigner.
    """

    def __init__(
        self,
        active_runners: Iterable[Runner | tuple[str, Mapping[str, Any]]],
        item_names: Iterable[str] = (),
        *,
        load_by_runner: Mapping[str, int] | None = None,
        items_by_runner: Mapping[str, Iterable[str]] | None = None,
        dependencies: Mapping[str, Iterable[str]] | None = None,
        features: Mapping[str, Iterable[str]] | None = None,
        config: ShardConfig | None = None,
        keys: ShardKeys = ShardKeys.SHARD,
        shard_count_key: str | None = None,
        shard_index_key: str | None = None,
        sharded: bool = True,
        omit_single_shard_keys: bool = False,
        strategy: AssignmentStrategy = AssignmentStrategy.LOCALITY,
    ) -> None:
        self.runners: list[Runner] = [_coerce_runner(runner) for runner in active_runners]
        seen: set[str] = set()
        for runner in self.runners:
            if runner.runner_id in seen:
                msg = f"duplicate runner id: {runner.runner_id}"
                raise ShardingError(msg)
            seen.add(runner.runner_id)

        self.shard_count_key = shard_count_key or keys.count_key
        self.shard_index_key = shard_index_key or keys.index_key
        if self.shard_count_key == self.shard_index_key:
            raise InvalidShardConfigError(
                "shard_index_key",
                f"shard_count_key and shard_index_key must differ (both: {self.shard_count_key})",
            )

        self.item_names = canonical_items(item_names)
        self.load_by_runner = dict(load_by_runner or {})
        self.items_by_runner = {
            runner_id: canonical_items(items)
            for runner_id, items in (items_by_runner or {}).items()
        }
        self.dependencies = dependencies or {}
        self.features = features or {}
        self.config = config or ShardConfig()
        self.sharded = sharded
        self.omit_single_shard_keys = omit_single_shard_keys
        self.strategy = strategy

    def runner_items(self, runner: Runner) -> list[str]:
        """Return the items *runner* can execute."""
        return self.items_by_runner.get(runner.runner_id, self.item_names)

    def runner_load(self, runner: Runner) -> int:
        """Return the load measurement for *runner*."""
        if runner.runner_id in self.load_by_runner:
            return self.load_by_runner[runner.runner_id]
        return len(self.runner_items(runner))

    def runner_shard_count(self, runner: Runner) -> int:
        """Return the number of shards *runner* is split into."""
        return shard_count(self.runner_load(runner), self.config)

    def plan(self, runner: Runner) -> RunnerShardPlan:
        """Compute the shard layout for one runner."""
        load = self.runner_load(runner)
        count = self.runner_shard_count(runner)
        assigner = ShardAssigner(
            count,
            features_by_item=self.features,
            adjacency_graph=self.dependencies,
            strategy=self.strategy,
        )
        shards = assigner.shards(self.runner_items(runner))
        logger.debug("Runner %s: load %d, %d shard(s)", runner.runner_id, load, count)
        return RunnerShardPlan(runner=runner, load=load, shard_count=count, shards=shards)

    def plans(self) -> list[RunnerShardPlan]:
        """Compute the shard layout of every runner, in runner order."""
        return [self.plan(runner) for runner in self.runners]

    def rows(self) -> list[MatrixRow]:
        """Return the flattened matrix rows for all runners.

        Only shard counts are computed; use :meth:`plans` for item membership.
        """
        if not self.sharded:
            return [runner.spec_dict() for runner in self.runners]

        rows: list[MatrixRow] = []
        for runner in self.runners:
            count = self.runner_shard_count(runner)
            if count == 1 and self.omit_single_shard_keys:
                rows.append(runner.spec_dict())
                continue
            rows.extend(expand(runner.spec, count, self.shard_count_key, self.shard_index_key))
        logger.info("Generated %d matrix row(s) for %d runner(s)", len(rows), len(self.runners))
        return rows


def build_runner_matrix(
    active_runners: Sequence[Runner | tuple[str, Mapping[str, Any]]],
    load_by_runner: Mapping[str, int],
    config: ShardConfig,
    shard_count_key: str = ShardKeys.SHARD.count_key,
    shard_index_key: str = ShardKeys.SHARD.index_key,
) -> list[MatrixRow]:
    """Expand each runner by the shard count its load calls for."""
    matrix = RunnerMatrix(
        active_runners,
        load_by_runner=load_by_runner,
        config=config,
        shard_count_key=shard_count_key,
        shard_index_key=shard_index_key,
    )
    return matrix.rows()
