"""Per-runner shard count calculation."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from shardplan.errors import InvalidShardConfigError, ShardingError

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────

MIN_SHARD_COUNT = 1
"""Every active runner keeps at least this many shards."""

DEFAULT_MAX_RUNNERS_PER_GROUP = 1
"""Sharding is opt-in: a single shard per runner unless configured."""

DEFAULT_MIN_ITEMS_PER_RUNNER_GROUP = 200

DEFAULT_LOAD_FACTOR = 1.0

LOAD_FACTOR_MIN = 0.0
"""Exclusive lower bound for ``load_factor``."""

LOAD_FACTOR_MAX = 1.0
"""Inclusive upper bound for ``load_factor``."""


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def valid_load_factor(value: object) -> bool:
    """Return True when *value* is a number in ``(0, 1]``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return LOAD_FACTOR_MIN < value <= LOAD_FACTOR_MAX


# ── Data models ───────────────────────────────────────────────────


@dataclass(frozen=True)
class ShardConfig:
    """Validated sharding parameters for one matrix.

    Construction fails with :class:`InvalidShardConfigError` instead of
    clamping out-of-range values.
    """

    max_runners_per_group: int = DEFAULT_MAX_RUNNERS_PER_GROUP
    """Upper bound on the number of shards per runner."""

    min_items_per_runner_group: int = DEFAULT_MIN_ITEMS_PER_RUNNER_GROUP
    """Nominal number of items a shard should carry."""

    load_factor: float = DEFAULT_LOAD_FACTOR
    """Discount in ``(0, 1]`` applied to ``min_items_per_runner_group``."""

    def __post_init__(self) -> None:
        if not _is_integer(self.max_runners_per_group) or self.max_runners_per_group < 1:
            raise InvalidShardConfigError(
                "max_runners_per_group",
                "max_runners_per_group must be an integer greater than or equal to 1 "
                f"(got: {self.max_runners_per_group!r})",
            )
        if not _is_integer(self.min_items_per_runner_group) or self.min_items_per_runner_group < 1:
            raise InvalidShardConfigError(
                "min_items_per_runner_group",
                "min_items_per_runner_group must be an integer greater than or equal to 1 "
                f"(got: {self.min_items_per_runner_group!r})",
            )
        if not valid_load_factor(self.load_factor):
            raise InvalidShardConfigError(
                "load_factor",
                "load_factor must be greater than 0 and less than or equal to 1 "
                f"(got: {self.load_factor!r})",
            )

    @property
    def effective_min_items(self) -> float:
        """Per-shard threshold after applying the load factor."""
        return self.min_items_per_runner_group * self.load_factor


# ── Public API ────────────────────────────────────────────────────


def shard_count(load: int, config: ShardConfig) -> int:
    """Return the number of shards a runner with *load* pending items gets.

    ``floor(load / (min_items_per_runner_group * load_factor))`` clamped to
    ``[1, max_runners_per_group]``. A zero load still yields one shard so
    the runner never drops out of the matrix.

    Raises:
        ShardingError: If *load* is negative or not an integer.
    """
    if not _is_integer(load) or load < 0:
        msg = f"load must be a non-negative integer (got: {load!r})"
        raise ShardingError(msg)

    raw = math.floor(load / config.effective_min_items)
    count = min(max(raw, MIN_SHARD_COUNT), config.max_runners_per_group)
    logger.debug(
        "Load %d at threshold %.3f gives %d shard(s) (raw %d)",
        load,
        config.effective_min_items,
        count,
        raw,
    )
    return count
