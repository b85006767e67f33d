"""Expansion of runner spec records into one row per shard."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from shardplan.errors import InvalidShardCountError


class ShardKeys(Enum):
    """Named pairs of output field names for shard metadata."""

    SHARD = ("shard_count", "shard_index")
    DEPENDENT_SHARD = ("dependent_shard_count", "dependent_shard_index")

    @property
    def count_key(self) -> str:
        """Field holding the shard count."""
        return self.value[0]

    @property
    def index_key(self) -> str:
        """Field holding the one-based shard index."""
        return self.value[1]


def expand(
    runner_spec: Mapping[str, Any],
    shard_count: int,
    shard_count_key: str = ShardKeys.SHARD.count_key,
    shard_index_key: str = ShardKeys.SHARD.index_key,
) -> list[dict[str, Any]]:
    """Return *shard_count* copies of *runner_spec* stamped with shard metadata.

    Indices run from 1 to *shard_count* inclusive. The input record is not
    modified.
    """
    if isinstance(shard_count, bool) or not isinstance(shard_count, int) or shard_count < 1:
        raise InvalidShardCountError(shard_count)
    return [
        {**runner_spec, shard_count_key: shard_count, shard_index_key: shard_index}
        for shard_index in range(1, shard_count + 1)
    ]
