"""Error types raised by shardplan."""

from __future__ import annotations


class ShardingError(ValueError):
    """Base class for invalid-argument conditions reported by shardplan."""


class InvalidShardConfigError(ShardingError):
    """A shard configuration value is out of range or of the wrong type."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class InvalidShardCountError(ShardingError):
    """A shard count below one was supplied."""

    def __init__(self, shard_count: int) -> None:
        super().__init__(
            f"shard_count must be an integer greater than or equal to 1 (got: {shard_count})"
        )
        self.shard_count = shard_count


class InvalidShardIndexError(ShardingError):
    """A one-based shard index outside ``[1, shard_count]`` was requested."""

    def __init__(self, shard_index: int, shard_count: int) -> None:
        super().__init__(
            f"shard_index must be between 1 and {shard_count} (got: {shard_index})"
        )
        self.shard_index = shard_index
        self.shard_count = shard_count


class MatrixInputError(ShardingError):
    """A matrix-input document is unreadable or malformed."""
