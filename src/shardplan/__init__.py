"""shardplan: deterministic CI runner sharding and shard assignment."""

__version__ = "0.1.0"
