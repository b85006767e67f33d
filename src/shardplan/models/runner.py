"""Runner models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

MatrixRow = dict[str, Any]
"""One entry of a CI provider's job matrix."""


@dataclass(frozen=True)
class Runner:
    """A CI worker definition supplied by the capability matcher."""

    runner_id: str
    """Opaque identifier, unique within one matrix."""

    spec: Mapping[str, Any] = field(default_factory=dict, hash=False)
    """Descriptive record copied verbatim into matrix rows."""

    @classmethod
    def from_pair(cls, pair: tuple[str, Mapping[str, Any]]) -> Runner:
        """Build a runner from a ``(runner_id, spec)`` pair."""
        runner_id, spec = pair
        return cls(runner_id=runner_id, spec=dict(spec))

    def spec_dict(self) -> MatrixRow:
        """Return a fresh copy of the spec record."""
        return dict(self.spec)
