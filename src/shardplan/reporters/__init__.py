"""Reporters for matrix output."""

from __future__ import annotations

from shardplan.reporters.terminal import reporter

__all__ = ["reporter"]
