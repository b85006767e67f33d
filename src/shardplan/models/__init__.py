"""Data models for runner matrices."""

from shardplan.models.matrix_input import MatrixInput, load_matrix_input, parse_matrix_input
from shardplan.models.runner import MatrixRow, Runner

__all__ = [
    "MatrixInput",
    "MatrixRow",
    "Runner",
    "load_matrix_input",
    "parse_matrix_input",
]
