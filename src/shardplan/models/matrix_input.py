"""Matrix-input documents (JSON or YAML)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from shardplan.errors import MatrixInputError
from shardplan.models.runner import Runner

logger = logging.getLogger(__name__)

_JSON_SUFFIXES = frozenset({".json"})
_YAML_SUFFIXES = frozenset({".yml", ".yaml"})


@dataclass
class MatrixInput:
    """Everything needed to plan one matrix-generation pass."""

    runners: list[Runner] = field(default_factory=list)
    """Active runners, in document order."""

    item_names: list[str] = field(default_factory=list)
    """Items in scope for the job."""

    load_by_runner: dict[str, int] = field(default_factory=dict)
    """Explicit load per runner id."""

    items_by_runner: dict[str, list[str]] = field(default_factory=dict)
    """Runner-compatible item slices."""

    dependencies: dict[str, list[str]] = field(default_factory=dict)
    """Item name to the item names it depends on."""

    features: dict[str, list[str]] = field(default_factory=dict)
    """Item name to its locality tags."""


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"{key} must be a list of strings"
        raise MatrixInputError(msg)
    return list(value)


def _string_list_mapping(value: Any, key: str) -> dict[str, list[str]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"{key} must be a mapping of item name to a list of strings"
        raise MatrixInputError(msg)
    return {str(name): _string_list(values, f"{key}.{name}") for name, values in value.items()}


def _check_json_value(value: Any, key: str) -> None:
    """Reject values a matrix row could not be serialized with (e.g. YAML dates)."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            _check_json_value(item, f"{key}[{index}]")
        return
    if isinstance(value, dict):
        for name, item in value.items():
            if not isinstance(name, str):
                msg = f"{key} keys must be strings (got: {name!r})"
                raise MatrixInputError(msg)
            _check_json_value(item, f"{key}.{name}")
        return
    msg = f"{key} must be a JSON value (got {type(value).__name__}: {value!r}); quote it"
    raise MatrixInputError(msg)


def _parse_runner(raw: Any, position: int) -> Runner | None:
    if not isinstance(raw, dict):
        msg = f"runners[{position}] must be a mapping"
        raise MatrixInputError(msg)

    runner_id = raw.get("id")
    if not isinstance(runner_id, str) or not runner_id:
        msg = f"runners[{position}].id must be a non-empty string"
        raise MatrixInputError(msg)

    spec = raw.get("spec", {})
    if not isinstance(spec, dict):
        msg = f"runners[{position}].spec must be a mapping"
        raise MatrixInputError(msg)
    _check_json_value(spec, f"runners[{position}].spec")

    if raw.get("active", True) is False:
        logger.debug("Skipping inactive runner %s", runner_id)
        return None
    return Runner(runner_id=runner_id, spec=dict(spec))


def parse_matrix_input(data: Any) -> MatrixInput:
    """Validate a decoded matrix-input document.

    Raises:
        MatrixInputError: If a key has the wrong shape, a runner id repeats,
            or a load refers to an unknown runner or is negative.
    """
    if not isinstance(data, dict):
        msg = "matrix input must be a mapping"
        raise MatrixInputError(msg)

    runners_raw = data.get("runners", [])
    if not isinstance(runners_raw, list):
        msg = "runners must be a list"
        raise MatrixInputError(msg)

    runners: list[Runner] = []
    items_by_runner: dict[str, list[str]] = {}
    seen: set[str] = set()
    for position, raw in enumerate(runners_raw):
        runner = _parse_runner(raw, position)
        runner_id = raw["id"]
        if runner_id in seen:
            msg = f"duplicate runner id: {runner_id}"
            raise MatrixInputError(msg)
        seen.add(runner_id)
        if runner is None:
            continue
        runners.append(runner)
        if "items" in raw:
            items_by_runner[runner_id] = _string_list(raw["items"], f"runners[{position}].items")

    load_raw = data.get("load_by_runner") or {}
    if not isinstance(load_raw, dict):
        msg = "load_by_runner must be a mapping of runner id to integer"
        raise MatrixInputError(msg)
    load_by_runner: dict[str, int] = {}
    for runner_id, load in load_raw.items():
        if runner_id not in seen:
            msg = f"load_by_runner refers to unknown runner: {runner_id}"
            raise MatrixInputError(msg)
        if isinstance(load, bool) or not isinstance(load, int) or load < 0:
            msg = f"load_by_runner.{runner_id} must be a non-negative integer (got: {load!r})"
            raise MatrixInputError(msg)
        load_by_runner[runner_id] = load

    return MatrixInput(
        runners=runners,
        item_names=_string_list(data.get("items"), "items"),
        load_by_runner=load_by_runner,
        items_by_runner=items_by_runner,
        dependencies=_string_list_mapping(data.get("dependencies"), "dependencies"),
        features=_string_list_mapping(data.get("features"), "features"),
    )


def load_matrix_input(path: str | Path) -> MatrixInput:
    """Read and validate a ``.json``, ``.yml`` or ``.yaml`` matrix-input file."""
    input_path = Path(path)
    suffix = input_path.suffix.lower()
    if suffix not in _JSON_SUFFIXES | _YAML_SUFFIXES:
        msg = f"unsupported matrix input format: {input_path.name} (use .json, .yml or .yaml)"
        raise MatrixInputError(msg)

    try:
        text = input_path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"cannot read matrix input {input_path}: {e}"
        raise MatrixInputError(msg) from e

    try:
        data = json.loads(text) if suffix in _JSON_SUFFIXES else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        msg = f"cannot parse matrix input {input_path}: {e}"
        raise MatrixInputError(msg) from e

    return parse_matrix_input(data)
