"""Configuration parsing from ``.shardplan.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from shardplan.errors import InvalidShardConfigError
from shardplan.sharding.assigner import AssignmentStrategy
from shardplan.sharding.shard_count import (
    DEFAULT_LOAD_FACTOR,
    DEFAULT_MAX_RUNNERS_PER_GROUP,
    DEFAULT_MIN_ITEMS_PER_RUNNER_GROUP,
    ShardConfig,
    valid_load_factor,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".shardplan.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

_ENV_PREFIX = "SHARDPLAN_"
_DEPENDENT_ENV_PREFIX = "SHARDPLAN_DEPENDENT_"


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


def _coerce_number(value: Any, kind: type[int] | type[float]) -> Any:
    """Convert numeric strings (from env vars or placeholders); keep anything else as-is."""
    if not isinstance(value, str):
        return value
    try:
        return kind(value.strip())
    except ValueError:
        return value


_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no", ""})


def _coerce_bool(value: Any) -> Any:
    """Convert boolean-like strings; keep anything else as-is for validation."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return value


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


@dataclass
class SectionSettings:
    """Raw shard count settings for one matrix kind.

    Values are kept exactly as configured so that :func:`validate_config`
    can report them; :meth:`to_shard_config` is the strict conversion.
    """

    max_runners_per_group: Any = DEFAULT_MAX_RUNNERS_PER_GROUP
    """Maximum shards per runner."""

    min_items_per_runner_group: Any = DEFAULT_MIN_ITEMS_PER_RUNNER_GROUP
    """Nominal items per shard."""

    load_factor: Any = DEFAULT_LOAD_FACTOR
    """Discount in ``(0, 1]`` applied to the per-shard minimum."""

    def to_shard_config(self) -> ShardConfig:
        """Build a validated :class:`ShardConfig` (raises on invalid values)."""
        return ShardConfig(
            max_runners_per_group=self.max_runners_per_group,
            min_items_per_runner_group=self.min_items_per_runner_group,
            load_factor=self.load_factor,
        )


@dataclass
class OutputConfig:
    omit_single_shard_keys: Any = False
    """Leave shard fields off rows of runners that get a single shard.

    Kept as configured when it is not boolean-like; see :func:`validate_config`.
    """
    omit_single_shard_keys: bool = False
    """Leave shard fields off rows of runners that get a single shard."""


@dataclass
class AssignmentConfig:
    """Shard assignment configuration."""

    strategy: str = AssignmentStrategy.LOCALITY.value
    """Candidate ranking: locality or balanced."""


@dataclass
class ShardplanConfig:
    """Complete configuration from ``.shardplan.yml``."""

    sharding: SectionSettings = field(default_factory=SectionSettings)
    """Settings for the plain sharded matrix."""

    dependent_sharding: SectionSettings = field(default_factory=SectionSettings)
    """Settings for the dependents matrix."""

    output: OutputConfig = field(default_factory=OutputConfig)
    """Row output configuration."""

    assignment: AssignmentConfig = field(default_factory=AssignmentConfig)
    """Assignment configuration."""

    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for extension/debugging."""

    def shard_config(self, *, dependent: bool = False) -> ShardConfig:
        """Return the validated shard config for the chosen matrix kind."""
        section = self.dependent_sharding if dependent else self.sharding
        return section.to_shard_config()

    @property
    def assignment_strategy(self) -> AssignmentStrategy:
        """Return the configured strategy.

        Raises:
            InvalidShardConfigError: If the strategy name is unknown.
        """
        try:
            return AssignmentStrategy(self.assignment.strategy)
        except ValueError as e:
            raise InvalidShardConfigError(
                "assignment.strategy",
                f"assignment.strategy must be one of: {_strategy_names()} "
                f"(got: {self.assignment.strategy})",
            ) from e


def _strategy_names() -> str:
    return ", ".join(strategy.value for strategy in AssignmentStrategy)


def _parse_section(raw: dict[str, Any], name: str, env_prefix: str) -> SectionSettings:
    """Parse a shard count section, falling back to ``<prefix>*`` env vars."""
    section_raw = raw.get(name, {})
    if not isinstance(section_raw, dict):
        section_raw = {}

    return SectionSettings(
        max_runners_per_group=_coerce_number(
            section_raw.get(
                "max_runners_per_group",
                os.environ.get(f"{env_prefix}MAX_RUNNERS", DEFAULT_MAX_RUNNERS_PER_GROUP),
            ),
            int,
        ),
        min_items_per_runner_group=_coerce_number(
            section_raw.get(
                "min_items_per_runner_group",
                os.environ.get(
                    f"{env_prefix}MIN_ITEMS_PER_RUNNER", DEFAULT_MIN_ITEMS_PER_RUNNER_GROUP
                ),
            ),
            int,
        ),
        load_factor=_coerce_number(
            section_raw.get(
                "load_factor",
                os.environ.get(f"{env_prefix}LOAD_FACTOR", DEFAULT_LOAD_FACTOR),
            ),
            float,
        ),
    )


def _parse_output_config(raw: dict[str, Any]) -> OutputConfig:
    """Parse output configuration from raw YAML."""
    output_raw = raw.get("output", {})
    if not isinstance(output_raw, dict):
        output_raw = {}

    return OutputConfig(
        omit_single_shard_keys=_coerce_bool(output_raw.get("omit_single_shard_keys", False)),
    )


def _parse_assignment_config(raw: dict[str, Any]) -> AssignmentConfig:
    """Parse assignment configuration from raw YAML."""
    assignment_raw = raw.get("assignment", {})
    if not isinstance(assignment_raw, dict):
        assignment_raw = {}

    return AssignmentConfig(
        strategy=str(
            assignment_raw.get(
                "strategy",
                os.environ.get(f"{_ENV_PREFIX}STRATEGY", AssignmentStrategy.LOCALITY.value),
            )
        ).lower(),
    )


def load_config(root: str | Path) -> ShardplanConfig:
    """Load and parse ``.shardplan.yml`` from *root*.

    Falls back to defaults and ``SHARDPLAN_*`` environment variables when
    the file is missing or incomplete. Invalid values are kept as-is; use
    :func:`validate_config` to list them.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        text = config_file.read_text(encoding="utf-8")
        parsed = yaml.safe_load(text)
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        logger.debug("Loaded configuration from %s", config_file)

    return ShardplanConfig(
        sharding=_parse_section(raw, "sharding", _ENV_PREFIX),
        dependent_sharding=_parse_section(raw, "dependent_sharding", _DEPENDENT_ENV_PREFIX),
        output=_parse_output_config(raw),
        assignment=_parse_assignment_config(raw),
        raw=raw,
    )


def _validate_section(section: SectionSettings, prefix: str) -> list[str]:
    """Validate one shard count section."""
    errors: list[str] = []

    if not _is_positive_int(section.max_runners_per_group):
        errors.append(
            f"{prefix}.max_runners_per_group must be an integer greater than or equal to 1 "
            f"(got: {section.max_runners_per_group!r})"
        )

    if not _is_positive_int(section.min_items_per_runner_group):
        errors.append(
            f"{prefix}.min_items_per_runner_group must be an integer greater than or equal to 1 "
            f"(got: {section.min_items_per_runner_group!r})"
        )

    if not valid_load_factor(section.load_factor):
        errors.append(
            f"{prefix}.load_factor must be greater than 0 and less than or equal to 1 "
            f"(got: {section.load_factor!r})"
        )

    return errors


def validate_config(config: ShardplanConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    errors.extend(_validate_section(config.sharding, "sharding"))
    errors.extend(_validate_section(config.dependent_sharding, "dependent_sharding"))

    if not isinstance(config.output.omit_single_shard_keys, bool):
        errors.append(
            "output.omit_single_shard_keys must be a boolean "
            f"(got: {config.output.omit_single_shard_keys!r})"
        )

    valid_strategies = {strategy.value for strategy in AssignmentStrategy}
    if config.assignment.strategy not in valid_strategies:
        errors.append(
            f"assignment.strategy must be one of: {_strategy_names()} "
            f"(got: {config.assignment.strategy})"
        )

    return errors
