"""shardplan CLI top-level command group."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler

from shardplan import __version__
from shardplan.config import CONFIG_FILENAME, ShardplanConfig, load_config, validate_config
from shardplan.errors import ShardingError
from shardplan.models.matrix_input import MatrixInput, load_matrix_input
from shardplan.reporters.terminal import reporter
from shardplan.sharding.assigner import AssignmentStrategy, ShardAssigner
from shardplan.sharding.expander import ShardKeys
from shardplan.sharding.matrix import RunnerMatrix
from shardplan.sharding.shard_count import ShardConfig, valid_load_factor
from shardplan.utils.ci_context import (
    GitHubOutputError,
    detect_ci_context,
    resolve_github_output,
    write_github_output,
)

logger = logging.getLogger(__name__)
console = Console()

_STRATEGY_CHOICES = [strategy.value for strategy in AssignmentStrategy]


# ── Option parsing ────────────────────────────────────────────────


def _parse_positive_int(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> int | None:
    """Click callback: accept integers >= 1, or nothing."""
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except ValueError:
        parsed = 0
    if parsed >= 1:
        return parsed
    raise click.BadParameter("must be an integer greater than or equal to 1.", ctx, param)


def _parse_load_factor(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> float | None:
    """Click callback: accept numbers in (0, 1], or nothing."""
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except ValueError:
        parsed = 0.0
    if valid_load_factor(parsed):
        return parsed
    raise click.BadParameter(
        "must be a number greater than 0 and less than or equal to 1.", ctx, param
    )


def _load_project_config(path: str) -> ShardplanConfig:
    try:
        return load_config(path)
    except (OSError, yaml.YAMLError) as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e


def _load_input(input_path: str) -> MatrixInput:
    try:
        return load_matrix_input(input_path)
    except ShardingError as e:
        reporter.print_error(str(e))
        raise click.Abort from e


def _resolve_shard_config(
    config: ShardplanConfig,
    *,
    dependent: bool,
    max_runners: int | None,
    min_items_per_runner: int | None,
    load_factor: float | None,
) -> ShardConfig:
    """Overlay command-line values on the configured section and validate it."""
    section = config.dependent_sharding if dependent else config.sharding
    overrides: dict[str, Any] = {}
    if max_runners is not None:
        overrides["max_runners_per_group"] = max_runners
    if min_items_per_runner is not None:
        overrides["min_items_per_runner_group"] = min_items_per_runner
    if load_factor is not None:
        overrides["load_factor"] = load_factor
    try:
        return replace(section, **overrides).to_shard_config()
    except ShardingError as e:
        prefix = "dependent_sharding" if dependent else "sharding"
        reporter.print_error(f"Invalid {prefix} configuration in {CONFIG_FILENAME}: {e}")
        raise click.Abort from e


def _resolve_omit_single_shard_keys(config: ShardplanConfig, flag: bool | None) -> bool:
    if flag is not None:
        return flag
    configured = config.output.omit_single_shard_keys
    if not isinstance(configured, bool):
        reporter.print_error(
            f"output.omit_single_shard_keys must be a boolean (got: {configured!r})"
        )
        raise click.Abort
    return configured


def _resolve_strategy(config: ShardplanConfig, strategy: str | None) -> AssignmentStrategy:
    if strategy is not None:
        return AssignmentStrategy(strategy)
    try:
        return config.assignment_strategy
    except ShardingError as e:
        reporter.print_error(str(e))
        raise click.Abort from e


def _emit_github_output(rows: list[dict[str, Any]]) -> None:
    """Append the matrix to the GitHub Actions step outputs when available."""
    try:
        output_path = resolve_github_output(detect_ci_context())
    except GitHubOutputError as e:
        reporter.print_error(str(e))
        raise click.Abort from e
    if output_path is None:
        return

    write_github_output(
        output_path,
        {
            "runners": json.dumps(rows, separators=(",", ":")),
            "runners_present": "true" if rows else "false",
        },
    )
    logger.debug("Wrote runner matrix to %s", output_path)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ── Commands ──────────────────────────────────────────────────────


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(version=__version__, prog_name="shardplan")
@click.pass_context
def cli(ctx: click.Context, *, verbose: bool) -> None:
    """shardplan: deterministic CI runner sharding."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


@cli.command("runners")
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root containing .shardplan.yml.",
)
@click.option(
    "--sharded",
    is_flag=True,
    help="Shard runners using the `sharding` settings (shard_count/shard_index keys).",
)
@click.option(
    "--dependents",
    is_flag=True,
    help="Shard runners for dependents testing (dependent_shard_count/dependent_shard_index keys).",
)
@click.option(
    "--max-runners",
    callback=_parse_positive_int,
    help="Maximum number of shards per active runner.",
)
@click.option(
    "--min-items-per-runner",
    callback=_parse_positive_int,
    help="Minimum number of items per shard.",
)
@click.option(
    "--load-factor",
    callback=_parse_load_factor,
    help="Minimum load ratio per shard, in (0, 1].",
)
@click.option(
    "--strategy",
    type=click.Choice(_STRATEGY_CHOICES),
    default=None,
    help="Shard assignment strategy (default from config: locality).",
)
@click.option(
    "--omit-single-shard-keys/--keep-single-shard-keys",
    default=None,
    help="Leave shard fields off rows of runners that get a single shard.",
)
@click.option("--show-plan", is_flag=True, help="Also print per-shard item membership.")
@click.option("--json-output", "as_json", is_flag=True, help="Output rows as JSON.")
def runners(
    input_path: str,
    path: str,
    *,
    sharded: bool,
    dependents: bool,
    max_runners: int | None,
    min_items_per_runner: int | None,
    load_factor: float | None,
    strategy: str | None,
    omit_single_shard_keys: bool | None,
    show_plan: bool,
    as_json: bool,
) -> None:
    """Determine the runner matrix for INPUT_PATH (.json/.yml/.yaml).

    Without --sharded or --dependents every active runner appears once and
    rows carry no shard fields.

    Example:
      shardplan runners matrix.yml --dependents --max-runners 4
    """
    if sharded and dependents:
        raise click.UsageError("`--sharded` and `--dependents` are mutually exclusive.")
    if not (sharded or dependents) and any(
        value is not None for value in (max_runners, min_items_per_runner, load_factor)
    ):
        raise click.UsageError("Shard options require `--sharded` or `--dependents`.")

    config = _load_project_config(path)
    shard_config: ShardConfig | None = None
    omit_keys = False
    if sharded or dependents:
        shard_config = _resolve_shard_config(
            config,
            dependent=dependents,
            max_runners=max_runners,
            min_items_per_runner=min_items_per_runner,
            load_factor=load_factor,
        )
        omit_keys = _resolve_omit_single_shard_keys(config, omit_single_shard_keys)
    matrix_input = _load_input(input_path)

    try:
        matrix = RunnerMatrix(
            matrix_input.runners,
            matrix_input.item_names,
            load_by_runner=matrix_input.load_by_runner,
            items_by_runner=matrix_input.items_by_runner,
            dependencies=matrix_input.dependencies,
            features=matrix_input.features,
            config=shard_config,
            keys=ShardKeys.DEPENDENT_SHARD if dependents else ShardKeys.SHARD,
            sharded=sharded or dependents,
            omit_single_shard_keys=omit_keys,
            strategy=_resolve_strategy(config, strategy),
        )
        rows = matrix.rows()
        plans = matrix.plans() if show_plan else []
    except ShardingError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    if as_json:
        click.echo(json.dumps(rows, indent=2))
    else:
        reporter.print_matrix(rows)
        if plans:
            reporter.print_shard_plans(plans)

    _emit_github_output(rows)


@cli.command("shard-items")
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root containing .shardplan.yml.",
)
@click.option("--shard-count", callback=_parse_positive_int, help="Total number of shards.")
@click.option("--shard-index", callback=_parse_positive_int, help="Shard to list (1-based).")
@click.option("--runner", "runner_id", default=None, help="Use this runner's item slice.")
@click.option(
    "--strategy",
    type=click.Choice(_STRATEGY_CHOICES),
    default=None,
    help="Shard assignment strategy (default from config: locality).",
)
@click.option("--json-output", "as_json", is_flag=True, help="Output items as a JSON list.")
def shard_items(
    input_path: str,
    path: str,
    *,
    shard_count: int | None,
    shard_index: int | None,
    runner_id: str | None,
    strategy: str | None,
    as_json: bool,
) -> None:
    """List the items assigned to one shard of INPUT_PATH.

    Example:
      shardplan shard-items matrix.yml --shard-count 3 --shard-index 2
    """
    if (shard_count is None) != (shard_index is None):
        raise click.UsageError("`--shard-count` and `--shard-index` must be provided together.")
    count = shard_count or 1
    index = shard_index or 1
    if index > count:
        raise click.UsageError("`--shard-index` must be between 1 and `--shard-count`.")

    config = _load_project_config(path)
    matrix_input = _load_input(input_path)

    items = matrix_input.item_names
    if runner_id is not None:
        known = {runner.runner_id for runner in matrix_input.runners}
        if runner_id not in known:
            raise click.UsageError(f"Unknown or inactive runner: {runner_id}")
        items = matrix_input.items_by_runner.get(runner_id, items)

    try:
        assigner = ShardAssigner(
            count,
            features_by_item=matrix_input.features,
            adjacency_graph=matrix_input.dependencies,
            strategy=_resolve_strategy(config, strategy),
        )
        selected = assigner.shard_items(items, index)
    except ShardingError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    if as_json:
        click.echo(json.dumps(selected))
        return
    for item in selected:
        click.echo(item)


# ── Config commands ───────────────────────────────────────────────


def _load_config_yml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        return parsed
    return {}


def _set_nested_config_value(config: dict[str, Any], dotted_key: str, value: Any) -> None:
    key_parts = [part.strip() for part in dotted_key.split(".") if part.strip()]
    if not key_parts:
        raise ValueError("Configuration key must not be empty.")

    cursor: dict[str, Any] = config
    for part in key_parts[:-1]:
        existing = cursor.get(part)
        if isinstance(existing, dict):
            cursor = existing
            continue

        next_node: dict[str, Any] = {}
        cursor[part] = next_node
        cursor = next_node

    cursor[key_parts[-1]] = value


def _parse_config_value(value: str) -> Any:
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


def _config_to_dict(config: ShardplanConfig) -> dict[str, Any]:
    """Convert ShardplanConfig to a dictionary for display."""
    result = asdict(config)
    result.pop("raw", None)
    return result


@cli.group("config")
def config_group() -> None:
    """Manage `.shardplan.yml` configuration values."""


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
def config_set(key: str, value: str, path: str) -> None:
    """Set a configuration key in `.shardplan.yml` using dotted paths.

    The value is parsed as YAML, so numbers and booleans keep their type;
    values that are not valid YAML are stored as plain strings.

    Example:
      shardplan config set dependent_sharding.max_runners_per_group 4
    """
    config_file = Path(path) / CONFIG_FILENAME
    try:
        config_data = _load_config_yml(config_file)
    except yaml.YAMLError as e:
        reporter.print_error(f"Failed to parse {config_file}: {e}")
        raise click.Abort from e

    try:
        _set_nested_config_value(config_data, key, _parse_config_value(value))
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    config_file.write_text(
        yaml.safe_dump(config_data, sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )
    reporter.print_success(f"Updated {key} in {config_file}")


@config_group.command("show")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option(
    "--json-output",
    "as_json",
    is_flag=True,
    help="Output as JSON instead of YAML.",
)
def config_show(path: str, *, as_json: bool) -> None:
    """Display the resolved configuration.

    Example:
      shardplan config show --json-output
    """
    config_dict = _config_to_dict(_load_project_config(path))

    if as_json:
        click.echo(json.dumps(config_dict, indent=2))
    else:
        console.print()
        console.print("[bold cyan]Configuration:[/bold cyan]")
        console.print()
        click.echo(yaml.safe_dump(config_dict, sort_keys=False, default_flow_style=False))


@config_group.command("validate")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
def config_validate(path: str) -> None:
    """Validate `.shardplan.yml`.

    Example:
      shardplan config validate
    """
    errors = validate_config(_load_project_config(path))

    if not errors:
        reporter.print_success("Configuration is valid!")
        return

    reporter.print_error(f"Found {len(errors)} configuration error(s):")
    console.print()

    for idx, error in enumerate(errors, start=1):
        console.print(f"  {idx}. [red]{error}[/red]")

    console.print()
    raise click.Abort


def main() -> None:
    """Console script entry point."""
    cli()
