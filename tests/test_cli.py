"""Tests for the shardplan CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner

from shardplan.cli import cli
from shardplan.config import CONFIG_FILENAME, load_config


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("GITHUB_ACTIONS", "GITHUB_OUTPUT"):
        monkeypatch.delenv(name, raising=False)
    for name in (
        "MAX_RUNNERS",
        "MIN_ITEMS_PER_RUNNER",
        "LOAD_FACTOR",
        "DEPENDENT_MAX_RUNNERS",
        "DEPENDENT_MIN_ITEMS_PER_RUNNER",
        "DEPENDENT_LOAD_FACTOR",
        "STRATEGY",
    ):
        monkeypatch.delenv(f"SHARDPLAN_{name}", raising=False)


@pytest.fixture
def matrix_file(tmp_path: Path) -> Path:
    document: dict[str, Any] = {
        "runners": [
            {"id": "linux", "spec": {"name": "Linux", "runner": "ubuntu-latest"}},
            {"id": "macos", "spec": {"name": "macOS", "runner": "macos-15"}, "items": ["a", "b"]},
            {"id": "windows", "spec": {"name": "Windows"}, "active": False},
        ],
        "items": ["a", "b", "c", "d"],
        "load_by_runner": {"linux": 9},
    }
    path = tmp_path / "matrix.yml"
    path.write_text(yaml.safe_dump(document), encoding="utf-8")
    return path


def _invoke(*args: str) -> Any:
    return CliRunner().invoke(cli, list(args))


class TestCLIBasics:
    def test_version(self) -> None:
        result = _invoke("--version")
        assert result.exit_code == 0
        assert "shardplan, version 0.1.0" in result.output

    def test_help_lists_commands(self) -> None:
        result = _invoke("--help")
        assert result.exit_code == 0
        for command in ("runners", "shard-items", "config"):
            assert command in result.output


class TestRunnersCommand:
    def test_flat_matrix(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--json-output")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [
            {"name": "Linux", "runner": "ubuntu-latest"},
            {"name": "macOS", "runner": "macos-15"},
        ]

    def test_dependents_matrix(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "runners",
            str(matrix_file),
            "--path",
            str(tmp_path),
            "--dependents",
            "--max-runners",
            "2",
            "--min-items-per-runner",
            "1",
            "--json-output",
        )
        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert [(row["name"], row["dependent_shard_index"]) for row in rows] == [
            ("Linux", 1),
            ("Linux", 2),
            ("macOS", 1),
            ("macOS", 2),
        ]
        assert all(row["dependent_shard_count"] == 2 for row in rows)
        assert all("shard_index" not in row for row in rows)

    def test_sharded_matrix_uses_config(self, matrix_file: Path, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "sharding:\n  max_runners_per_group: 3\n  min_items_per_runner_group: 3\n",
            encoding="utf-8",
        )
        result = _invoke(
            "runners", str(matrix_file), "--path", str(tmp_path), "--sharded", "--json-output"
        )
        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert [(row["name"], row["shard_count"], row["shard_index"]) for row in rows] == [
            ("Linux", 3, 1),
            ("Linux", 3, 2),
            ("Linux", 3, 3),
            ("macOS", 1, 1),
        ]

    def test_omit_single_shard_keys(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "runners",
            str(matrix_file),
            "--path",
            str(tmp_path),
            "--sharded",
            "--max-runners",
            "3",
            "--min-items-per-runner",
            "3",
            "--omit-single-shard-keys",
            "--json-output",
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[-1] == {"name": "macOS", "runner": "macos-15"}

    def test_table_output(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--show-plan")
        assert result.exit_code == 0, result.output
        assert "Runner Matrix (2 rows)" in result.output

    @pytest.mark.parametrize("value", ["0", "-1", "many"])
    def test_rejects_invalid_max_runners(
        self, matrix_file: Path, tmp_path: Path, value: str
    ) -> None:
        result = _invoke(
            "runners", str(matrix_file), "--path", str(tmp_path), "--dependents",
            "--max-runners", value,
        )
        assert result.exit_code == 2
        assert "must be an integer greater than or equal to 1." in result.output

    @pytest.mark.parametrize("value", ["0", "1.5", "abc"])
    def test_rejects_invalid_load_factor(
        self, matrix_file: Path, tmp_path: Path, value: str
    ) -> None:
        result = _invoke(
            "runners", str(matrix_file), "--path", str(tmp_path), "--dependents",
            "--load-factor", value,
        )
        assert result.exit_code == 2
        assert "greater than 0 and less than or equal to 1." in result.output

    def test_sharded_and_dependents_are_exclusive(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "runners", str(matrix_file), "--path", str(tmp_path), "--sharded", "--dependents"
        )
        assert result.exit_code == 2
        assert "mutually exclusive" in result.output

    def test_shard_options_require_mode(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--max-runners", "2")
        assert result.exit_code == 2
        assert "Shard options require" in result.output

    def test_invalid_config_section_aborts(self, matrix_file: Path, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "dependent_sharding:\n  max_runners_per_group: 0\n", encoding="utf-8"
        )
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--dependents")
        assert result.exit_code == 1
        assert "Invalid dependent_sharding configuration" in result.output

    def test_command_line_overrides_invalid_config(
        self, matrix_file: Path, tmp_path: Path
    ) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "dependent_sharding:\n  max_runners_per_group: 0\n", encoding="utf-8"
        )
        result = _invoke(
            "runners", str(matrix_file), "--path", str(tmp_path), "--dependents",
            "--max-runners", "1", "--json-output",
        )
        assert result.exit_code == 0, result.output

    def test_invalid_omit_setting_aborts(self, matrix_file: Path, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "output:\n  omit_single_shard_keys: [1]\n", encoding="utf-8"
        )
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--sharded")
        assert result.exit_code == 1
        assert "output.omit_single_shard_keys must be a boolean" in result.output

        flag = _invoke(
            "runners", str(matrix_file), "--path", str(tmp_path), "--sharded",
            "--keep-single-shard-keys", "--json-output",
        )
        assert flag.exit_code == 0, flag.output

    def test_malformed_input_aborts(self, tmp_path: Path) -> None:
        path = tmp_path / "matrix.json"
        path.write_text('{"runners": "linux"}', encoding="utf-8")
        result = _invoke("runners", str(path), "--path", str(tmp_path))
        assert result.exit_code == 1
        assert "runners must be a list" in result.output

    def test_unquoted_yaml_date_aborts(self, tmp_path: Path) -> None:
        path = tmp_path / "matrix.yml"
        path.write_text(
            "runners:\n  - id: linux\n    spec: {since: 2024-01-01}\n", encoding="utf-8"
        )
        result = _invoke("runners", str(path), "--path", str(tmp_path), "--json-output")
        assert result.exit_code == 1
        assert "must be a JSON value" in result.output
        assert not isinstance(result.exception, TypeError)

    def test_writes_github_output(
        self, matrix_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_ACTIONS", "true")
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--json-output")
        assert result.exit_code == 0, result.output
        lines = output.read_text(encoding="utf-8").splitlines()
        assert lines == [
            'runners=[{"name":"Linux","runner":"ubuntu-latest"},'
            '{"name":"macOS","runner":"macos-15"}]',
            "runners_present=true",
        ]

    def test_empty_matrix_output(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "matrix.json"
        path.write_text('{"runners": []}', encoding="utf-8")
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        result = _invoke("runners", str(path), "--path", str(tmp_path))
        assert result.exit_code == 0, result.output
        assert "matrix is empty" in result.output
        assert output.read_text(encoding="utf-8") == "runners=[]\nrunners_present=false\n"

    def test_missing_github_output_under_actions(
        self, matrix_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("GITHUB_ACTIONS", "true")
        result = _invoke("runners", str(matrix_file), "--path", str(tmp_path), "--json-output")
        assert result.exit_code == 1
        assert "GITHUB_OUTPUT is not set" in result.output


class TestShardItemsCommand:
    def test_lists_one_shard(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "shard-items", str(matrix_file), "--path", str(tmp_path),
            "--shard-count", "2", "--shard-index", "2",
        )
        assert result.exit_code == 0, result.output
        assert result.stdout.splitlines() == ["b", "d"]

    def test_runner_slice_as_json(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "shard-items", str(matrix_file), "--path", str(tmp_path), "--runner", "macos",
            "--shard-count", "2", "--shard-index", "1", "--json-output",
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == ["a"]

    def test_defaults_to_single_shard(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke("shard-items", str(matrix_file), "--path", str(tmp_path), "--json-output")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == ["a", "b", "c", "d"]

    def test_requires_count_and_index_together(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "shard-items", str(matrix_file), "--path", str(tmp_path), "--shard-count", "2"
        )
        assert result.exit_code == 2
        assert "must be provided together" in result.output

    def test_rejects_index_above_count(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "shard-items", str(matrix_file), "--path", str(tmp_path),
            "--shard-count", "2", "--shard-index", "3",
        )
        assert result.exit_code == 2
        assert "must be between 1 and `--shard-count`" in result.output

    def test_rejects_inactive_runner(self, matrix_file: Path, tmp_path: Path) -> None:
        result = _invoke(
            "shard-items", str(matrix_file), "--path", str(tmp_path), "--runner", "windows"
        )
        assert result.exit_code == 2
        assert "Unknown or inactive runner: windows" in result.output


class TestConfigCommands:
    def test_set_writes_nested_value(self, tmp_path: Path) -> None:
        result = _invoke(
            "config", "set", "dependent_sharding.max_runners_per_group", "4",
            "--path", str(tmp_path),
        )
        assert result.exit_code == 0, result.output
        assert load_config(tmp_path).dependent_sharding.max_runners_per_group == 4

    def test_set_preserves_existing_keys(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "sharding:\n  max_runners_per_group: 2\n", encoding="utf-8"
        )
        result = _invoke("config", "set", "sharding.load_factor", "0.5", "--path", str(tmp_path))
        assert result.exit_code == 0, result.output
        data = yaml.safe_load((tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8"))
        assert data == {"sharding": {"max_runners_per_group": 2, "load_factor": 0.5}}

    def test_set_stores_unparsable_value_as_string(self, tmp_path: Path) -> None:
        result = _invoke("config", "set", "assignment.strategy", "[", "--path", str(tmp_path))
        assert result.exit_code == 0, result.output
        data = yaml.safe_load((tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8"))
        assert data == {"assignment": {"strategy": "["}}

    def test_set_aborts_on_malformed_config_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("sharding: [\n", encoding="utf-8")
        result = _invoke("config", "set", "sharding.load_factor", "0.5", "--path", str(tmp_path))
        assert result.exit_code == 1
        assert "Failed to parse" in result.output
        assert (tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8") == "sharding: [\n"

    def test_validate_aborts_on_malformed_config_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("sharding: [\n", encoding="utf-8")
        result = _invoke("config", "validate", "--path", str(tmp_path))
        assert result.exit_code == 1
        assert "Failed to load configuration" in result.output

    def test_set_rejects_empty_key(self, tmp_path: Path) -> None:
        result = _invoke("config", "set", " . ", "1", "--path", str(tmp_path))
        assert result.exit_code == 2

    def test_show_json(self, tmp_path: Path) -> None:
        result = _invoke("config", "show", "--path", str(tmp_path), "--json-output")
        assert result.exit_code == 0, result.output
        shown = json.loads(result.stdout)
        assert shown["dependent_sharding"] == {
            "max_runners_per_group": 1,
            "min_items_per_runner_group": 200,
            "load_factor": 1.0,
        }
        assert shown["assignment"] == {"strategy": "locality"}
        assert "raw" not in shown

    def test_validate_valid(self, tmp_path: Path) -> None:
        result = _invoke("config", "validate", "--path", str(tmp_path))
        assert result.exit_code == 0
        assert "Configuration is valid!" in result.output

    def test_validate_invalid(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "sharding:\n  load_factor: 2\nassignment:\n  strategy: random\n", encoding="utf-8"
        )
        result = _invoke("config", "validate", "--path", str(tmp_path))
        assert result.exit_code == 1
        assert "Found 2 configuration error(s)" in result.output
