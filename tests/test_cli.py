"""Tests for the command-line interface."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from edgeml_cli.__main__ import cli


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def test_package_and_list(runner, tmp_path):
    store = str(tmp_path / "bundles")
    result = runner.invoke(cli, ["--store", store, "package", "--name", "stress_v1.pt"])
    assert result.exit_code == 0, result.output
    assert "Packaged stress_mlp" in result.output

    listed = runner.invoke(cli, ["--store", store, "list"])
    assert "stress_v1.pt" in listed.output


def test_list_empty_store(runner, tmp_path):
    result = runner.invoke(cli, ["--store", str(tmp_path / "none"), "list"])
    assert result.exit_code == 0
    assert "No models in store." in result.output


def test_package_unknown_architecture(runner, tmp_path):
    result = runner.invoke(
        cli, ["--store", str(tmp_path), "package", "--name", "x.pt", "--architecture", "resnet"]
    )
    assert result.exit_code == 1


def test_add_copies_bundle(runner, store_dir, tmp_path):
    other = str(tmp_path / "other")
    result = runner.invoke(cli, ["--store", other, "add", f"{store_dir}/a.pt", "--name", "copy.pt"])
    assert result.exit_code == 0, result.output
    assert "copy.pt" in runner.invoke(cli, ["--store", other, "list"]).output


def test_info(runner, store_dir):
    result = runner.invoke(cli, ["--store", store_dir, "info", "stress.pt", "--threads", "1"])
    assert result.exit_code == 0, result.output
    info = json.loads(result.output)
    assert info["input_shape"] == [1, 8]
    assert info["thread_count"] == 1


def test_info_missing_model(runner, store_dir):
    result = runner.invoke(cli, ["--store", store_dir, "info", "missing.model"])
    assert result.exit_code == 1


def test_predict(runner, store_dir):
    result = runner.invoke(
        cli,
        ["--store", store_dir, "predict", "tripwire.pt", "--input", "[1, 2, 3, 4]"],
    )
    assert result.exit_code == 0, result.output
    body = json.loads(result.output)
    assert body["output"] == [2.0, 4.0, 6.0, 8.0]
    assert body["output_shape"] == [2, 2]


def test_predict_wrong_size(runner, store_dir):
    result = runner.invoke(
        cli, ["--store", store_dir, "predict", "tripwire.pt", "--input", "[1, 2]"]
    )
    assert result.exit_code == 1


def test_benchmark(runner, store_dir):
    result = runner.invoke(
        cli,
        ["--store", store_dir, "benchmark", "a.pt", "--iterations", "5", "--warmup", "1"],
    )
    assert result.exit_code == 0, result.output
    stats = json.loads(result.output)
    assert stats["iterations"] == 5
    assert stats["backend"] == "cpu"
    assert stats["min_time_ms"] <= stats["average_time_ms"] <= stats["max_time_ms"]
