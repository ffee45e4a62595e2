"""Tests for the armsynth command line interface."""

import json
import os
import textwrap
from pathlib import Path

import click
import pytest
from click.testing import CliRunner

from armsynth.cli import cli, load_app
from armsynth.stacks import App

APP_SOURCE = textwrap.dedent(
    """
    from armsynth import App, GenericResource, ResourceGroupStack, SubscriptionStack


    def build():
        app = App("Payments", organization="acme", project="pay")
        prod = SubscriptionStack(
            app, "Prod", "00000000-0000-0000-0000-000000000001",
            environment="prod", geography="eastus", instance=1,
        )
        data = ResourceGroupStack(prod, "Data")
        ledger = GenericResource(data, "Ledger", "Microsoft.Storage/storageAccounts", "2023-01-01")
        GenericResource(
            data, "Audit", "Microsoft.Storage/storageAccounts", "2023-01-01",
            {"ledgerId": ledger.ref()},
        )
        return app


    def build_cycle():
        app = build()
        data = app.child("Prod").child("Data")
        data.child("Ledger").add_dependency(data.child("Audit"))
        return app


    def build_nothing():
        return 42
    """
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("ARMSYNTH_"):
            monkeypatch.delenv(key)


@pytest.fixture
def app_file(tmp_path: Path) -> Path:
    path = tmp_path / "infra.py"
    path.write_text(APP_SOURCE, encoding="utf-8")
    return path


@pytest.fixture
def run_synth(tmp_path: Path):
    """Invoke ``armsynth synth`` with an isolated config file."""

    def run(*args: str):
        runner = CliRunner()
        return runner.invoke(
            cli,
            ["synth", *args, "--config", str(tmp_path / "missing.yaml")],
            obj={},
        )

    return run


class TestSynthCommand:
    """Test the synth command."""

    def test_synthesizes_to_out_dir(self, app_file: Path, tmp_path: Path, run_synth):
        out_dir = tmp_path / "out"

        result = run_synth(f"{app_file}:build", "--out-dir", str(out_dir))

        assert result.exit_code == 0, result.output
        assert "Synthesized 1 unit(s)" in result.output
        assert (out_dir / "payments-01.json").exists()
        assert (out_dir / "azuredeploy.json").exists()
        manifest = json.loads((out_dir / "manifest.json").read_text(encoding="utf-8"))
        assert manifest["totalResources"] == 2

    def test_options_override_defaults(self, app_file: Path, tmp_path: Path, run_synth):
        out_dir = tmp_path / "out"

        result = run_synth(
            f"{app_file}:build",
            "--out-dir", str(out_dir),
            "--max-resources", "1",
            "--no-root-template",
        )

        assert result.exit_code == 0, result.output
        assert "Synthesized 2 unit(s)" in result.output
        assert not (out_dir / "azuredeploy.json").exists()
        manifest = json.loads((out_dir / "manifest.json").read_text(encoding="utf-8"))
        assert manifest["units"][1]["dependsOn"] == ["payments-01"]

    def test_cycle_fails_without_output(self, app_file: Path, tmp_path: Path, run_synth):
        out_dir = tmp_path / "out"

        result = run_synth(f"{app_file}:build_cycle", "--out-dir", str(out_dir))

        assert result.exit_code == 1
        assert "Synthesis failed" in result.output
        assert not out_dir.exists()

    def test_invalid_option_is_a_config_error(self, app_file: Path, tmp_path: Path, run_synth):
        result = run_synth(f"{app_file}:build", "--max-resources", "0")

        assert result.exit_code == 2
        assert "Configuration error" in result.output

    def test_malformed_app_spec(self, run_synth):
        result = run_synth("no_function_given")

        assert result.exit_code == 2

    def test_unknown_module(self, run_synth):
        result = run_synth("armsynth_missing_module:build")

        assert result.exit_code == 2


class TestLoadApp:
    """Test resolving APP_SPEC into a construct tree."""

    def test_file_function(self, app_file: Path):
        root = load_app(f"{app_file}:build")

        assert isinstance(root, App)
        assert root.stack_name == "payments"

    def test_module_attribute_node(self):
        root = load_app("armsynth.stacks:App")

        assert isinstance(root, App)

    def test_missing_attribute(self, app_file: Path):
        with pytest.raises(click.BadParameter, match="has no attribute"):
            load_app(f"{app_file}:missing")

    def test_non_node_result(self, app_file: Path):
        with pytest.raises(click.BadParameter, match="not a construct tree root"):
            load_app(f"{app_file}:build_nothing")


class TestInitConfigCommand:
    """Test the init-config command."""

    def test_writes_default_config(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        runner = CliRunner()

        result = runner.invoke(cli, ["init-config", "--path", str(path)], obj={})

        assert result.exit_code == 0, result.output
        assert "synthesis:" in path.read_text(encoding="utf-8")

    def test_refuses_to_overwrite(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("synthesis: {}\n", encoding="utf-8")
        runner = CliRunner()

        result = runner.invoke(cli, ["init-config", "--path", str(path)], obj={})

        assert result.exit_code == 1
        assert path.read_text(encoding="utf-8") == "synthesis: {}\n"

        result = runner.invoke(cli, ["init-config", "--path", str(path), "--force"], obj={})

        assert result.exit_code == 0
        assert "max_unit_size_bytes" in path.read_text(encoding="utf-8")
