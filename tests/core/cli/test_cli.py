"""Tests for the CLI entry point."""

import os
from datetime import date

import pytest
import yaml
from click.testing import CliRunner

from carecadence.core.cli import main
from carecadence.instances.models import instance_id

REGIMEN_YAML = {
    "timezone": "UTC",
    "start_date": "2020-01-01",
    "items": [
        {
            "id": "lisinopril",
            "type": "medication",
            "name": "Lisinopril",
            "priority": "required",
            "details": {"dose": "10", "unit": "mg"},
            "schedule": {"frequency": "daily", "times": [{"id": "am", "kind": "exact", "label": "morning", "at": "08:00"}]},
        },
        {
            "id": "walk",
            "type": "activity",
            "name": "Short walk",
            "priority": "optional",
            "schedule": {"frequency": "daily", "times": [{"id": "pm", "kind": "window", "label": "afternoon"}]},
        },
    ],
}

FUTURE_DAY = date(2099, 1, 5)


@pytest.fixture
def cli_env(tmp_dir):
    """Config path and a regimen file inside a temp directory."""
    config_path = os.path.join(tmp_dir, "config.yaml")
    regimen_path = os.path.join(tmp_dir, "regimen.yaml")
    with open(regimen_path, "w") as f:
        yaml.safe_dump(REGIMEN_YAML, f)
    return {"config": config_path, "regimen": regimen_path, "data_dir": os.path.join(tmp_dir, "data")}


def _invoke(runner, env, *args):
    return runner.invoke(main, ["--config", env["config"], "--patient", "mom", *args])


class TestCliGroup:
    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "carecadence" in result.output
        assert "init" in result.output
        assert "import-regimen" in result.output
        assert "today" in result.output
        assert "insights" in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestInitCommand:
    def test_init_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["init", "--help"])
        assert result.exit_code == 0
        assert "Set up" in result.output

    def test_init_writes_config(self, cli_env):
        runner = CliRunner()
        result = runner.invoke(
            main,
            ["--config", cli_env["config"], "init", "--data-dir", cli_env["data_dir"], "--patient-id", "mom"],
        )
        assert result.exit_code == 0, result.output
        with open(cli_env["config"]) as f:
            written = yaml.safe_load(f)
        assert written["engine"]["default_patient_id"] == "mom"
        assert written["paths"]["data_dir"] == cli_env["data_dir"]
        assert os.path.isdir(os.path.join(cli_env["data_dir"], "storage"))

    def test_init_keeps_existing_without_force(self, cli_env):
        runner = CliRunner()
        runner.invoke(main, ["--config", cli_env["config"], "init", "--data-dir", cli_env["data_dir"]])
        result = runner.invoke(main, ["--config", cli_env["config"], "init", "--patient-id", "dad"])
        assert result.exit_code == 0
        assert "already exists" in result.output
        with open(cli_env["config"]) as f:
            assert yaml.safe_load(f)["engine"]["default_patient_id"] == "default"


class TestCareCommands:
    def test_requires_init(self, cli_env):
        runner = CliRunner()
        result = _invoke(runner, cli_env, "today")
        assert result.exit_code == 1
        assert "carecadence init" in result.output

    def test_import_then_today(self, cli_env):
        runner = CliRunner()
        runner.invoke(main, ["--config", cli_env["config"], "init", "--data-dir", cli_env["data_dir"]])

        result = _invoke(runner, cli_env, "import-regimen", cli_env["regimen"])
        assert result.exit_code == 0, result.output
        assert "Imported 2 item(s)" in result.output
        assert "for mom" in result.output

        result = _invoke(runner, cli_env, "today", "--date", FUTURE_DAY.isoformat())
        assert result.exit_code == 0, result.output
        assert "Lisinopril" in result.output
        assert "Short walk" in result.output
        assert "0/2 completed" in result.output

    def test_complete_and_skip(self, cli_env):
        runner = CliRunner()
        runner.invoke(main, ["--config", cli_env["config"], "init", "--data-dir", cli_env["data_dir"]])
        _invoke(runner, cli_env, "import-regimen", cli_env["regimen"])
        _invoke(runner, cli_env, "today", "--date", FUTURE_DAY.isoformat())

        med_id = instance_id("lisinopril", "am", FUTURE_DAY)
        result = _invoke(runner, cli_env, "complete", med_id, "--outcome", "taken", "--by", "Sam")
        assert result.exit_code == 0, result.output
        assert "Lisinopril: completed" in result.output

        # A second completion is refused with a message, not a traceback
        result = _invoke(runner, cli_env, "complete", med_id)
        assert result.exit_code == 1
        assert "already completed" in result.output

        walk_id = instance_id("walk", "pm", FUTURE_DAY)
        result = _invoke(runner, cli_env, "skip", walk_id, "--notes", "raining")
        assert result.exit_code == 0, result.output
        assert "Short walk: skipped" in result.output

    def test_bad_date_option(self, cli_env):
        runner = CliRunner()
        runner.invoke(main, ["--config", cli_env["config"], "init", "--data-dir", cli_env["data_dir"]])
        result = _invoke(runner, cli_env, "today", "--date", "tomorrow")
        assert result.exit_code == 2
        assert "YYYY-MM-DD" in result.output


class TestReportCommands:
    def test_insights_and_reminders(self, cli_env):
        runner = CliRunner()
        runner.invoke(main, ["--config", cli_env["config"], "init", "--data-dir", cli_env["data_dir"]])
        _invoke(runner, cli_env, "import-regimen", cli_env["regimen"])

        result = _invoke(runner, cli_env, "insights", "--days", "3")
        assert result.exit_code == 0, result.output
        assert "Insights for mom" in result.output
        assert "Overall adherence" in result.output

        result = _invoke(runner, cli_env, "reminders")
        assert result.exit_code == 0, result.output
