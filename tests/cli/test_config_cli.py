"""Tests for the config commands."""

import json

from typer.testing import CliRunner

from dqscan.cli.exit_codes import ExitCode
from dqscan.main import app

runner = CliRunner()


class TestConfigCommands:
    """dqscan config ..."""

    def test_show_json(self, db_config) -> None:
        result = runner.invoke(app, ["config", "show", "--format", "json"])

        assert result.exit_code == 0, result.output
        assert "check_interval" in result.output

    def test_show_table(self, db_config) -> None:
        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0, result.output
        assert "Scheduler" in result.output
        assert "batch_size" in result.output

    def test_init_writes_file(self, db_config) -> None:
        result = runner.invoke(app, ["config", "init"])

        assert result.exit_code == 0, result.output
        assert (db_config.config_dir / "config.toml").exists()

    def test_init_refuses_overwrite(self, db_config) -> None:
        runner.invoke(app, ["config", "init"])

        result = runner.invoke(app, ["config", "init"])

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR
        assert "already exists" in result.output

    def test_validate_valid(self, db_config) -> None:
        result = runner.invoke(app, ["config", "validate"])

        assert result.exit_code == 0, result.output
        assert "Configuration is valid" in result.output

    def test_validate_errors(self, db_config) -> None:
        db_config.scheduler.batch_size = 0

        result = runner.invoke(app, ["config", "validate"])

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR
        assert "scheduler.batch_size" in result.output

    def test_global_config_option(self, db_config, tmp_path) -> None:
        config_path = tmp_path / "custom.toml"
        config_path.write_text(
            f'data_dir = "{db_config.data_dir}"\n\n[scheduler]\nbatch_size = 9\n'
        )

        result = runner.invoke(
            app, ["--config", str(config_path), "config", "show", "--format", "json"]
        )

        assert result.exit_code == 0, result.output
        assert '"batch_size": 9' in result.output
