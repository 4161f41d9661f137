"""
Tests for the command-line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from autodbadmin import __version__
from autodbadmin.interface import cli
from tests.shared.fakes import FakeConnector, make_backup

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda level, log_file=None: None)


@pytest.fixture
def instance(monkeypatch):
    connector = FakeConnector("SQL01")
    connector.on_query("FROM sys.databases", [{"name": "Sales", "state_desc": "ONLINE"}])
    monkeypatch.setattr(cli.Session, "connect", lambda self, target_id: connector)
    return connector


class TestCli:

    def test_version(self):
        result = runner.invoke(cli.app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_validate_config_without_targets(self, tmp_path):
        result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "validate-config"])

        assert result.exit_code == 1

    def test_validate_config(self, tmp_path):
        (tmp_path / "targets.json").write_text(
            json.dumps({"targets": [{"id": "prod", "server": "sql01"}]}), encoding="utf-8"
        )

        result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "validate-config"])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_revoke_prints_script_by_default(self, instance, tmp_path):
        result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "revoke-public-guest", "SQL01"])

        assert result.exit_code == 0
        assert "USE [master]; REVOKE VIEW ANY DATABASE FROM PUBLIC;" in result.output
        assert "USE [Sales]; REVOKE CONNECT FROM GUEST;" in result.output
        assert instance.statements == []

    def test_unknown_script_type(self, instance, tmp_path):
        result = runner.invoke(cli.app, [
            "--config-dir", str(tmp_path), "export-script", "SQL01", "--type", "Synonym", "--name", "s",
        ])

        assert result.exit_code == 2

    def test_toolkit_errors_exit_with_one(self, instance, tmp_path):
        path = tmp_path / "out.sql"
        path.write_text("keep", encoding="utf-8")

        result = runner.invoke(cli.app, [
            "--config-dir", str(tmp_path), "export-script", "SQL01", "--type", "Login", "--name", "app",
            "--file", str(path), "--no-clobber",
        ])

        assert result.exit_code == 1
        assert "no_clobber" in result.output

    def test_destructive_commands_ask_first(self, instance, tmp_path):
        result = runner.invoke(
            cli.app, ["--config-dir", str(tmp_path), "remove-orphan-users", "SQL01"], input="n\n"
        )

        assert result.exit_code == 1
        assert instance.statements == []

    @pytest.mark.parametrize("args", [
        ["set-compression", "SQL01", "--type", "Bogus"],
        ["job-history", "SQL01", "--outcome", "Bogus"],
        ["new-server-audit", "SQL01", "--on-failure", "Bogus", "--audit-folder", "E:\\Audit\\"],
    ])
    def test_rejected_values_are_usage_errors(self, instance, tmp_path, args):
        result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), *args])

        assert result.exit_code == 2
        assert "bogus" in result.output.lower()
        assert not isinstance(result.exception, ValueError)

    def test_restore_script_from_exported_information(self, instance, tmp_path):
        export = tmp_path / "sales.json"
        full = make_backup(type="Full", first_lsn=90, last_lsn=100, checkpoint_lsn=95)
        export.write_text(json.dumps([full.to_dict()]), encoding="utf-8")

        result = runner.invoke(cli.app, [
            "--config-dir", str(tmp_path), "restore", "SQL01", "--import-json", str(export),
            "--database-name", "Copy", "--file-mapping", "sales=E:\\Data\\Copy.mdf",
            "--replace-db-name-in-file", "--file-suffix", "_01", "--standby-directory", "S:\\Standby",
            "--script-only",
        ])

        assert result.exit_code == 0
        assert "[Copy]" in result.output
        assert "N'E:\\Data\\Copy.mdf'" in result.output
        assert "N'L:\\Logs\\Copy_log_01.ldf'" in result.output
        assert "N'S:\\Standby\\Copy_standby.bak'" in result.output
        assert instance.statements == []

    def test_malformed_file_mapping(self, instance, tmp_path):
        export = tmp_path / "sales.json"
        export.write_text(json.dumps([make_backup(type="Full", last_lsn=100).to_dict()]), encoding="utf-8")

        result = runner.invoke(cli.app, [
            "--config-dir", str(tmp_path), "restore", "SQL01", "--import-json", str(export),
            "--file-mapping", "E:\\Data\\Copy.mdf", "--script-only",
        ])

        assert result.exit_code == 2
