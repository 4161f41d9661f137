"""
Tests for the privileged-use server audit.
"""

import pytest

from autodbadmin.application.server_audit import (
    ACTION_GROUPS,
    DEFAULT_AUDIT_NAME,
    audit_folder_from_master,
    build_audit_filter,
    build_server_audit_statements,
    new_server_audit,
)
from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import OperationStatus

MASTER_MDF = "C:\\Program Files\\Microsoft SQL Server\\MSSQL16.MSSQLSERVER\\MSSQL\\DATA\\master.mdf"
AUDIT_FOLDER = "C:\\Program Files\\Microsoft SQL Server\\MSSQL16.MSSQLSERVER\\MSSQL\\Audit\\"


@pytest.fixture
def server(connector):
    connector.on_scalar("FROM sys.master_files", MASTER_MDF)
    connector.on_scalar("SELECT COUNT(*) FROM sys.server_audits", 0)
    connector.on_scalar("sys.server_audit_specifications", None)
    return connector


class TestAuditStatements:

    def test_folder_beside_data(self):
        assert audit_folder_from_master(MASTER_MDF) == AUDIT_FOLDER

    def test_filter_drops_internal_noise(self):
        where = build_audit_filter()

        assert where.startswith("(Statement <> '19671018-446f-6871-7479-4036b61489d8')")
        assert "Object_Name = 'sysschobjs'" in where
        assert "Object_Name = 'server audits$'" in where
        assert "N'" not in where

    def test_statement_order(self):
        statements = build_server_audit_statements("E:\\Audit\\", on_failure="continue")

        assert [action for action, _ in statements] == [
            "Create audit folder",
            "Create server audit",
            "Set audit filter",
            "Enable server audit",
            "Create audit specification",
        ]
        assert statements[0][1] == "EXEC master.dbo.xp_create_subdir N'E:\\Audit\\'"
        assert "ON_FAILURE = CONTINUE" in statements[1][1]
        assert "MAXSIZE = 100 MB" in statements[1][1]
        spec = statements[4][1]
        assert spec.startswith(f"CREATE SERVER AUDIT SPECIFICATION [PrivilegedUse]\nFOR SERVER AUDIT [{DEFAULT_AUDIT_NAME}]")
        assert spec.count("ADD (") == len(ACTION_GROUPS)

    def test_fixed_audit_guid(self):
        create = build_server_audit_statements("E:\\Audit\\")[1][1]

        assert create.endswith(
            ") WITH (QUEUE_DELAY = 1000, ON_FAILURE = SHUTDOWN, AUDIT_GUID = '19671018-446f-6871-7479-4036b61489d8')"
        )

    def test_generated_audit_guid(self):
        create = build_server_audit_statements("E:\\Audit\\", audit_guid=None)[1][1]

        assert "AUDIT_GUID" not in create
        assert create.endswith(") WITH (QUEUE_DELAY = 1000, ON_FAILURE = SHUTDOWN)")

    def test_invalid_on_failure(self):
        with pytest.raises(ValueError, match="Invalid on_failure 'IGNORE'"):
            build_server_audit_statements("E:\\Audit\\", on_failure="ignore")


class TestNewServerAudit:
    """Creating the audit on an instance."""

    def test_creates_audit(self, server):
        results = new_server_audit(server)

        assert [r.status for r in results] == [OperationStatus.SUCCESSFUL] * 5
        assert server.statements[0][0] == f"EXEC master.dbo.xp_create_subdir N'{AUDIT_FOLDER}'"
        assert server.executed(f"FILEPATH = N'{AUDIT_FOLDER}'")
        assert all(r.name == DEFAULT_AUDIT_NAME for r in results)

    def test_script_only(self, server):
        results = new_server_audit(server, audit_folder="E:\\Audit\\", script_only=True)

        assert {r.status for r in results} == {OperationStatus.SKIPPED}
        assert results[0].statement == "EXEC master.dbo.xp_create_subdir N'E:\\Audit\\'"
        assert server.statements == []
        assert not server.queried("sys.master_files")

    def test_existing_audit_needs_force(self, server):
        server.scalars.insert(0, ("SELECT COUNT(*) FROM sys.server_audits", 1))

        [result] = new_server_audit(server)

        assert result.status == OperationStatus.SKIPPED
        assert "Use force" in result.notes
        assert server.statements == []

    def test_force_drops_first(self, server):
        server.scalars.insert(0, ("SELECT COUNT(*) FROM sys.server_audits", 1))
        server.scalars.insert(0, ("sys.server_audit_specifications", "OldSpec"))

        results = new_server_audit(server, force=True)

        assert [r.action for r in results[:4]] == [
            "Disable audit specification",
            "Drop audit specification",
            "Disable server audit",
            "Drop server audit",
        ]
        assert server.statements[1][0] == "DROP SERVER AUDIT SPECIFICATION [OldSpec]"
        assert len(results) == 9

    def test_failure_skips_remaining(self, server):
        server.fail_on("WHERE (Statement", "Incorrect syntax")

        results = new_server_audit(server)

        assert [r.status for r in results] == [
            OperationStatus.SUCCESSFUL,
            OperationStatus.SUCCESSFUL,
            OperationStatus.FAILED,
            OperationStatus.SKIPPED,
            OperationStatus.SKIPPED,
        ]
        assert results[3].notes == "Not run after 'Set audit filter' failed"
        assert len(server.statements) == 3

    def test_unreadable_configuration(self, server):
        server.fail_on("sys.master_files", "VIEW SERVER STATE permission denied")

        assert new_server_audit(server) == []

        with pytest.raises(OperationError, match="Cannot read server audit configuration"):
            new_server_audit(server, enable_exception=True)
