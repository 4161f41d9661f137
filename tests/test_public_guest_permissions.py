"""
Tests for public/guest permission revocation.
"""

import pyodbc
import pytest

from autodbadmin.application.public_guest_permissions import (
    build_object_revoke,
    revoke_public_guest_permissions,
)
from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import OperationStatus

SALES_GRANTS = [
    {"permission_name": "EXECUTE", "schema_name": "dbo", "object_name": "usp_Report", "principal_name": "public"},
    {"permission_name": "SELECT", "schema_name": "dbo", "object_name": "Orders", "principal_name": "guest"},
]


@pytest.fixture
def granted(connector):
    connector.on_query("FROM sys.databases", [
        {"name": "master", "state_desc": "ONLINE"},
        {"name": "Sales", "state_desc": "ONLINE"},
        {"name": "tempdb", "state_desc": "ONLINE"},
    ])
    connector.on_query("FROM sys.database_permissions p",
                       lambda params, db: SALES_GRANTS if db == "Sales" else [])
    return connector


class TestRevokePublicGuestPermissions:

    def test_object_revoke(self):
        assert build_object_revoke(SALES_GRANTS[0]) == "REVOKE EXECUTE ON [dbo].[usp_Report] FROM [public]"

    def test_script_only_by_default(self, granted):
        results = revoke_public_guest_permissions(granted)

        assert [r.statement for r in results] == [
            "USE [master]; REVOKE VIEW ANY DATABASE FROM PUBLIC;",
            "USE [Sales]; REVOKE EXECUTE ON [dbo].[usp_Report] FROM [public];",
            "USE [Sales]; REVOKE SELECT ON [dbo].[Orders] FROM [guest];",
            "USE [Sales]; REVOKE CONNECT FROM GUEST;",
        ]
        assert {r.status for r in results} == {OperationStatus.SKIPPED}
        assert results[1].name == "Sales.dbo.usp_Report"
        assert granted.statements == []

    def test_execute(self, granted):
        results = revoke_public_guest_permissions(granted, script_only=False)

        assert {r.status for r in results} == {OperationStatus.SUCCESSFUL}
        assert [(s, db) for s, _, db in granted.statements] == [
            ("REVOKE VIEW ANY DATABASE FROM PUBLIC", "master"),
            ("REVOKE EXECUTE ON [dbo].[usp_Report] FROM [public]", "Sales"),
            ("REVOKE SELECT ON [dbo].[Orders] FROM [guest]", "Sales"),
            ("REVOKE CONNECT FROM GUEST", "Sales"),
        ]

    def test_excluded_database(self, granted):
        results = revoke_public_guest_permissions(granted, exclude_databases=["sales"])

        assert [r.name for r in results] == ["public"]

    def test_failed_revoke(self, granted):
        granted.fail_on("REVOKE CONNECT FROM GUEST", "Cannot revoke")

        results = revoke_public_guest_permissions(granted, script_only=False)

        assert results[-1].status == OperationStatus.FAILED
        assert results[-1].notes.startswith("REVOKE CONNECT FROM GUEST failed in Sales")

        with pytest.raises(OperationError, match="failed in Sales"):
            revoke_public_guest_permissions(granted, script_only=False, enable_exception=True)

    def test_unreadable_database_is_skipped(self, granted):
        def permissions(params, db):
            if db == "Sales":
                raise pyodbc.Error("42000", "The server principal is not able to access the database")
            return []

        granted.responses.insert(0, ("FROM sys.database_permissions p", permissions))

        results = revoke_public_guest_permissions(granted)

        assert [r.name for r in results] == ["public"]
