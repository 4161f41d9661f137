"""
Tests for T-SQL script export.
"""

import pytest

from autodbadmin.application import script_export
from autodbadmin.application.script_export import (
    ScriptObject,
    build_job_script,
    build_login_script,
    build_table_script,
    build_user_script,
    default_export_path,
    export_script,
    format_column_type,
)
from autodbadmin.domain.errors import OperationError

ORDER_COLUMNS = [
    {"name": "OrderId", "type_name": "int", "max_length": 4, "precision": 10, "scale": 0,
     "is_nullable": False, "is_identity": True, "seed_value": 1, "increment_value": 1,
     "computed_definition": None, "is_persisted": None, "default_name": None, "default_definition": None},
    {"name": "Customer", "type_name": "nvarchar", "max_length": 100, "precision": 0, "scale": 0,
     "is_nullable": True, "is_identity": False, "seed_value": None, "increment_value": None,
     "computed_definition": None, "is_persisted": None, "default_name": None, "default_definition": None},
    {"name": "Amount", "type_name": "decimal", "max_length": 9, "precision": 18, "scale": 2,
     "is_nullable": False, "is_identity": False, "seed_value": None, "increment_value": None,
     "computed_definition": None, "is_persisted": None,
     "default_name": "DF_Orders_Amount", "default_definition": "((0))"},
    {"name": "Total", "type_name": "decimal", "max_length": 9, "precision": 19, "scale": 2,
     "is_nullable": True, "is_identity": False, "seed_value": None, "increment_value": None,
     "computed_definition": "([Amount]*(2))", "is_persisted": True,
     "default_name": None, "default_definition": None},
]
ORDER_KEY = [{"constraint_name": "PK_Orders", "type_desc": "CLUSTERED", "column_name": "OrderId",
              "is_descending_key": False}]

SQL_LOGIN = {
    "name": "app", "type_desc": "SQL_LOGIN", "is_disabled": False,
    "default_database_name": "Sales", "default_language_name": "us_english",
    "sid": b"\x01\x02", "password_hash": b"\x02\x00\xab",
    "is_policy_checked": True, "is_expiration_checked": False,
}

JOB = {"job_id": "0F1E2D3C-4B5A-6978-8796-A5B4C3D2E1F0", "name": "Nightly", "enabled": True,
       "description": "Nightly backups", "category": "Database Maintenance", "owner": "sa", "start_step_id": 1}
JOB_STEPS = [{
    "step_id": 1, "step_name": "Backup", "subsystem": "TSQL",
    "command": "EXEC dbo.DatabaseBackup @Databases = 'USER_DATABASES'", "database_name": "master",
    "on_success_action": 1, "on_success_step_id": 0, "on_fail_action": 2, "on_fail_step_id": 0,
    "retry_attempts": 0, "retry_interval": 0, "output_file_name": None,
}]
JOB_SCHEDULES = [{
    "name": "Daily 01:00", "enabled": 1, "freq_type": 4, "freq_interval": 1, "freq_subday_type": 1,
    "freq_subday_interval": 0, "freq_relative_interval": 0, "freq_recurrence_factor": 0,
    "active_start_date": 20240101, "active_end_date": 99991231,
    "active_start_time": 10000, "active_end_time": 235959,
}]


@pytest.fixture
def catalog(connector):
    connector.on_query("OBJECT_DEFINITION", lambda params, db: (
        [{"definition": "\nCREATE VIEW dbo.OpenOrders AS SELECT 1 AS x\n"}] if params[0] == "OpenOrders" else []
    ))
    connector.on_query("FROM sys.columns c", ORDER_COLUMNS)
    connector.on_query("sys.key_constraints", ORDER_KEY)
    connector.on_query("FROM sys.server_principals p", [SQL_LOGIN])
    connector.on_query("FROM msdb.dbo.sysjobs j", [JOB])
    connector.on_query("FROM msdb.dbo.sysjobsteps", JOB_STEPS)
    connector.on_query("msdb.dbo.sysjobschedules", JOB_SCHEDULES)
    return connector


class TestBuilders:
    """DDL assembled from catalog rows."""

    @pytest.mark.parametrize("args,expected", [
        (("nvarchar", 100, 0, 0), "nvarchar(50)"),
        (("varchar", -1, 0, 0), "varchar(max)"),
        (("varbinary", 16, 0, 0), "varbinary(16)"),
        (("decimal", 9, 18, 2), "decimal(18,2)"),
        (("datetime2", 8, 27, 7), "datetime2(7)"),
        (("int", 4, 10, 0), "int"),
    ])
    def test_column_types(self, args, expected):
        assert format_column_type(*args) == expected

    def test_table(self):
        assert build_table_script("dbo", "Orders", ORDER_COLUMNS, ORDER_KEY) == (
            "CREATE TABLE [dbo].[Orders]\n(\n"
            "    [OrderId] int IDENTITY(1,1) NOT NULL,\n"
            "    [Customer] nvarchar(50) NULL,\n"
            "    [Amount] decimal(18,2) NOT NULL CONSTRAINT [DF_Orders_Amount] DEFAULT ((0)),\n"
            "    [Total] AS ([Amount]*(2)) PERSISTED,\n"
            "    CONSTRAINT [PK_Orders] PRIMARY KEY CLUSTERED ([OrderId] ASC)\n"
            ")"
        )

    def test_sql_login_keeps_hash_and_sid(self):
        assert build_login_script(SQL_LOGIN) == (
            "IF NOT EXISTS (SELECT 1 FROM sys.server_principals WHERE name = N'app')\n"
            "    CREATE LOGIN [app] WITH PASSWORD = 0x0200AB HASHED, SID = 0x0102, "
            "DEFAULT_DATABASE = [Sales], DEFAULT_LANGUAGE = [us_english], "
            "CHECK_POLICY = ON, CHECK_EXPIRATION = OFF"
        )

    def test_disabled_windows_login(self):
        script = build_login_script({
            "name": "DOM\\svc", "type_desc": "WINDOWS_LOGIN", "is_disabled": True,
            "default_database_name": None, "default_language_name": None,
            "sid": b"\x01", "password_hash": None,
            "is_policy_checked": None, "is_expiration_checked": None,
        })

        assert "CREATE LOGIN [DOM\\svc] FROM WINDOWS WITH DEFAULT_DATABASE = [master]" in script
        assert script.endswith("\nALTER LOGIN [DOM\\svc] DISABLE")

    def test_user_with_roles(self):
        script = build_user_script(
            {"name": "app", "login_name": "app", "default_schema_name": "sales"},
            ["db_datareader", "reporting"],
        )

        assert script.splitlines()[1:] == [
            "    CREATE USER [app] FOR LOGIN [app] WITH DEFAULT_SCHEMA = [sales]",
            "ALTER ROLE [db_datareader] ADD MEMBER [app]",
            "ALTER ROLE [reporting] ADD MEMBER [app]",
        ]

    def test_user_without_login(self):
        script = build_user_script({"name": "loader", "login_name": None, "default_schema_name": None}, [])

        assert script.endswith("    CREATE USER [loader] WITHOUT LOGIN")

    def test_job(self):
        lines = build_job_script(JOB, JOB_STEPS, JOB_SCHEDULES).splitlines()

        assert lines[0] == "DECLARE @jobId BINARY(16)"
        assert lines[1] == (
            "EXEC msdb.dbo.sp_add_job @job_name = N'Nightly', @enabled = 1, "
            "@description = N'Nightly backups', @category_name = N'Database Maintenance', "
            "@owner_login_name = N'sa', @job_id = @jobId OUTPUT"
        )
        assert lines[2].startswith("EXEC msdb.dbo.sp_add_jobstep @job_id = @jobId, @step_id = 1, @step_name = N'Backup'")
        assert "@command = N'EXEC dbo.DatabaseBackup @Databases = ''USER_DATABASES'''" in lines[2]
        assert "output_file_name" not in lines[2]
        assert lines[3] == "EXEC msdb.dbo.sp_update_job @job_id = @jobId, @start_step_id = 1"
        assert "@active_start_time = 10000" in lines[4]
        assert lines[5] == "EXEC msdb.dbo.sp_add_jobserver @job_id = @jobId, @server_name = N'(local)'"

    def test_unknown_object_type(self):
        with pytest.raises(ValueError, match="Cannot script objects of type 'Synonym'"):
            ScriptObject("Synonym", "s")

    def test_default_path(self, tmp_path):
        path = default_export_path(tmp_path, "SQL01\\INST1,1500", [ScriptObject("Login", "app")])

        assert path.parent == tmp_path
        assert path.name.startswith("SQL01$INST1_1500-")
        assert path.name.endswith("-Login.sql")


class TestExportScript:
    """Whole-file export."""

    def test_passthru_switches_database(self, catalog):
        text = export_script(catalog, [
            ScriptObject("View", "OpenOrders", database="Sales"),
            ScriptObject("Table", "Orders", database="Sales"),
            ScriptObject("Login", "app", database="Sales"),
        ], no_prefix=True, passthru=True)

        assert text.startswith("USE [Sales]\nGO\nCREATE VIEW dbo.OpenOrders AS SELECT 1 AS x\nGO\n")
        assert text.count("USE [Sales]") == 1
        assert "CREATE TABLE [dbo].[Orders]" in text
        assert text.endswith("CHECK_EXPIRATION = OFF\nGO\n")
        [(sql, params, database)] = catalog.queried("FROM sys.columns c")
        assert params == ["[dbo].[Orders]"]
        assert database == "Sales"

    def test_header(self, catalog, monkeypatch):
        monkeypatch.setattr(script_export.getpass, "getuser", lambda: "dba")

        text = export_script(catalog, [ScriptObject("AgentJob", "Nightly")], passthru=True)

        assert text.startswith("/*\n    Created by dba using autodbadmin ")
        assert "    Instance: SQL01\n*/\n" in text

    def test_writes_and_appends(self, catalog, tmp_path):
        path = tmp_path / "out.sql"

        export_script(catalog, [ScriptObject("Login", "app")], file_path=path, no_prefix=True)
        export_script(catalog, [ScriptObject("AgentJob", "Nightly")], file_path=path, no_prefix=True, append=True)

        text = path.read_text(encoding="utf-8")
        assert text.index("CREATE LOGIN") < text.index("sp_add_job")

    def test_no_clobber(self, catalog, tmp_path):
        path = tmp_path / "out.sql"
        path.write_text("keep me", encoding="utf-8")

        with pytest.raises(OperationError, match="no_clobber"):
            export_script(catalog, [ScriptObject("Login", "app")], file_path=path, no_clobber=True)
        assert path.read_text(encoding="utf-8") == "keep me"

    def test_custom_separator(self, catalog):
        text = export_script(catalog, [ScriptObject("Login", "app")], no_prefix=True, passthru=True,
                             batch_separator="")

        assert "GO" not in text

    def test_missing_object_skipped(self, catalog):
        text = export_script(catalog, [
            ScriptObject("View", "Gone", database="Sales"),
            ScriptObject("Login", "app"),
        ], no_prefix=True, passthru=True)

        assert "Gone" not in text
        assert "CREATE LOGIN [app]" in text

    def test_missing_object_raises_when_enabled(self, catalog):
        with pytest.raises(OperationError, match="View dbo.Gone not found"):
            export_script(catalog, [ScriptObject("View", "Gone")], passthru=True, enable_exception=True)
