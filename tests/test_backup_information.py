"""
Tests for reading backup headers from files.
"""

from datetime import datetime

import pytest

from autodbadmin.application.backup_information import (
    get_backup_information,
    list_backup_files,
)
from autodbadmin.domain.errors import ConfigurationError, OperationError

ROOT = "\\\\nas\\SQL01\\Sales"
FULL_FILE = ROOT + "\\FULL\\Sales_FULL.bak"
LOG_FILE = ROOT + "\\LOG\\Sales_LOG_1.trn"


def header(backup_type, first_lsn, last_lsn, guid, checkpoint_lsn=0, database_backup_lsn=0):
    return {
        "ServerName": "SQL01\\INST1",
        "MachineName": "SQL01",
        "DatabaseName": "Sales",
        "UserName": "DOMAIN\\svc_sql",
        "BackupStartDate": datetime(2024, 1, 1, 0, 0),
        "BackupFinishDate": datetime(2024, 1, 1, 0, 5),
        "BackupSize": 4096,
        "CompressedBackupSize": 1024,
        "BackupType": backup_type,
        "BackupSetGUID": guid,
        "Position": 1,
        "SoftwareVendorId": 4608,
        "FirstLSN": first_lsn,
        "LastLSN": last_lsn,
        "CheckpointLSN": checkpoint_lsn,
        "DatabaseBackupLSN": database_backup_lsn,
        "IsCopyOnly": 0,
        "RecoveryModel": "FULL",
        "RecoveryForkID": "fork-1",
    }


@pytest.fixture
def share(connector):
    connector.on_query("xp_dirtree", [
        {"subdirectory": "FULL", "depth": 1, "file": 0},
        {"subdirectory": "Sales_FULL.bak", "depth": 2, "file": 1},
        {"subdirectory": "LOG", "depth": 1, "file": 0},
        {"subdirectory": "Sales_LOG_1.trn", "depth": 2, "file": 1},
    ])
    connector.on_query(f"HEADERONLY FROM DISK = N'{FULL_FILE}'", [header(1, 90, 100, "AAA", checkpoint_lsn=95)])
    connector.on_query(f"HEADERONLY FROM DISK = N'{LOG_FILE}'", [header(2, 100, 180, "BBB")])
    connector.on_query("FILELISTONLY", [
        {"Type": "D", "LogicalName": "Sales", "PhysicalName": "D:\\Data\\Sales.mdf",
         "Size": 1048576, "FileGroupName": "PRIMARY"},
        {"Type": "L", "LogicalName": "Sales_log", "PhysicalName": "L:\\Logs\\Sales_log.ldf",
         "Size": 524288, "FileGroupName": None},
    ])
    return connector


class TestListBackupFiles:

    def test_paths_rebuilt_from_depth(self, share):
        assert list_backup_files(share, ROOT + "\\", recurse=True) == [FULL_FILE, LOG_FILE]
        [(_, params, _)] = share.queried("xp_dirtree")
        assert params == [ROOT + "\\", 0]


class TestGetBackupInformation:
    """Backup sets read from files."""

    def test_folder_scan(self, share):
        records = get_backup_information(share, paths=[ROOT], maintenance_solution=True)

        assert [(r.type, r.first_lsn, r.last_lsn) for r in records] == [("Full", 90, 100), ("Log", 100, 180)]
        full, log = records
        assert full.sql_instance == "SQL01\\INST1"
        assert full.instance_name == "INST1"
        assert full.computer_name == "SQL01"
        assert full.software == "4608"
        assert [f.logical_name for f in full.file_list] == ["Sales", "Sales_log"]
        assert full.file_list[0].file_group == "PRIMARY"
        assert log.file_list == []
        assert len(share.queried("FILELISTONLY")) == 1

    def test_ignore_log_folder(self, share):
        records = get_backup_information(share, paths=[ROOT], maintenance_solution=True, ignore_log_backup=True)

        assert [r.type for r in records] == ["Full"]
        assert not share.queried(f"HEADERONLY FROM DISK = N'{LOG_FILE}'")

    def test_files_are_not_listed(self, share):
        get_backup_information(share, paths=[FULL_FILE])

        assert not share.queried("xp_dirtree")

    def test_stripes_grouped(self, share):
        second = ROOT + "\\FULL\\Sales_FULL_2.bak"
        share.on_query(f"HEADERONLY FROM DISK = N'{second}'", [header(1, 90, 100, "aaa", checkpoint_lsn=95)])

        [record] = get_backup_information(share, paths=[FULL_FILE, second])

        assert record.path == [FULL_FILE, second]

    def test_url_device(self, share):
        url = "https://acct.blob.core.windows.net/sql/Sales.bak"
        share.on_query(f"HEADERONLY FROM URL = N'{url}'", [header(1, 90, 100, "CCC")])

        [record] = get_backup_information(share, paths=[url])

        assert record.device_type == "URL"
        assert share.queried(f"FILELISTONLY FROM URL = N'{url}' WITH FILE = 1")

    def test_filters(self, share):
        assert get_backup_information(share, paths=[FULL_FILE], database_names=["HR"]) == []
        assert get_backup_information(share, paths=[FULL_FILE], source_instances=["sql01\\inst1"])

    def test_unreadable_file(self, share):
        share.fail_on("Sales_LOG_1.trn", "The media family on device is incorrectly formed")

        records = get_backup_information(share, paths=[FULL_FILE, LOG_FILE])
        assert [r.type for r in records] == ["Full"]

        with pytest.raises(OperationError, match="is not a readable backup"):
            get_backup_information(share, paths=[LOG_FILE], enable_exception=True)

    def test_connector_required(self):
        with pytest.raises(ConfigurationError, match="connector is required"):
            get_backup_information(paths=[FULL_FILE])


class TestExportImport:

    def test_import_previous_export(self, share, tmp_path):
        export = tmp_path / "scan" / "sales.json"
        scanned = get_backup_information(share, paths=[FULL_FILE, LOG_FILE], export_path=export)

        imported = get_backup_information(import_path=export, ignore_log_backup=True)

        assert len(scanned) == 2
        [full] = imported
        assert full.end == datetime(2024, 1, 1, 0, 5)
        assert full.checkpoint_lsn == 95
        assert full.file_list[1].physical_name == "L:\\Logs\\Sales_log.ldf"

    def test_missing_import_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            get_backup_information(import_path=tmp_path / "nope.json")

    def test_invalid_import_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("[{", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            get_backup_information(import_path=path)
