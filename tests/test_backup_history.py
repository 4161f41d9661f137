"""
Tests for reading backup history from msdb.
"""

from datetime import datetime

import pytest

from autodbadmin.application.backup_history import get_db_backup_history
from tests.shared.fakes import FakeConnector


def history_row(set_id, database="Sales", type="D", first=0, last=0, checkpoint=0, base=0,
                finish=None, device="\\\\backup\\x.bak", guid=None, copy_only=False, mirror=0,
                device_type=2):
    finish = finish or datetime(2024, 1, 1)
    return {
        "backup_set_id": set_id,
        "backup_set_guid": guid or f"guid-{set_id}",
        "server_name": "SQL01\\INST1",
        "machine_name": "SQL01",
        "database_name": database,
        "user_name": "dba",
        "backup_start_date": finish,
        "backup_finish_date": finish,
        "type": type,
        "backup_size": 2048,
        "compressed_backup_size": 1024,
        "position": 1,
        "first_lsn": first,
        "last_lsn": last,
        "checkpoint_lsn": checkpoint,
        "database_backup_lsn": base,
        "is_copy_only": copy_only,
        "recovery_model": "FULL",
        "last_recovery_fork_guid": "fork-1",
        "physical_device_name": device,
        "device_type": device_type,
        "mirror": mirror,
        "software_name": "Microsoft SQL Server",
    }


@pytest.fixture
def msdb():
    rows = [
        history_row(1, type="D", first=90, last=100, checkpoint=95, finish=datetime(2024, 1, 1, 0, 0),
                    device="\\\\backup\\Sales_1.bak", guid="G1"),
        history_row(1, type="D", first=90, last=100, checkpoint=95, finish=datetime(2024, 1, 1, 0, 0),
                    device="\\\\backup\\Sales_2.bak", guid="G1"),
        history_row(2, type="I", first=150, last=200, base=95, finish=datetime(2024, 1, 1, 12, 0)),
        history_row(3, type="L", first=100, last=180, finish=datetime(2024, 1, 1, 10, 0)),
        history_row(4, type="L", first=180, last=250, finish=datetime(2024, 1, 1, 13, 0)),
        history_row(5, type="D", first=300, last=310, finish=datetime(2024, 1, 2), copy_only=True),
        history_row(6, database="HR", type="D", first=10, last=20, device_type=9,
                    device="https://acct.blob.core.windows.net/c/HR.bak"),
    ]
    files = [
        {"backup_set_id": 1, "file_type": "D", "logical_name": "Sales", "physical_name": "D:\\Sales.mdf",
         "file_size": 4096, "filegroup_name": "PRIMARY"},
        {"backup_set_id": 1, "file_type": "L", "logical_name": "Sales_log", "physical_name": "L:\\Sales.ldf",
         "file_size": 1024, "filegroup_name": None},
    ]
    connector = FakeConnector("SQL01\\INST1")
    connector.on_query("FROM msdb.dbo.backupset bs", rows)
    connector.on_query("FROM msdb.dbo.backupfile", files)
    return connector


class TestBackupHistory:
    """Filtering, grouping and selection of msdb rows."""

    def test_stripes_grouped_and_copy_only_dropped(self, msdb):
        history = get_db_backup_history(msdb, databases=["Sales"])

        assert [h.type for h in history] == ["Full", "Log", "Differential", "Log"]
        assert history[0].path == ["\\\\backup\\Sales_1.bak", "\\\\backup\\Sales_2.bak"]
        assert history[0].instance_name == "INST1"
        assert history[0].device_type == "Disk"

    def test_include_copy_only(self, msdb):
        history = get_db_backup_history(msdb, databases=["Sales"], include_copy_only=True)

        assert any(h.is_copy_only for h in history)

    def test_raw_keeps_every_device_row(self, msdb):
        history = get_db_backup_history(msdb, databases=["Sales"], raw=True)

        assert len(history) == 5

    def test_file_list_attached(self, msdb):
        full = get_db_backup_history(msdb, databases=["Sales"], last_full=True)[0]

        assert [f.logical_name for f in full.file_list] == ["Sales", "Sales_log"]
        assert full.file_list[0].file_group == "PRIMARY"
        [query] = msdb.queried("FROM msdb.dbo.backupfile")
        assert "IN (1)" in query[0]
        assert query[2] == "msdb"

    def test_last_chain(self, msdb):
        history = get_db_backup_history(msdb, databases=["sales"], last=True)

        assert [h.type for h in history] == ["Full", "Differential", "Log"]
        assert history[-1].last_lsn == 250

    def test_last_of_each_type(self, msdb):
        history = get_db_backup_history(msdb, databases=["Sales"], last_full=True, last_log=True)

        assert [(h.type, h.last_lsn) for h in history] == [("Full", 100), ("Log", 250)]

    def test_exclude_and_device_filter(self, msdb):
        history = get_db_backup_history(msdb, exclude_databases=["Sales"], device_type=["URL"])

        assert [h.database for h in history] == ["HR"]
        assert history[0].device_type == "URL"

    def test_type_and_lsn_filters(self, msdb):
        history = get_db_backup_history(msdb, databases=["Sales"], types=["Log"], last_lsn=200)

        assert [h.last_lsn for h in history] == [250]

    def test_since_is_passed_to_query(self, msdb):
        since = datetime(2024, 1, 1, 11, 0)

        get_db_backup_history(msdb, since=since)

        [query] = msdb.queried("FROM msdb.dbo.backupset bs")
        assert query[1] == [since]

    def test_no_rows(self):
        assert get_db_backup_history(FakeConnector()) == []
