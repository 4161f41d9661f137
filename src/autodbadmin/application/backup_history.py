"""
Backup history from msdb.

Reads backupset, backupmediafamily and backupfile, and turns the rows
into BackupHistory records (one per backup set unless ``raw``).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from autodbadmin.application.common import filter_names
from autodbadmin.domain.backup_chain import (
    group_backup_sets,
    select_last_chain,
    sort_history,
    split_by_database,
)
from autodbadmin.domain.models import MSDB_BACKUP_TYPES, BackupFileEntry, BackupHistory
from autodbadmin.infrastructure.tsql import split_server_instance

logger = logging.getLogger(__name__)

DEVICE_TYPES = {
    2: "Disk",
    5: "Tape",
    7: "Virtual Device",
    9: "URL",
    102: "Permanent Disk Device",
    105: "Permanent Tape Device",
}

BACKUP_HISTORY_SQL = """
SELECT
    bs.backup_set_id,
    CONVERT(varchar(36), bs.backup_set_uuid) AS backup_set_guid,
    bs.server_name,
    bs.machine_name,
    bs.database_name,
    bs.user_name,
    bs.backup_start_date,
    bs.backup_finish_date,
    bs.type,
    bs.backup_size,
    bs.compressed_backup_size,
    bs.position,
    bs.first_lsn,
    bs.last_lsn,
    bs.checkpoint_lsn,
    bs.database_backup_lsn,
    bs.is_copy_only,
    bs.recovery_model,
    CONVERT(varchar(36), bs.last_recovery_fork_guid) AS last_recovery_fork_guid,
    mf.physical_device_name,
    mf.device_type,
    mf.mirror,
    ms.software_name
FROM msdb.dbo.backupset bs
JOIN msdb.dbo.backupmediafamily mf ON mf.media_set_id = bs.media_set_id
JOIN msdb.dbo.backupmediaset ms ON ms.media_set_id = bs.media_set_id
WHERE bs.backup_finish_date >= ?
"""

BACKUP_FILES_SQL = """
SELECT backup_set_id, file_type, logical_name, physical_name, file_size, filegroup_name
FROM msdb.dbo.backupfile
WHERE state <> 8 AND backup_set_id IN ({ids})
ORDER BY backup_set_id, file_number
"""


def _record_from_row(row: dict) -> BackupHistory:
    computer, instance = split_server_instance(row["server_name"] or "")
    return BackupHistory(
        computer_name=row["machine_name"] or computer,
        instance_name=instance or "MSSQLSERVER",
        sql_instance=row["server_name"] or "",
        database=row["database_name"],
        user_name=row["user_name"],
        start=row["backup_start_date"],
        end=row["backup_finish_date"],
        path=[row["physical_device_name"]],
        total_size=int(row["backup_size"] or 0),
        compressed_backup_size=row["compressed_backup_size"],
        type=MSDB_BACKUP_TYPES.get(row["type"], row["type"]),
        backup_set_id=row["backup_set_id"],
        backup_set_guid=row["backup_set_guid"],
        position=row["position"] or 1,
        device_type=DEVICE_TYPES.get(row["device_type"], str(row["device_type"])),
        software=row["software_name"],
        first_lsn=int(row["first_lsn"] or 0),
        last_lsn=int(row["last_lsn"] or 0),
        checkpoint_lsn=int(row["checkpoint_lsn"] or 0),
        database_backup_lsn=int(row["database_backup_lsn"] or 0),
        is_copy_only=bool(row["is_copy_only"]),
        recovery_model=row["recovery_model"],
        last_recovery_fork_guid=row["last_recovery_fork_guid"],
    )


def _attach_file_lists(connector, records: list[BackupHistory]) -> None:
    ids = sorted({r.backup_set_id for r in records if r.backup_set_id is not None})
    if not ids:
        return
    rows = connector.execute_query(
        BACKUP_FILES_SQL.format(ids=", ".join(str(int(i)) for i in ids)), database="msdb"
    )
    files = defaultdict(list)
    for row in rows:
        files[row["backup_set_id"]].append(BackupFileEntry(
            type=row["file_type"],
            logical_name=row["logical_name"],
            physical_name=row["physical_name"],
            size=int(row["file_size"] or 0),
            file_group=row["filegroup_name"],
        ))
    for record in records:
        record.file_list = files.get(record.backup_set_id, [])


def _latest_of_type(records: list[BackupHistory], predicate) -> BackupHistory | None:
    candidates = [r for r in records if predicate(r)]
    if not candidates:
        return None
    return max(candidates, key=lambda r: (r.end or datetime.min, r.last_lsn))


def get_db_backup_history(
    connector,
    databases: Optional[Iterable[str]] = None,
    exclude_databases: Optional[Iterable[str]] = None,
    include_copy_only: bool = False,
    since: Optional[datetime] = None,
    recovery_fork: Optional[str] = None,
    last: bool = False,
    last_full: bool = False,
    last_diff: bool = False,
    last_log: bool = False,
    device_type: Optional[Iterable[str]] = None,
    raw: bool = False,
    last_lsn: Optional[int] = None,
    include_mirror: bool = False,
    types: Optional[Iterable[str]] = None,
) -> list[BackupHistory]:
    """
    Backup history recorded in msdb.

    Args:
        connector: Instance whose msdb is read
        databases: Only these databases
        exclude_databases: Skip these databases
        include_copy_only: Keep copy-only backups
        since: Only backups finished at or after this moment
        recovery_fork: Only backups on this recovery fork GUID
        last: Latest restorable chain per database
        last_full: Latest full per database
        last_diff: Latest differential per database
        last_log: Latest log backup per database
        device_type: Only these device types (Disk, URL, ...)
        raw: One record per media family row instead of per backup set
        last_lsn: Only backups ending after this LSN
        include_mirror: Keep mirrored media copies
        types: Only these backup types (Full, Differential, Log, ...)

    Returns:
        Records ordered by database and LSN
    """
    rows = connector.execute_query(
        BACKUP_HISTORY_SQL, [since or datetime(1900, 1, 1)], database="msdb"
    )
    logger.debug("Read %d backup history rows from %s", len(rows), connector.server_instance)

    names = filter_names({r["database_name"] for r in rows}, databases, exclude_databases)
    wanted = {n.lower() for n in names}
    device_filter = {d.lower() for d in device_type or ()}
    type_filter = {t.lower() for t in types or ()}

    records = []
    for row in rows:
        if row["database_name"].lower() not in wanted:
            continue
        if row["mirror"] and not include_mirror:
            continue
        if row["is_copy_only"] and not include_copy_only:
            continue
        record = _record_from_row(row)
        if recovery_fork and (record.last_recovery_fork_guid or "").lower() != recovery_fork.lower():
            continue
        if device_filter and (record.device_type or "").lower() not in device_filter:
            continue
        if type_filter and record.type.lower() not in type_filter:
            continue
        if last_lsn is not None and record.last_lsn <= last_lsn:
            continue
        records.append(record)

    if not raw:
        records = group_backup_sets(records)

    if last or last_full or last_diff or last_log:
        selected: list[BackupHistory] = []
        for database, history in split_by_database(records).items():
            if last:
                chain = select_last_chain(history)
                if not chain:
                    logger.warning("No full backup found for %s", database)
                selected.extend(chain)
                continue
            if last_full:
                full = _latest_of_type(history, lambda r: r.is_full)
                if full:
                    selected.append(full)
            if last_diff:
                diff = _latest_of_type(history, lambda r: r.is_diff)
                if diff:
                    selected.append(diff)
            if last_log:
                log = _latest_of_type(history, lambda r: r.is_log)
                if log:
                    selected.append(log)
        records = selected

    _attach_file_lists(connector, records)
    return records if (last or raw) else sort_history(records)
