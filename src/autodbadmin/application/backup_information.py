"""
Backup file scanning.

Builds BackupHistory records from the backup files themselves (RESTORE
HEADERONLY / FILELISTONLY), so a restore can be planned without the
source server's msdb.
"""

from __future__ import annotations

import json
import logging
import ntpath
from pathlib import Path
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.common import matches, report_failure
from autodbadmin.domain.backup_chain import group_backup_sets
from autodbadmin.domain.errors import ConfigurationError
from autodbadmin.domain.models import HEADER_BACKUP_TYPES, BackupFileEntry, BackupHistory
from autodbadmin.infrastructure.tsql import quote_literal, split_server_instance

logger = logging.getLogger(__name__)

BACKUP_EXTENSIONS = (".bak", ".trn", ".dif", ".diff", ".log", ".full")
MAINTENANCE_FOLDERS = {"full": "FULL", "diff": "DIFF", "log": "LOG"}


def _device_clause(path: str) -> str:
    kind = "URL" if path.lower().startswith(("http://", "https://", "s3://")) else "DISK"
    return f"{kind} = {quote_literal(path)}"


def _text(value) -> str | None:
    return None if value is None else str(value)


def _looks_like_file(path: str) -> bool:
    return path.lower().endswith(BACKUP_EXTENSIONS)


def list_backup_files(connector, folder: str, recurse: bool = False) -> list[str]:
    """
    Files under a server-side folder, via xp_dirtree.

    xp_dirtree returns a depth-first listing; full paths are rebuilt from
    the depth column.
    """
    rows = connector.execute_query(
        "EXEC master.sys.xp_dirtree ?, ?, 1", [folder, 0 if recurse else 1]
    )
    root = folder.rstrip("\\/")
    stack: list[str] = []
    files = []
    for row in rows:
        depth = int(row["depth"])
        stack = stack[:depth - 1] + [row["subdirectory"]]
        if row["file"]:
            files.append(ntpath.join(root, *stack))
    logger.debug("xp_dirtree found %d files under %s", len(files), folder)
    return files


def _skip_maintenance_folder(path: str, ignore_log: bool, ignore_diff: bool) -> bool:
    """Ola Hallengren layout: <root>\\<server>\\<db>\\FULL|DIFF|LOG\\<file>."""
    folder = ntpath.basename(ntpath.dirname(path)).upper()
    if ignore_log and folder == MAINTENANCE_FOLDERS["log"]:
        return True
    if ignore_diff and folder == MAINTENANCE_FOLDERS["diff"]:
        return True
    return False


def read_backup_header(connector, path: str) -> list[BackupHistory]:
    """One record per backup set found in a backup file."""
    headers = connector.execute_query(
        f"RESTORE HEADERONLY FROM {_device_clause(path)}", autocommit=True
    )
    records = []
    for row in headers:
        computer, instance = split_server_instance(row["ServerName"] or "")
        backup_type = HEADER_BACKUP_TYPES.get(int(row["BackupType"]), str(row["BackupType"]))
        record = BackupHistory(
            computer_name=row.get("MachineName") or computer,
            instance_name=instance or "MSSQLSERVER",
            sql_instance=row["ServerName"] or "",
            database=row["DatabaseName"],
            user_name=row.get("UserName"),
            start=row["BackupStartDate"],
            end=row["BackupFinishDate"],
            path=[path],
            total_size=int(row["BackupSize"] or 0),
            compressed_backup_size=row.get("CompressedBackupSize"),
            type=backup_type,
            backup_set_guid=_text(row.get("BackupSetGUID")),
            position=int(row["Position"] or 1),
            device_type="URL" if _device_clause(path).startswith("URL") else "Disk",
            software=_text(row.get("SoftwareVendorId")),
            first_lsn=int(row["FirstLSN"] or 0),
            last_lsn=int(row["LastLSN"] or 0),
            checkpoint_lsn=int(row["CheckpointLSN"] or 0),
            database_backup_lsn=int(row["DatabaseBackupLSN"] or 0),
            is_copy_only=bool(row.get("IsCopyOnly")),
            recovery_model=row.get("RecoveryModel"),
            last_recovery_fork_guid=_text(row.get("RecoveryForkID")),
        )
        if not record.is_log:
            record.file_list = read_file_list(connector, path, record.position)
        records.append(record)
    return records


def read_file_list(connector, path: str, position: int = 1) -> list[BackupFileEntry]:
    rows = connector.execute_query(
        f"RESTORE FILELISTONLY FROM {_device_clause(path)} WITH FILE = {int(position)}",
        autocommit=True,
    )
    return [
        BackupFileEntry(
            type=row["Type"],
            logical_name=row["LogicalName"],
            physical_name=row["PhysicalName"],
            size=int(row["Size"] or 0),
            file_group=row.get("FileGroupName"),
        )
        for row in rows
    ]


def export_backup_information(records: Iterable[BackupHistory], export_path: Path) -> Path:
    export_path.parent.mkdir(parents=True, exist_ok=True)
    export_path.write_text(
        json.dumps([r.to_dict() for r in records], indent=2), encoding="utf-8"
    )
    logger.info("Backup information exported to %s", export_path)
    return export_path


def import_backup_information(import_path: Path) -> list[BackupHistory]:
    if not import_path.exists():
        raise ConfigurationError(f"Backup information file not found: {import_path}")
    try:
        data = json.loads(import_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {import_path}: {e.msg}") from e
    return [BackupHistory.from_dict(item) for item in data]


def get_backup_information(
    connector=None,
    paths: Optional[Iterable[str]] = None,
    database_names: Optional[Iterable[str]] = None,
    source_instances: Optional[Iterable[str]] = None,
    no_xp_dir_tree: bool = False,
    directory_recurse: bool = False,
    maintenance_solution: bool = False,
    ignore_log_backup: bool = False,
    ignore_diff_backup: bool = False,
    export_path: Optional[Path] = None,
    import_path: Optional[Path] = None,
    enable_exception: bool = False,
) -> list[BackupHistory]:
    """
    Scan backup files and describe the backup sets they contain.

    Args:
        connector: Instance that reads the files (it must see the paths)
        paths: Backup files or folders
        database_names: Keep only these databases
        source_instances: Keep only backups taken on these instances
        no_xp_dir_tree: Treat every path as a file
        directory_recurse: Descend into sub folders
        maintenance_solution: Folders follow the Ola Hallengren layout
        ignore_log_backup: Skip LOG folders (maintenance layout)
        ignore_diff_backup: Skip DIFF folders (maintenance layout)
        export_path: Also write the result as JSON
        import_path: Read a previous export instead of scanning
    """
    if import_path is not None:
        records = import_backup_information(import_path)
    else:
        if connector is None:
            raise ConfigurationError("A connector is required to scan backup files")
        files: list[str] = []
        for path in paths or ():
            if no_xp_dir_tree or _looks_like_file(path):
                files.append(path)
                continue
            try:
                files.extend(list_backup_files(connector, path, directory_recurse or maintenance_solution))
            except pyodbc.Error as e:
                report_failure(f"Cannot list {path}", error=e, enable_exception=enable_exception,
                               target=connector.server_instance)

        if maintenance_solution:
            files = [
                f for f in files
                if not _skip_maintenance_folder(f, ignore_log_backup, ignore_diff_backup)
            ]

        records = []
        for file in files:
            try:
                records.extend(read_backup_header(connector, file))
            except pyodbc.Error as e:
                report_failure(f"{file} is not a readable backup", error=e,
                               enable_exception=enable_exception, target=connector.server_instance)
        records = group_backup_sets(records)

    if database_names:
        records = [r for r in records if matches(r.database, database_names)]
    if source_instances:
        records = [r for r in records if matches(r.sql_instance, source_instances)]
    if ignore_log_backup:
        records = [r for r in records if not r.is_log]
    if ignore_diff_backup:
        records = [r for r in records if not r.is_diff]

    logger.info("Found %d backup sets", len(records))
    if export_path is not None:
        export_backup_information(records, export_path)
    return records
