"""
Database restores.

Plans the restore of each database from its backup history (a full, an
optional differential and continuous log backups), relocates files, and
either runs the RESTORE statements or returns them as a script.
"""

from __future__ import annotations

import logging
import ntpath
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.backup_information import get_backup_information
from autodbadmin.application.common import report_failure
from autodbadmin.domain.backup_chain import select_restore_chain, split_by_database, verify_log_chain
from autodbadmin.domain.errors import BackupChainError
from autodbadmin.domain.models import BackupFileEntry, BackupHistory, OperationStatus, RestoreResult
from autodbadmin.infrastructure.tsql import format_datetime, quote_identifier, quote_literal

logger = logging.getLogger(__name__)

DEFAULT_PATHS_SQL = """
SELECT
    CAST(SERVERPROPERTY('InstanceDefaultDataPath') AS NVARCHAR(512)) AS data_path,
    CAST(SERVERPROPERTY('InstanceDefaultLogPath') AS NVARCHAR(512)) AS log_path
"""

DATABASE_STATE_SQL = """
SELECT d.state_desc, MAX(f.redo_start_lsn) AS redo_start_lsn
FROM sys.databases d
LEFT JOIN sys.master_files f ON f.database_id = d.database_id
WHERE d.name = ?
GROUP BY d.state_desc
"""


@dataclass
class RestoreOptions:
    """WITH options shared by every statement of a restore."""
    with_replace: bool = False
    no_recovery: bool = False
    standby_directory: str | None = None
    max_transfer_size: int | None = None
    block_size: int | None = None
    buffer_count: int | None = None
    keep_cdc: bool = False
    keep_replication: bool = False
    stop_at: datetime | None = None
    moves: dict[str, str] = field(default_factory=dict)


def _devices(backup: BackupHistory) -> str:
    clauses = []
    for path in backup.path:
        kind = "URL" if path.lower().startswith(("http://", "https://", "s3://")) else "DISK"
        clauses.append(f"{kind} = {quote_literal(path)}")
    return ", ".join(clauses)


def _transfer_options(options: RestoreOptions) -> list[str]:
    result = []
    if options.max_transfer_size:
        result.append(f"MAXTRANSFERSIZE = {int(options.max_transfer_size)}")
    if options.block_size:
        result.append(f"BLOCKSIZE = {int(options.block_size)}")
    if options.buffer_count:
        result.append(f"BUFFERCOUNT = {int(options.buffer_count)}")
    return result


def build_file_moves(
    files: Iterable[BackupFileEntry],
    source_database: str,
    target_database: str,
    data_directory: str | None = None,
    log_directory: str | None = None,
    file_prefix: str = "",
    file_suffix: str = "",
    replace_db_name_in_file: bool = False,
    file_mapping: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """
    Logical file name -> new physical path.

    An explicit ``file_mapping`` entry wins. Other files keep their name,
    optionally with the database name swapped and a prefix/suffix added,
    and move to the data or log directory (or stay where they were).
    """
    file_mapping = {k.lower(): v for k, v in (file_mapping or {}).items()}
    moves = {}
    for entry in files:
        mapped = file_mapping.get(entry.logical_name.lower())
        if mapped:
            moves[entry.logical_name] = mapped
            continue
        directory = log_directory if entry.type == "L" else data_directory
        directory = directory or ntpath.dirname(entry.physical_name)
        stem, ext = ntpath.splitext(ntpath.basename(entry.physical_name))
        if replace_db_name_in_file and source_database:
            stem = _replace_ci(stem, source_database, target_database)
        moves[entry.logical_name] = ntpath.join(directory, f"{file_prefix}{stem}{file_suffix}{ext}")
    return moves


def _replace_ci(text: str, old: str, new: str) -> str:
    index = text.lower().find(old.lower())
    if index < 0:
        return text
    return text[:index] + new + text[index + len(old):]


def build_restore_statements(
    backups: list[BackupHistory],
    database: str,
    options: RestoreOptions,
) -> list[str]:
    """
    RESTORE statements for an ordered chain.

    Every statement but the last uses NORECOVERY; the last one recovers,
    stays in NORECOVERY or goes to STANDBY. Log restores carry STOPAT.
    """
    statements = []
    for index, backup in enumerate(backups):
        is_last = index == len(backups) - 1
        with_options = [f"FILE = {backup.position}"]
        if backup.is_log:
            statement = f"RESTORE LOG {quote_identifier(database)} FROM {_devices(backup)}"
            if options.stop_at is not None:
                with_options.append(f"STOPAT = {format_datetime(options.stop_at)}")
        else:
            statement = f"RESTORE DATABASE {quote_identifier(database)} FROM {_devices(backup)}"
            if index == 0:
                with_options.extend(
                    f"MOVE {quote_literal(logical)} TO {quote_literal(physical)}"
                    for logical, physical in options.moves.items()
                )
                if options.with_replace:
                    with_options.append("REPLACE")
        with_options.extend(_transfer_options(options))

        if not is_last or options.no_recovery:
            with_options.append("NORECOVERY")
        elif options.standby_directory:
            undo = ntpath.join(options.standby_directory, f"{database}_standby.bak")
            with_options.append(f"STANDBY = {quote_literal(undo)}")
        else:
            with_options.append("RECOVERY")
            if options.keep_cdc:
                with_options.append("KEEP_CDC")
            if options.keep_replication:
                with_options.append("KEEP_REPLICATION")
        with_options.append("STATS = 10")
        statements.append(f"{statement} WITH {', '.join(with_options)}")
    return statements


def build_verify_statements(backups: list[BackupHistory]) -> list[str]:
    return [
        f"RESTORE VERIFYONLY FROM {_devices(b)} WITH FILE = {b.position}"
        for b in backups
    ]


def default_file_paths(connector) -> tuple[str | None, str | None]:
    rows = connector.execute_query(DEFAULT_PATHS_SQL)
    if not rows:
        return None, None
    data_path = (rows[0]["data_path"] or "").rstrip("\\") or None
    log_path = (rows[0]["log_path"] or "").rstrip("\\") or None
    return data_path, log_path


def _continue_from(connector, database: str, backups: list[BackupHistory]) -> list[BackupHistory]:
    """Backups still to apply to a database left in RESTORING state."""
    rows = connector.execute_query(DATABASE_STATE_SQL, [database])
    if not rows:
        raise BackupChainError(f"Database {database} does not exist; nothing to continue")
    if rows[0]["state_desc"] != "RESTORING":
        raise BackupChainError(f"Database {database} is {rows[0]['state_desc']}, not RESTORING")
    redo_lsn = int(rows[0]["redo_start_lsn"] or 0)
    return [b for b in backups if not b.is_full and b.last_lsn > redo_lsn]


def restore_database(
    connector,
    backup_history: Optional[list[BackupHistory]] = None,
    paths: Optional[Iterable[str]] = None,
    database_name: str | None = None,
    restore_time: datetime | None = None,
    with_replace: bool = False,
    no_recovery: bool = False,
    standby_directory: str | None = None,
    destination_data_directory: str | None = None,
    destination_log_directory: str | None = None,
    destination_file_prefix: str = "",
    destination_file_suffix: str = "",
    replace_db_name_in_file: bool = False,
    file_mapping: Optional[dict[str, str]] = None,
    output_script_only: bool = False,
    verify_only: bool = False,
    continue_restore: bool = False,
    max_transfer_size: int | None = None,
    block_size: int | None = None,
    buffer_count: int | None = None,
    keep_cdc: bool = False,
    keep_replication: bool = False,
    ignore_diff_backup: bool = False,
    ignore_log_backup: bool = False,
    enable_exception: bool = False,
) -> list[RestoreResult]:
    """
    Restore databases from backup history or backup files.

    Args:
        connector: Destination instance
        backup_history: Records from get_db_backup_history/get_backup_information
        paths: Backup files or folders to scan when no history is given
        database_name: Restore under this name (single source database only)
        restore_time: Point in time to stop at
        with_replace: Overwrite an existing database
        no_recovery: Leave the database RESTORING
        standby_directory: Leave the database read-only in STANDBY
        destination_data_directory: Folder for data files
        destination_log_directory: Folder for log files
        destination_file_prefix: Prefix added to physical file names
        destination_file_suffix: Suffix added before the extension
        replace_db_name_in_file: Swap the source name for the new name in file names
        file_mapping: Logical name -> physical path overrides
        output_script_only: Return the T-SQL without running it
        verify_only: Run RESTORE VERIFYONLY instead of restoring
        continue_restore: Apply the remaining backups to a RESTORING database
        max_transfer_size: MAXTRANSFERSIZE option
        block_size: BLOCKSIZE option
        buffer_count: BUFFERCOUNT option
        keep_cdc: Keep change data capture settings
        keep_replication: Keep replication settings
        ignore_diff_backup: Do not use differential backups
        ignore_log_backup: Do not use log backups
        enable_exception: Raise on the first failure
    """
    target = connector.server_instance
    if backup_history is None:
        backup_history = get_backup_information(
            connector, paths=paths, enable_exception=enable_exception
        )
    per_database = split_by_database(backup_history)
    if not per_database:
        report_failure("No backups to restore", enable_exception=enable_exception, target=target)
        return []
    if database_name and len(per_database) > 1:
        report_failure(
            f"Cannot restore {len(per_database)} databases ({', '.join(per_database)}) "
            f"under the single name {database_name}",
            enable_exception=enable_exception, target=target,
        )
        return []

    data_default = log_default = None
    if not output_script_only and not verify_only:
        data_default, log_default = default_file_paths(connector)

    results = []
    for source_database, history in per_database.items():
        database = database_name or source_database
        result = RestoreResult(
            sql_instance=target,
            database=database,
            source_database=source_database,
            restore_time=restore_time,
            start=datetime.now(),
        )
        results.append(result)

        try:
            chain = select_restore_chain(history, restore_time, ignore_diff_backup, ignore_log_backup)
            verify_log_chain(chain.base, chain.logs)
        except BackupChainError as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(
                f"No usable backup chain for {source_database}", error=e,
                enable_exception=enable_exception, error_cls=BackupChainError, target=target,
            )
            continue

        backups = chain.backups
        result.backup_files = chain.files

        if verify_only:
            result.scripts = build_verify_statements(backups)
        else:
            try:
                if continue_restore:
                    backups = _continue_from(connector, database, backups)
                    if not backups:
                        result.status = OperationStatus.SKIPPED
                        result.notes = f"No backups left to apply; {database} is already past the last backup"
                        result.end = datetime.now()
                        logger.info("[%s] %s", target, result.notes)
                        continue
                elif not output_script_only and connector.database_exists(database) and not with_replace:
                    result.status = OperationStatus.FAILED
                    result.notes = report_failure(
                        f"Database {database} exists; use with_replace to overwrite it",
                        enable_exception=enable_exception, target=target,
                    )
                    continue
            except BackupChainError as e:
                result.status = OperationStatus.FAILED
                result.notes = report_failure(
                    "Cannot continue restore", error=e, enable_exception=enable_exception,
                    error_cls=BackupChainError, target=target,
                )
                continue

            options = RestoreOptions(
                with_replace=with_replace,
                no_recovery=no_recovery,
                standby_directory=standby_directory,
                max_transfer_size=max_transfer_size,
                block_size=block_size,
                buffer_count=buffer_count,
                keep_cdc=keep_cdc,
                keep_replication=keep_replication,
                stop_at=chain.stop_at,
            )
            if not continue_restore:
                options.moves = build_file_moves(
                    chain.full.file_list,
                    source_database,
                    database,
                    data_directory=destination_data_directory or data_default,
                    log_directory=destination_log_directory or log_default,
                    file_prefix=destination_file_prefix,
                    file_suffix=destination_file_suffix,
                    replace_db_name_in_file=replace_db_name_in_file,
                    file_mapping=file_mapping,
                )
            result.file_moves = options.moves
            result.scripts = build_restore_statements(backups, database, options)

        if output_script_only:
            result.notes = "Script only"
            result.end = datetime.now()
            continue

        logger.info("Restoring %s on %s from %d backups", database, target, len(backups))
        try:
            for statement in result.scripts:
                connector.execute_non_query(statement)
        except pyodbc.Error as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(
                f"Restore of {database} failed", error=e,
                enable_exception=enable_exception, target=target,
            )
        else:
            result.restore_complete = True
            if verify_only:
                result.notes = "Verify successful"
        result.end = datetime.now()

    return results
