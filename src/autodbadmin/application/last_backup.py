"""
Last backup testing.

Restores the latest backup chain of each database under a throwaway name,
runs DBCC CHECKDB against it and drops it again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.backup_history import get_db_backup_history
from autodbadmin.application.common import (
    check_database,
    check_path,
    drop_database,
    filter_names,
    list_databases,
    report_failure,
)
from autodbadmin.application.restore import restore_database
from autodbadmin.domain.backup_chain import select_restore_chain
from autodbadmin.domain.errors import BackupChainError
from autodbadmin.domain.models import LastBackupTestResult, OperationStatus

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "autodbadmin-testrestore-"


def test_last_backup(
    source,
    destination=None,
    databases: Optional[Iterable[str]] = None,
    exclude_databases: Optional[Iterable[str]] = None,
    data_directory: str | None = None,
    log_directory: str | None = None,
    prefix: str = DEFAULT_PREFIX,
    verify_only: bool = False,
    no_check: bool = False,
    no_drop: bool = False,
    max_size_mb: int | None = None,
    ignore_log_backup: bool = False,
    ignore_diff_backup: bool = False,
    enable_exception: bool = False,
) -> list[LastBackupTestResult]:
    """
    Prove the latest backups of each database restore and pass DBCC.

    Args:
        source: Instance whose backup history is tested
        destination: Instance that performs the test restore (defaults to source)
        databases: Only these databases
        exclude_databases: Skip these databases (tempdb is always skipped)
        data_directory: Folder for restored data files
        log_directory: Folder for restored log files
        prefix: Added to the database and file names of the test restore
        verify_only: Only run RESTORE VERIFYONLY
        no_check: Skip DBCC CHECKDB
        no_drop: Keep the restored database
        max_size_mb: Skip chains larger than this
        ignore_log_backup: Test the full (and differential) only
        ignore_diff_backup: Do not use differential backups
        enable_exception: Raise on the first failure
    """
    destination = destination or source
    names = filter_names(
        list_databases(source, databases, exclude_databases, online_only=False),
        exclude=["tempdb"],
    )
    history = get_db_backup_history(source, databases=names) if names else []

    results = []
    for database in names:
        result = LastBackupTestResult(
            source_server=source.server_instance,
            test_server=destination.server_instance,
            database=database,
        )
        results.append(result)

        own_history = [h for h in history if h.database.lower() == database.lower()]
        try:
            chain = select_restore_chain(own_history, ignore_diff=ignore_diff_backup, ignore_log=ignore_log_backup)
        except BackupChainError as e:
            result.notes = f"No usable backup chain: {e}"
            logger.warning("[%s] %s: %s", source.server_instance, database, result.notes)
            continue

        result.backup_dates = [b.end for b in chain.backups if b.end]
        result.backup_files = chain.files
        result.size = chain.total_size

        try:
            missing = [f for f in chain.files if not check_path(destination, f)[0]]
        except pyodbc.Error as e:
            result.notes = report_failure("Cannot check backup files", error=e,
                                          enable_exception=enable_exception,
                                          target=destination.server_instance)
            continue
        result.file_exists = not missing
        if missing:
            result.notes = f"Backup files not found by {destination.server_instance}: {', '.join(missing)}"
            logger.warning("%s", result.notes)
            continue

        if max_size_mb and result.size > max_size_mb * 1024 * 1024:
            result.notes = f"Backup size {result.size // (1024 * 1024)} MB exceeds {max_size_mb} MB"
            continue

        test_name = f"{prefix}{database}"
        if not verify_only and destination.database_exists(test_name):
            result.restore_result = "Failed"
            result.notes = report_failure(f"{test_name} already exists on {destination.server_instance}",
                                          enable_exception=enable_exception)
            continue

        result.restore_start = datetime.now()
        restore = restore_database(
            destination,
            backup_history=chain.backups,
            database_name=None if verify_only else test_name,
            destination_data_directory=data_directory,
            destination_log_directory=log_directory,
            destination_file_prefix=prefix,
            verify_only=verify_only,
            ignore_diff_backup=ignore_diff_backup,
            ignore_log_backup=ignore_log_backup,
            enable_exception=enable_exception,
        )[0]
        result.restore_end = datetime.now()
        if restore.status != OperationStatus.SUCCESSFUL:
            result.restore_result = "Failed"
            result.notes = restore.notes
            continue
        result.restore_result = "Success"
        if verify_only:
            result.notes = "Verify successful"
            continue

        if not no_check:
            result.dbcc_start = datetime.now()
            try:
                check_database(destination, test_name)
                result.dbcc_result = "Success"
            except pyodbc.Error as e:
                result.dbcc_result = "Failed"
                result.notes = report_failure(f"DBCC CHECKDB of {test_name} failed", error=e,
                                              enable_exception=enable_exception,
                                              target=destination.server_instance)
            result.dbcc_end = datetime.now()

        if not no_drop:
            try:
                drop_database(destination, test_name)
            except pyodbc.Error as e:
                note = report_failure(f"Cannot drop {test_name}", error=e,
                                      enable_exception=enable_exception,
                                      target=destination.server_instance)
                result.notes = f"{result.notes}; {note}" if result.notes else note
    return results


# Keep pytest from collecting the operation when tests import it by name
test_last_backup.__test__ = False
