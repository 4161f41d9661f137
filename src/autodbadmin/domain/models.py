"""
Domain models for AutoDBAdmin.

This module contains the records produced by the toolkit operations:
- Backup history (msdb rows or backup file headers)
- Agent job history entries
- Per-item status records for mutating operations

These models are pure data structures with no I/O dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


# ============================================================================
# Enumerations
# ============================================================================

class OperationStatus(Enum):
    """Outcome of a single item processed by a mutating operation."""
    SUCCESSFUL = "Successful"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class JobOutcome(Enum):
    """SQL Agent run_status values from msdb.dbo.sysjobhistory."""
    FAILED = 0
    SUCCEEDED = 1
    RETRY = 2
    CANCELED = 3
    IN_PROGRESS = 4

    @property
    def label(self) -> str:
        return {
            JobOutcome.FAILED: "Failed",
            JobOutcome.SUCCEEDED: "Succeeded",
            JobOutcome.RETRY: "Retry",
            JobOutcome.CANCELED: "Canceled",
            JobOutcome.IN_PROGRESS: "In Progress",
        }[self]

    @classmethod
    def from_string(cls, value: str) -> "JobOutcome":
        """Parse a user supplied outcome name ("Failed", "in progress", ...)."""
        normalized = value.strip().lower().replace(" ", "").replace("_", "")
        for outcome in cls:
            if outcome.label.lower().replace(" ", "") == normalized:
                return outcome
        if normalized == "cancelled":
            return cls.CANCELED
        raise ValueError(f"Unknown job outcome: {value}")


# backupset.type codes in msdb
MSDB_BACKUP_TYPES: dict[str, str] = {
    "D": "Full",
    "I": "Differential",
    "L": "Log",
    "F": "File",
    "G": "Differential File",
    "P": "Partial Full",
    "Q": "Partial Differential",
}

# BackupType column returned by RESTORE HEADERONLY
HEADER_BACKUP_TYPES: dict[int, str] = {
    1: "Full",
    2: "Log",
    4: "File",
    5: "Differential",
    6: "Differential File",
    7: "Partial Full",
    8: "Partial Differential",
}

FULL_TYPES = frozenset({"Full", "Partial Full"})
DIFF_TYPES = frozenset({"Differential", "Partial Differential"})
LOG_TYPES = frozenset({"Log"})

SYSTEM_DATABASES = frozenset({"master", "model", "msdb", "tempdb"})


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, bytes):
        return "0x" + value.hex().upper()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class RecordMixin:
    """Adds a JSON-friendly ``to_dict`` to result dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


# ============================================================================
# Backup history
# ============================================================================

@dataclass
class BackupFileEntry(RecordMixin):
    """A database file contained in a backup (msdb.backupfile / FILELISTONLY)."""
    type: str
    logical_name: str
    physical_name: str
    size: int = 0
    file_group: str | None = None


@dataclass
class BackupHistory(RecordMixin):
    """
    One backup set, possibly striped over several devices.

    Attributes:
        sql_instance: Instance the backup was taken on
        database: Database name
        type: Full, Differential, Log, ...
        path: Device paths, one per stripe
        first_lsn/last_lsn: LSN range covered by the backup
        checkpoint_lsn: Checkpoint LSN (what a differential points back to)
        database_backup_lsn: Checkpoint LSN of the base full backup
        last_recovery_fork_guid: Recovery fork the backup belongs to
        file_list: Files the backup restores
    """
    computer_name: str = ""
    instance_name: str = ""
    sql_instance: str = ""
    database: str = ""
    user_name: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    path: list[str] = field(default_factory=list)
    total_size: int = 0
    compressed_backup_size: int | None = None
    type: str = "Full"
    backup_set_id: int | None = None
    backup_set_guid: str | None = None
    position: int = 1
    device_type: str | None = None
    software: str | None = None
    first_lsn: int = 0
    last_lsn: int = 0
    checkpoint_lsn: int = 0
    database_backup_lsn: int = 0
    is_copy_only: bool = False
    recovery_model: str | None = None
    last_recovery_fork_guid: str | None = None
    file_list: list[BackupFileEntry] = field(default_factory=list)

    @property
    def duration(self) -> timedelta | None:
        if self.start is None or self.end is None:
            return None
        return self.end - self.start

    @property
    def is_full(self) -> bool:
        return self.type in FULL_TYPES

    @property
    def is_diff(self) -> bool:
        return self.type in DIFF_TYPES

    @property
    def is_log(self) -> bool:
        return self.type in LOG_TYPES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupHistory":
        """Rebuild a record written by ``to_dict`` (JSON import)."""
        values = dict(data)
        for key in ("start", "end"):
            if values.get(key):
                values[key] = datetime.fromisoformat(values[key])
        values["file_list"] = [BackupFileEntry(**f) for f in values.get("file_list") or []]
        for key in ("first_lsn", "last_lsn", "checkpoint_lsn", "database_backup_lsn"):
            values[key] = int(values.get(key) or 0)
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in names})


# ============================================================================
# Agent job history
# ============================================================================

@dataclass
class AgentJobHistoryEntry(RecordMixin):
    """A row from msdb.dbo.sysjobhistory with decoded dates and outcome."""
    computer_name: str
    instance_name: str
    sql_instance: str
    job: str
    job_id: str
    step_id: int
    step_name: str
    run_date: datetime | None
    start_date: datetime | None
    end_date: datetime | None
    duration: int
    status: str
    message: str = ""
    instance_id: int | None = None
    operator_emailed: str | None = None
    output_file: str | None = None


# ============================================================================
# Status records
# ============================================================================

@dataclass
class MigrationResult(RecordMixin):
    """Outcome of copying one object between two instances."""
    source_server: str
    destination_server: str
    name: str
    type: str
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""
    date_time: datetime = field(default_factory=datetime.now)


@dataclass
class RestoreResult(RecordMixin):
    """Outcome of restoring (or scripting the restore of) one database."""
    sql_instance: str
    database: str
    source_database: str
    backup_files: list[str] = field(default_factory=list)
    file_moves: dict[str, str] = field(default_factory=dict)
    restore_time: datetime | None = None
    scripts: list[str] = field(default_factory=list)
    restore_complete: bool = False
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""
    start: datetime | None = None
    end: datetime | None = None

    @property
    def script(self) -> str:
        return "\n".join(self.scripts)

    @property
    def elapsed(self) -> timedelta | None:
        if self.start is None or self.end is None:
            return None
        return self.end - self.start


@dataclass
class LogShipRecoveryResult(RecordMixin):
    """Outcome of recovering one log-shipped secondary database."""
    computer_name: str
    instance_name: str
    sql_instance: str
    database: str
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""


@dataclass
class PiiFinding(RecordMixin):
    """A column that looks like it holds personally identifiable information."""
    computer_name: str
    instance_name: str
    sql_instance: str
    database: str
    schema: str
    table: str
    column: str
    pii_category: str
    pii_name: str
    found_with: str
    masking_type: str | None = None
    masking_sub_type: str | None = None
    country: str | None = None
    pattern: str | None = None


@dataclass
class FirewallRuleResult(RecordMixin):
    """Outcome of creating one Windows firewall rule for an instance."""
    computer_name: str
    instance_name: str
    sql_instance: str
    display_name: str
    type: str
    protocol: str
    local_port: str | None = None
    program: str | None = None
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""


@dataclass
class DecommissionStep(RecordMixin):
    """One step of the backup-verify-drop pipeline."""
    name: str
    status: OperationStatus
    notes: str = ""


@dataclass
class DatabaseDecommissionResult(RecordMixin):
    """Outcome of safely removing one database."""
    sql_instance: str
    database: str
    destination_instance: str
    backup_path: str | None = None
    job_name: str | None = None
    steps: list[DecommissionStep] = field(default_factory=list)
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""

    def add_step(self, name: str, status: OperationStatus, notes: str = "") -> DecommissionStep:
        step = DecommissionStep(name=name, status=status, notes=notes)
        self.steps.append(step)
        return step


@dataclass
class CompressionResult(RecordMixin):
    """Outcome of changing the compression of one partition."""
    sql_instance: str
    database: str
    schema: str
    table: str
    index_name: str | None
    index_id: int
    index_type: str
    partition: int
    previous_compression: str
    compression_type: str
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""


@dataclass
class OrphanUserResult(RecordMixin):
    """Outcome of removing one orphaned database user."""
    sql_instance: str
    database: str
    user: str
    actions: list[str] = field(default_factory=list)
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""


@dataclass
class LastBackupTestResult(RecordMixin):
    """Outcome of test-restoring the latest backup chain of one database."""
    source_server: str
    test_server: str
    database: str
    file_exists: bool | None = None
    size: int | None = None
    restore_result: str = "Skipped"
    dbcc_result: str = "Skipped"
    restore_start: datetime | None = None
    restore_end: datetime | None = None
    dbcc_start: datetime | None = None
    dbcc_end: datetime | None = None
    backup_dates: list[datetime] = field(default_factory=list)
    backup_files: list[str] = field(default_factory=list)
    notes: str = ""

    @property
    def restore_elapsed(self) -> timedelta | None:
        if self.restore_start is None or self.restore_end is None:
            return None
        return self.restore_end - self.restore_start

    @property
    def dbcc_elapsed(self) -> timedelta | None:
        if self.dbcc_start is None or self.dbcc_end is None:
            return None
        return self.dbcc_end - self.dbcc_start


@dataclass
class ActionResult(RecordMixin):
    """Generic record for configuration actions (audit, maintenance, revokes)."""
    sql_instance: str
    name: str
    action: str
    status: OperationStatus = OperationStatus.SUCCESSFUL
    notes: str = ""
    statement: str | None = None
