"""
Domain layer package.

Contains pure data models and selection rules with no I/O dependencies.
"""

from autodbadmin.domain.errors import (
    BackupChainError,
    ConfigurationError,
    DbaConnectionError,
    DbaError,
    OperationError,
    OperationTimeoutError,
)
from autodbadmin.domain.models import (
    ActionResult,
    AgentJobHistoryEntry,
    BackupFileEntry,
    BackupHistory,
    CompressionResult,
    DatabaseDecommissionResult,
    FirewallRuleResult,
    JobOutcome,
    LastBackupTestResult,
    LogShipRecoveryResult,
    MigrationResult,
    OperationStatus,
    OrphanUserResult,
    PiiFinding,
    RestoreResult,
)

__all__ = [
    "ActionResult",
    "AgentJobHistoryEntry",
    "BackupChainError",
    "BackupFileEntry",
    "BackupHistory",
    "CompressionResult",
    "ConfigurationError",
    "DatabaseDecommissionResult",
    "DbaConnectionError",
    "DbaError",
    "FirewallRuleResult",
    "JobOutcome",
    "LastBackupTestResult",
    "LogShipRecoveryResult",
    "MigrationResult",
    "OperationError",
    "OperationStatus",
    "OperationTimeoutError",
    "OrphanUserResult",
    "PiiFinding",
    "RestoreResult",
]
