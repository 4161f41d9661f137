"""
AutoDBAdmin exceptions.

Operations catch, log and continue by default. These exceptions surface
when a caller passes ``enable_exception=True`` or when a failure is not
tied to a single item (bad configuration, unreachable instance).
"""


class DbaError(Exception):
    """Base exception for all AutoDBAdmin errors."""


class DbaConnectionError(DbaError):
    """Raised when a SQL Server instance or remote host cannot be reached."""


class ConfigurationError(DbaError):
    """Raised when configuration is invalid or missing."""


class OperationError(DbaError):
    """Raised when a per-item operation fails and exceptions are enabled."""


class BackupChainError(OperationError):
    """Raised when backups do not form a restorable LSN chain."""


class OperationTimeoutError(OperationError):
    """Raised when an Agent job or remote command does not finish in time."""
