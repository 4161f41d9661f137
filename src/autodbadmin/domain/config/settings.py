"""
Toolkit settings domain model.

Timeouts, Agent job polling and operation defaults. Loaded from
config/settings.json; every field has a usable default.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Timeouts(BaseModel):
    """
    Timeout settings for different operations.

    Allows tuning based on environment, network, and hardware performance.
    """

    connection_timeout: int = Field(
        default=30,
        description="Seconds to wait for a SQL connection",
        ge=1,
        le=300
    )

    query_timeout: int = Field(
        default=0,
        description="Seconds before a T-SQL statement is cancelled (0 = no limit)",
        ge=0,
    )

    powershell_command_timeout: int = Field(
        default=120,
        description="Timeout in seconds for PowerShell remoting commands",
        ge=5,
        le=3600
    )

    job_timeout: int = Field(
        default=3600,
        description="Seconds to wait for an Agent job before giving up",
        ge=10,
    )

    @field_validator('query_timeout')
    @classmethod
    def warn_short_query_timeout(cls, v: int) -> int:
        """Backups, restores and DBCC run far longer than typical queries."""
        if 0 < v < 300:
            logger.warning("Query timeout of %ss may interrupt BACKUP/RESTORE/DBCC", v)
        return v


class ToolkitSettings(BaseModel):
    """
    Settings shared by all operations.
    """

    timeouts: Timeouts = Timeouts()

    job_poll_interval: int = Field(
        default=5,
        description="Seconds between Agent job status checks",
        ge=1,
        le=300
    )

    pii_sample_count: int = Field(
        default=100,
        description="Rows sampled per column by the PII scan",
        ge=1,
    )

    test_restore_prefix: str = Field(
        default="autodbadmin-testrestore-",
        description="Name prefix for databases restored by test-last-backup",
    )

    default_backup_folder: Optional[str] = Field(
        default=None,
        description="Backup folder used when a command does not receive one",
    )

    export_directory: str = Field(
        default="./output",
        description="Directory for scripts, timelines and workbooks",
    )

    @field_validator('test_restore_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Test restore prefix cannot be empty")
        return v
