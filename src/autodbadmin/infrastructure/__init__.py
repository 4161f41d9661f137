"""
Infrastructure layer package.

Contains all I/O and external system integrations:
- SQL Server connectivity over pyodbc
- Configuration and credential file loading
- Logging setup
- PowerShell remoting (psremote/)
- Excel and HTML report generation
"""

from autodbadmin.infrastructure.config_loader import ConfigLoader
from autodbadmin.infrastructure.credential_manager import CredentialManager
from autodbadmin.infrastructure.logging_config import setup_logging
from autodbadmin.infrastructure.sql_server import SqlConnector, SqlServerInfo, connect_instance

__all__ = [
    # Config
    "ConfigLoader",
    "CredentialManager",
    # SQL Server
    "SqlConnector",
    "SqlServerInfo",
    "connect_instance",
    # Logging
    "setup_logging",
]
