"""
AutoDBAdmin - SQL Server DBA automation toolkit.

Backup history and restores, Agent job history, safe database removal,
compression, orphaned users, PII scanning, firewall rules, policy copying,
script export and instance hardening, all driven over ODBC and WinRM.

Usage:
    # CLI
    autodbadmin backup-history SQL01 --last

    # Programmatic
    from autodbadmin.infrastructure.sql_server import SqlConnector
    from autodbadmin.application import get_db_backup_history

    history = get_db_backup_history(SqlConnector("SQL01"), last=True)
"""

__version__ = "0.1.0"
__author__ = "AutoDBAdmin Team"

__all__ = ["__version__"]
