"""
Application layer package.

One module per operation. Operations are plain functions taking connectors
and returning status or data records.
"""

from autodbadmin.application.backup_history import get_db_backup_history
from autodbadmin.application.backup_information import get_backup_information
from autodbadmin.application.compression import set_db_compression
from autodbadmin.application.database_decommission import remove_database_safely
from autodbadmin.application.firewall import new_firewall_rule
from autodbadmin.application.job_history import get_agent_job_history
from autodbadmin.application.last_backup import test_last_backup
from autodbadmin.application.log_ship_recovery import invoke_log_ship_recovery
from autodbadmin.application.maintenance_solution import configure_maintenance_solution
from autodbadmin.application.orphan_users import remove_orphan_users
from autodbadmin.application.pii_scan import invoke_pii_scan
from autodbadmin.application.policy_management import copy_policy_management
from autodbadmin.application.public_guest_permissions import revoke_public_guest_permissions
from autodbadmin.application.restore import restore_database
from autodbadmin.application.script_export import ScriptObject, export_script
from autodbadmin.application.server_audit import new_server_audit
from autodbadmin.application.timeline import convert_to_timeline

__all__ = [
    "ScriptObject",
    "configure_maintenance_solution",
    "convert_to_timeline",
    "copy_policy_management",
    "export_script",
    "get_agent_job_history",
    "get_backup_information",
    "get_db_backup_history",
    "invoke_log_ship_recovery",
    "invoke_pii_scan",
    "new_firewall_rule",
    "new_server_audit",
    "remove_database_safely",
    "remove_orphan_users",
    "restore_database",
    "revoke_public_guest_permissions",
    "set_db_compression",
    "test_last_backup",
]
