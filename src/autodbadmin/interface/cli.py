"""
AutoDBAdmin command-line interface.

One command per operation. Targets are ids from config/targets.json, or a
plain ``server\\instance`` name for Windows authentication.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from autodbadmin import __version__
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
from autodbadmin.application.server_audit import AUDIT_GUID, new_server_audit
from autodbadmin.application.timeline import convert_to_timeline
from autodbadmin.domain.config import Credential, ToolkitSettings
from autodbadmin.domain.errors import DbaError
from autodbadmin.infrastructure.config_loader import ConfigLoader
from autodbadmin.infrastructure.excel_report import write_results
from autodbadmin.infrastructure.logging_config import setup_logging
from autodbadmin.infrastructure.sql_server import SqlConnector, connect_instance
from autodbadmin.interface.formatters import console as table_console
from autodbadmin.interface.formatters import print_records, print_statements

logger = logging.getLogger(__name__)
console = Console(stderr=True)

app = typer.Typer(
    name="autodbadmin",
    help="SQL Server DBA automation toolkit",
    add_completion=False,
    no_args_is_help=True,
)


class Session:
    """Per-invocation state set up by the global options."""

    def __init__(self, config_dir: str = "config", enable_exception: bool = False):
        self.loader = ConfigLoader(config_dir)
        self.enable_exception = enable_exception
        self._settings: ToolkitSettings | None = None

    @property
    def settings(self) -> ToolkitSettings:
        if self._settings is None:
            self._settings = self.loader.load_settings()
        return self._settings

    def connect(self, target_id: str) -> SqlConnector:
        target = self.loader.get_target(target_id)
        credential = self.loader.load_sql_credential(target)
        timeouts = self.settings.timeouts
        return connect_instance(target, credential, query_timeout=timeouts.query_timeout,
                                connect_timeout=timeouts.connection_timeout)

    def os_credential(self, target_id: str) -> Credential | None:
        return self.loader.load_os_credential(self.loader.get_target(target_id))


session = Session()


def _finish(records, title: str, columns: Optional[List[str]] = None, export: Optional[Path] = None) -> None:
    print_records(records, columns, title)
    if export and records:
        path = write_results(records, export, title=title[:31])
        console.print(f"[blue]Exported to {path}[/blue]")


def _run(action):
    """Run a command body. Toolkit errors exit with 1, rejected values with 2."""
    try:
        return action()
    except DbaError as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        raise typer.BadParameter(str(e))


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on the console."),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write a DEBUG log to this file."),
    config_dir: str = typer.Option("config", "--config-dir", help="Folder holding targets.json and settings.json."),
    enable_exception: bool = typer.Option(
        False, "--enable-exception", help="Stop at the first failure with a non-zero exit code."
    ),
):
    """AutoDBAdmin - SQL Server DBA automation."""
    global session
    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file)
    session = Session(config_dir, enable_exception)
    logger.debug("autodbadmin %s, config dir %s", __version__, config_dir)


@app.command("version")
def version_command():
    """Show the version."""
    typer.echo(__version__)


@app.command("validate-config")
def validate_config_command():
    """Load every configuration file and report problems."""
    if not session.loader.validate_config():
        raise typer.Exit(1)
    console.print("[green]Configuration is valid[/green]")


@app.command("save-credential")
def save_credential_command(
    ref: str = typer.Argument(..., help="Credential file name, e.g. sql01_sa.json"),
    username: str = typer.Option(..., "--username", "-u"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Encrypt a credential with the master password and save it under config/credentials."""
    def action():
        path = session.loader.credentials.save_encrypted_credential(
            ref, Credential(username=username, password=password)
        )
        console.print(f"[green]Saved {path}[/green]")
    _run(action)


@app.command("backup-history")
def backup_history_command(
    target: str = typer.Argument(...),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    exclude_database: Optional[List[str]] = typer.Option(None, "--exclude-database"),
    since: Optional[datetime] = typer.Option(None, "--since"),
    include_copy_only: bool = typer.Option(False, "--include-copy-only"),
    last: bool = typer.Option(False, "--last", help="Latest restorable chain per database."),
    last_full: bool = typer.Option(False, "--last-full"),
    last_diff: bool = typer.Option(False, "--last-diff"),
    last_log: bool = typer.Option(False, "--last-log"),
    backup_type: Optional[List[str]] = typer.Option(None, "--type"),
    export: Optional[Path] = typer.Option(None, "--export", help="Write the records to an .xlsx file."),
    timeline: Optional[Path] = typer.Option(None, "--timeline", help="Write an HTML timeline."),
):
    """Backup history from msdb."""
    def action():
        records = get_db_backup_history(
            session.connect(target), databases=database, exclude_databases=exclude_database,
            include_copy_only=include_copy_only, since=since, last=last, last_full=last_full,
            last_diff=last_diff, last_log=last_log, types=backup_type,
        )
        _finish(records, "Backup History",
                ["database", "type", "start", "end", "total_size", "path", "is_copy_only"], export)
        if timeline:
            convert_to_timeline(records, title=f"Backups on {target}", output_path=timeline)
    _run(action)


@app.command("backup-information")
def backup_information_command(
    path: List[str] = typer.Argument(..., help="Backup files or folders, as the instance sees them."),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Instance that reads the files."),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    no_xp_dirtree: bool = typer.Option(False, "--no-xp-dirtree"),
    recurse: bool = typer.Option(False, "--recurse"),
    maintenance_solution: bool = typer.Option(False, "--maintenance-solution"),
    export_json: Optional[Path] = typer.Option(None, "--export-json"),
):
    """Read backup headers from files."""
    def action():
        records = get_backup_information(
            session.connect(target) if target else None, paths=path, database_names=database,
            no_xp_dir_tree=no_xp_dirtree, directory_recurse=recurse,
            maintenance_solution=maintenance_solution, export_path=export_json,
            enable_exception=session.enable_exception,
        )
        _finish(records, "Backup Information", ["database", "type", "end", "first_lsn", "last_lsn", "path"])
    _run(action)


def _parse_file_mapping(values: Optional[List[str]]) -> Optional[dict]:
    """["Sales=E:\\Data\\Sales.mdf"] -> {"Sales": "E:\\Data\\Sales.mdf"}"""
    if not values:
        return None
    mapping = {}
    for value in values:
        logical, sep, physical = value.partition("=")
        if not sep or not logical.strip() or not physical.strip():
            raise typer.BadParameter(
                f"Expected LOGICAL_NAME=PHYSICAL_PATH, got '{value}'", param_hint="--file-mapping"
            )
        mapping[logical.strip()] = physical.strip()
    return mapping


@app.command("restore")
def restore_command(
    target: str = typer.Argument(..., help="Instance to restore on."),
    path: Optional[List[str]] = typer.Option(None, "--path", "-p", help="Backup files or folders."),
    history_from: Optional[str] = typer.Option(None, "--history-from", help="Use msdb history of this instance."),
    import_json: Optional[Path] = typer.Option(None, "--import-json", help="Use a backup-information --export-json file."),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d", help="Source databases (with --history-from or --import-json)."),
    database_name: Optional[str] = typer.Option(None, "--database-name"),
    restore_time: Optional[datetime] = typer.Option(None, "--restore-time"),
    with_replace: bool = typer.Option(False, "--with-replace"),
    no_recovery: bool = typer.Option(False, "--no-recovery"),
    standby_directory: Optional[str] = typer.Option(None, "--standby-directory", help="Leave the database in STANDBY."),
    data_directory: Optional[str] = typer.Option(None, "--data-directory"),
    log_directory: Optional[str] = typer.Option(None, "--log-directory"),
    file_prefix: str = typer.Option("", "--file-prefix"),
    file_suffix: str = typer.Option("", "--file-suffix"),
    replace_db_name_in_file: bool = typer.Option(False, "--replace-db-name-in-file"),
    file_mapping: Optional[List[str]] = typer.Option(
        None, "--file-mapping", help="LOGICAL_NAME=PHYSICAL_PATH; repeat for each file."
    ),
    verify_only: bool = typer.Option(False, "--verify-only"),
    continue_restore: bool = typer.Option(False, "--continue"),
    script_only: bool = typer.Option(False, "--script-only", help="Print the T-SQL without running it."),
):
    """Restore databases from backup files or backup history."""
    def action():
        connector = session.connect(target)
        history = None
        if import_json:
            history = get_backup_information(import_path=import_json, database_names=database)
        elif history_from:
            history = get_db_backup_history(session.connect(history_from), databases=database)
        results = restore_database(
            connector, backup_history=history, paths=path, database_name=database_name,
            restore_time=restore_time, with_replace=with_replace, no_recovery=no_recovery,
            standby_directory=standby_directory,
            destination_data_directory=data_directory, destination_log_directory=log_directory,
            destination_file_prefix=file_prefix, destination_file_suffix=file_suffix,
            replace_db_name_in_file=replace_db_name_in_file,
            file_mapping=_parse_file_mapping(file_mapping), output_script_only=script_only,
            verify_only=verify_only, continue_restore=continue_restore,
            enable_exception=session.enable_exception,
        )
        if script_only:
            for result in results:
                for script in result.scripts:
                    table_console.print(script, markup=False, highlight=False)
                    table_console.print("GO", markup=False, highlight=False)
            return
        _finish(results, "Restore", ["database", "source_database", "restore_complete", "status", "notes"])
    _run(action)


@app.command("log-ship-recovery")
def log_ship_recovery_command(
    target: str = typer.Argument(..., help="Log shipping secondary."),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    no_recovery: bool = typer.Option(False, "--no-recovery"),
    force: bool = typer.Option(False, "--force"),
):
    """Bring log shipping secondaries online."""
    def action():
        results = invoke_log_ship_recovery(
            session.connect(target), databases=database, no_recovery=no_recovery, force=force,
            delay=session.settings.job_poll_interval, timeout=session.settings.timeouts.job_timeout,
            enable_exception=session.enable_exception,
        )
        _finish(results, "Log Ship Recovery", ["database", "status", "notes"])
    _run(action)


@app.command("pii-scan")
def pii_scan_command(
    target: str = typer.Argument(...),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    table: Optional[List[str]] = typer.Option(None, "--table"),
    column: Optional[List[str]] = typer.Option(None, "--column"),
    country: Optional[List[str]] = typer.Option(None, "--country"),
    country_code: Optional[List[str]] = typer.Option(None, "--country-code"),
    sample_count: Optional[int] = typer.Option(None, "--sample-count"),
    known_name_file: Optional[Path] = typer.Option(None, "--known-name-file"),
    pattern_file: Optional[Path] = typer.Option(None, "--pattern-file"),
    export: Optional[Path] = typer.Option(None, "--export", help="Write findings to an .xlsx file."),
):
    """Find columns that look like they hold personal data."""
    def action():
        findings = invoke_pii_scan(
            session.connect(target), databases=database, tables=table, columns=column,
            countries=country, country_codes=country_code,
            sample_count=sample_count or session.settings.pii_sample_count,
            known_name_file=known_name_file, pattern_file=pattern_file, export_path=export,
            enable_exception=session.enable_exception,
        )
        print_records(findings, ["database", "schema", "table", "column", "pii_category", "pii_name", "found_with"],
                      "PII Scan")
    _run(action)


@app.command("firewall-rule")
def firewall_rule_command(
    target: str = typer.Argument(...),
    rule_type: Optional[List[str]] = typer.Option(None, "--type", help="Engine, Browser, DAC"),
    force: bool = typer.Option(False, "--force", help="Replace existing rules."),
):
    """Create Windows firewall rules for an instance on its host."""
    def action():
        results = new_firewall_rule(
            session.connect(target), session.os_credential(target), types=rule_type, force=force,
            command_timeout=session.settings.timeouts.powershell_command_timeout,
            enable_exception=session.enable_exception,
        )
        _finish(results, "Firewall Rules", ["display_name", "type", "protocol", "local_port", "status", "notes"])
    _run(action)


@app.command("remove-database-safely")
def remove_database_safely_command(
    source: str = typer.Argument(...),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    all_databases: bool = typer.Option(False, "--all-databases"),
    destination: Optional[str] = typer.Option(None, "--destination", help="Instance that keeps the restore job."),
    backup_folder: Optional[str] = typer.Option(None, "--backup-folder"),
    no_dbcc_check: bool = typer.Option(False, "--no-dbcc-check"),
    job_owner: Optional[str] = typer.Option(None, "--job-owner"),
    category: str = typer.Option("Rationalisation", "--category"),
    backup_compression: str = typer.Option("Default", "--backup-compression"),
    reuse_source_folder_structure: bool = typer.Option(False, "--reuse-source-folder-structure"),
    force: bool = typer.Option(False, "--force"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Back up, verify and drop databases, leaving a restore job behind."""
    scope = "ALL user databases" if all_databases else ", ".join(database or [])
    if not yes:
        typer.confirm(f"Drop {scope} on {source}?", abort=True)

    def action():
        source_connector = session.connect(source)
        results = remove_database_safely(
            source_connector,
            session.connect(destination) if destination else None,
            databases=database, all_databases=all_databases,
            backup_folder=backup_folder or session.settings.default_backup_folder,
            no_dbcc_check=no_dbcc_check, job_owner=job_owner, category=category,
            reuse_source_folder_structure=reuse_source_folder_structure,
            backup_compression=backup_compression, force=force,
            poll_interval=session.settings.job_poll_interval,
            timeout=session.settings.timeouts.job_timeout,
            enable_exception=session.enable_exception,
        )
        _finish(results, "Remove Database Safely", ["database", "backup_path", "job_name", "status", "notes"])
    _run(action)


@app.command("set-compression")
def set_compression_command(
    target: str = typer.Argument(...),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    exclude_database: Optional[List[str]] = typer.Option(None, "--exclude-database"),
    table: Optional[List[str]] = typer.Option(None, "--table"),
    compression_type: str = typer.Option("Recommended", "--type", help="Recommended, Page, Row or None"),
    max_run_time: int = typer.Option(0, "--max-run-time", help="Minutes; 0 for no limit."),
    percent_compression: int = typer.Option(0, "--percent-compression"),
    force_offline_rebuilds: bool = typer.Option(False, "--force-offline-rebuilds"),
    export: Optional[Path] = typer.Option(None, "--export"),
):
    """Apply data compression to tables and indexes."""
    def action():
        results = set_db_compression(
            session.connect(target), databases=database, exclude_databases=exclude_database,
            tables=table, compression_type=compression_type, max_run_time=max_run_time,
            percent_compression=percent_compression, force_offline_rebuilds=force_offline_rebuilds,
            enable_exception=session.enable_exception,
        )
        _finish(results, "Compression", ["database", "schema", "table", "index_name", "partition",
                                         "previous_compression", "compression_type", "status", "notes"], export)
    _run(action)


@app.command("remove-orphan-users")
def remove_orphan_users_command(
    target: str = typer.Argument(...),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    exclude_database: Optional[List[str]] = typer.Option(None, "--exclude-database"),
    user: Optional[List[str]] = typer.Option(None, "--user"),
    force: bool = typer.Option(False, "--force", help="Re-own schemas that still hold objects."),
    yes: bool = typer.Option(False, "--yes", "-y"),
):
    """Drop database users whose login no longer exists."""
    if not yes:
        typer.confirm(f"Drop orphaned users on {target}?", abort=True)

    def action():
        results = remove_orphan_users(
            session.connect(target), databases=database, exclude_databases=exclude_database,
            users=user, force=force, enable_exception=session.enable_exception,
        )
        _finish(results, "Orphan Users", ["database", "user", "actions", "status", "notes"])
    _run(action)


@app.command("test-last-backup")
def test_last_backup_command(
    source: str = typer.Argument(...),
    destination: Optional[str] = typer.Option(None, "--destination"),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    exclude_database: Optional[List[str]] = typer.Option(None, "--exclude-database"),
    data_directory: Optional[str] = typer.Option(None, "--data-directory"),
    log_directory: Optional[str] = typer.Option(None, "--log-directory"),
    prefix: Optional[str] = typer.Option(None, "--prefix"),
    verify_only: bool = typer.Option(False, "--verify-only"),
    no_check: bool = typer.Option(False, "--no-check"),
    no_drop: bool = typer.Option(False, "--no-drop"),
    max_size_mb: Optional[int] = typer.Option(None, "--max-size-mb"),
    ignore_log_backup: bool = typer.Option(False, "--ignore-log-backup"),
    ignore_diff_backup: bool = typer.Option(False, "--ignore-diff-backup"),
    export: Optional[Path] = typer.Option(None, "--export"),
):
    """Restore the latest backups elsewhere and run DBCC CHECKDB on them."""
    def action():
        results = test_last_backup(
            session.connect(source), session.connect(destination) if destination else None,
            databases=database, exclude_databases=exclude_database,
            data_directory=data_directory, log_directory=log_directory,
            prefix=prefix or session.settings.test_restore_prefix,
            verify_only=verify_only, no_check=no_check, no_drop=no_drop, max_size_mb=max_size_mb,
            ignore_log_backup=ignore_log_backup, ignore_diff_backup=ignore_diff_backup,
            enable_exception=session.enable_exception,
        )
        _finish(results, "Last Backup Test", ["database", "file_exists", "restore_result", "dbcc_result",
                                              "backup_dates", "notes"], export)
    _run(action)


@app.command("job-history")
def job_history_command(
    target: str = typer.Argument(...),
    job: Optional[List[str]] = typer.Option(None, "--job"),
    exclude_job: Optional[List[str]] = typer.Option(None, "--exclude-job"),
    start_date: Optional[datetime] = typer.Option(None, "--start-date"),
    end_date: Optional[datetime] = typer.Option(None, "--end-date"),
    outcome: Optional[str] = typer.Option(None, "--outcome", help="Failed, Succeeded, Retry, Canceled, In Progress"),
    exclude_job_steps: bool = typer.Option(False, "--exclude-job-steps"),
    with_output_file: bool = typer.Option(False, "--with-output-file"),
    export: Optional[Path] = typer.Option(None, "--export"),
    timeline: Optional[Path] = typer.Option(None, "--timeline", help="Write an HTML timeline."),
):
    """SQL Agent job history."""
    def action():
        entries = get_agent_job_history(
            session.connect(target), jobs=job, exclude_jobs=exclude_job, start_date=start_date,
            end_date=end_date, outcome_type=outcome, exclude_job_steps=exclude_job_steps,
            with_output_file=with_output_file,
        )
        columns = ["job", "step_id", "step_name", "start_date", "duration", "status"]
        if with_output_file:
            columns.append("output_file")
        _finish(entries, "Job History", columns, export)
        if timeline:
            convert_to_timeline(entries, title=f"Agent jobs on {target}", output_path=timeline)
    _run(action)


@app.command("export-script")
def export_script_command(
    target: str = typer.Argument(...),
    object_type: str = typer.Option(..., "--type", help="Table, View, StoredProcedure, UserDefinedFunction, "
                                                       "Trigger, Schema, Login, User or AgentJob"),
    name: List[str] = typer.Option(..., "--name", "-n"),
    schema: str = typer.Option("dbo", "--schema"),
    database: Optional[str] = typer.Option(None, "--database", "-d"),
    file_path: Optional[Path] = typer.Option(None, "--file"),
    batch_separator: str = typer.Option("GO", "--batch-separator"),
    no_prefix: bool = typer.Option(False, "--no-prefix"),
    append: bool = typer.Option(False, "--append"),
    no_clobber: bool = typer.Option(False, "--no-clobber"),
    passthru: bool = typer.Option(False, "--passthru", help="Print the script instead of writing a file."),
):
    """Script objects to a .sql file."""
    def action():
        objects = [ScriptObject(object_type, n, schema, database) for n in name]
        output = export_script(
            session.connect(target), objects, file_path=file_path, batch_separator=batch_separator,
            no_prefix=no_prefix, append=append, no_clobber=no_clobber, passthru=passthru,
            export_directory=session.settings.export_directory,
            enable_exception=session.enable_exception,
        )
        if passthru:
            table_console.print(output, markup=False, highlight=False)
        else:
            console.print(f"[green]Script written to {output}[/green]")
    _run(action)


@app.command("copy-policies")
def copy_policies_command(
    source: str = typer.Argument(...),
    destination: str = typer.Argument(...),
    policy: Optional[List[str]] = typer.Option(None, "--policy"),
    exclude_policy: Optional[List[str]] = typer.Option(None, "--exclude-policy"),
    condition: Optional[List[str]] = typer.Option(None, "--condition"),
    exclude_condition: Optional[List[str]] = typer.Option(None, "--exclude-condition"),
    force: bool = typer.Option(False, "--force"),
):
    """Copy Policy-Based Management objects between instances."""
    def action():
        results = copy_policy_management(
            session.connect(source), session.connect(destination), policies=policy,
            exclude_policies=exclude_policy, conditions=condition, exclude_conditions=exclude_condition,
            force=force, enable_exception=session.enable_exception,
        )
        _finish(results, "Policy Management", ["type", "name", "status", "notes"])
    _run(action)


@app.command("new-server-audit")
def new_server_audit_command(
    target: str = typer.Argument(...),
    audit_folder: Optional[str] = typer.Option(None, "--audit-folder"),
    on_failure: str = typer.Option("SHUTDOWN", "--on-failure", help="CONTINUE, SHUTDOWN or FAIL_OPERATION"),
    audit_guid: str = typer.Option(AUDIT_GUID, "--audit-guid"),
    generate_guid: bool = typer.Option(False, "--generate-guid", help="Let SQL Server pick the AUDIT_GUID."),
    force: bool = typer.Option(False, "--force"),
    script_only: bool = typer.Option(False, "--script-only"),
):
    """Create the privileged-use server audit."""
    def action():
        results = new_server_audit(
            session.connect(target), audit_folder=audit_folder, on_failure=on_failure,
            audit_guid=None if generate_guid else audit_guid,
            force=force, script_only=script_only, enable_exception=session.enable_exception,
        )
        if script_only:
            print_statements(results)
            return
        _finish(results, "Server Audit", ["name", "action", "status", "notes"])
    _run(action)


@app.command("configure-maintenance")
def configure_maintenance_command(
    target: str = typer.Argument(...),
    retention_hours: int = typer.Option(168, "--retention-hours"),
    backup_directory: Optional[str] = typer.Option(None, "--backup-directory"),
    keep_diff_job: bool = typer.Option(False, "--keep-diff-job", help="Leave the differential job enabled."),
    no_schedules: bool = typer.Option(False, "--no-schedules"),
):
    """Configure the Maintenance Solution jobs and schedules."""
    def action():
        results = configure_maintenance_solution(
            session.connect(target), retention_hours=retention_hours, backup_directory=backup_directory,
            disable_diff_job=not keep_diff_job, add_schedules=not no_schedules,
            enable_exception=session.enable_exception,
        )
        _finish(results, "Maintenance Solution", ["name", "action", "status", "notes"])
    _run(action)


@app.command("revoke-public-guest")
def revoke_public_guest_command(
    target: str = typer.Argument(...),
    database: Optional[List[str]] = typer.Option(None, "--database", "-d"),
    exclude_database: Optional[List[str]] = typer.Option(None, "--exclude-database"),
    execute: bool = typer.Option(False, "--execute", help="Run the statements instead of printing them."),
):
    """Revoke permissions granted to public and guest."""
    def action():
        results = revoke_public_guest_permissions(
            session.connect(target), databases=database, exclude_databases=exclude_database,
            script_only=not execute, enable_exception=session.enable_exception,
        )
        if not execute:
            print_statements(results)
            return
        _finish(results, "Public/Guest Revocation", ["name", "action", "status", "notes"])
    _run(action)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
