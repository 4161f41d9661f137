"""
Windows firewall rules for SQL Server.

Instance facts (ports, program path, DAC) come from T-SQL; the rules are
created by a PowerShell script run on the host through WinRM, which
reports back as JSON.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import pyodbc

from autodbadmin.application.common import report_failure
from autodbadmin.domain.config import Credential
from autodbadmin.domain.errors import DbaConnectionError
from autodbadmin.domain.models import FirewallRuleResult, OperationStatus
from autodbadmin.infrastructure.psremote import ConnectionConfig, PSRemoteClient

logger = logging.getLogger(__name__)

RULE_TYPES = ("Engine", "Browser", "DAC")
RULE_GROUP = "SQL Server"

INSTANCE_FACTS_SQL = r"""
SELECT
    r.registry_key,
    r.value_name,
    CAST(r.value_data AS NVARCHAR(256)) AS value_data
FROM sys.dm_server_registry r
WHERE r.registry_key LIKE N'%SuperSocketNetLib\Tcp\IPAll'
   OR r.registry_key LIKE N'%SuperSocketNetLib\AdminConnection\Tcp'
"""

SERVICE_PATH_SQL = """
SELECT TOP (1) filename
FROM sys.dm_server_services
WHERE servicename LIKE N'SQL Server (%'
"""

DAC_ENABLED_SQL = """
SELECT CAST(value_in_use AS INT) FROM sys.configurations WHERE name = N'remote admin connections'
"""


@dataclass
class FirewallRule:
    """A rule as passed to New-NetFirewallRule."""
    type: str
    display_name: str
    name: str
    protocol: str
    local_port: str | None = None
    program: str | None = None


@dataclass
class InstanceFacts:
    static_port: str | None = None
    dynamic_port: str | None = None
    dac_port: str | None = None
    program: str | None = None
    dac_enabled: bool = False


def _service_executable(filename: str | None) -> str | None:
    """'"C:\\...\\sqlservr.exe" -sINST' -> 'C:\\...\\sqlservr.exe'."""
    if not filename:
        return None
    filename = filename.strip()
    if filename.startswith('"'):
        return filename[1:].split('"', 1)[0]
    return filename.split(" -", 1)[0]


def read_instance_facts(connector) -> InstanceFacts:
    facts = InstanceFacts()
    for row in connector.execute_query(INSTANCE_FACTS_SQL):
        value = (row["value_data"] or "").strip() or None
        if row["registry_key"].lower().endswith("adminconnection\\tcp"):
            if row["value_name"] == "TcpDynamicPorts":
                facts.dac_port = value
        elif row["value_name"] == "TcpPort":
            facts.static_port = value
        elif row["value_name"] == "TcpDynamicPorts":
            facts.dynamic_port = value
    facts.program = _service_executable(connector.execute_scalar(SERVICE_PATH_SQL))
    facts.dac_enabled = bool(connector.execute_scalar(DAC_ENABLED_SQL))
    return facts


def default_rule_types(instance_name: str, facts: InstanceFacts) -> list[str]:
    """Engine always; Browser for named instances; DAC when remote DAC is on."""
    types = ["Engine"]
    if instance_name.upper() != "MSSQLSERVER":
        types.append("Browser")
    if facts.dac_enabled:
        types.append("DAC")
    return types


def _instance_label(instance_name: str) -> str:
    return "default instance" if instance_name.upper() == "MSSQLSERVER" else f"instance {instance_name}"


def build_rules(instance_name: str, facts: InstanceFacts, types: Iterable[str]) -> list[FirewallRule]:
    label = _instance_label(instance_name)
    rules = []
    for rule_type in types:
        if rule_type == "Engine":
            if facts.static_port:
                rules.append(FirewallRule(
                    type="Engine", display_name=f"SQL Server {label}",
                    name=f"SQL Server {label}", protocol="TCP", local_port=facts.static_port,
                ))
            elif not facts.program:
                logger.warning("No static TCP port or sqlservr.exe path for %s; Engine rule not created", label)
            else:
                rules.append(FirewallRule(
                    type="Engine", display_name=f"SQL Server {label}",
                    name=f"SQL Server {label}", protocol="TCP", program=facts.program,
                ))
        elif rule_type == "Browser":
            rules.append(FirewallRule(
                type="Browser", display_name="SQL Server Browser",
                name="SQL Server Browser", protocol="UDP", local_port="1434",
            ))
        elif rule_type == "DAC":
            if not facts.dac_port:
                logger.warning("No DAC port found for %s; DAC rule not created", label)
                continue
            rules.append(FirewallRule(
                type="DAC", display_name=f"SQL Server {label} (DAC)",
                name=f"SQL Server {label} (DAC)", protocol="TCP", local_port=facts.dac_port,
            ))
        else:
            raise ValueError(f"Unknown firewall rule type '{rule_type}'. Expected one of: {', '.join(RULE_TYPES)}")
    return rules


def _ps_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_firewall_script(rules: list[FirewallRule], force: bool = False) -> str:
    """PowerShell that creates the rules and prints one JSON object per rule."""
    lines = [
        "$ErrorActionPreference = 'Stop'",
        "$results = @()",
    ]
    for rule in rules:
        params = [
            f"DisplayName = {_ps_string(rule.display_name)}",
            f"Name = {_ps_string(rule.name)}",
            f"Group = {_ps_string(RULE_GROUP)}",
            "Enabled = 'True'",
            "Direction = 'Inbound'",
            f"Protocol = {_ps_string(rule.protocol)}",
        ]
        if rule.local_port:
            params.append(f"LocalPort = {_ps_string(rule.local_port)}")
        if rule.program:
            params.append(f"Program = {_ps_string(rule.program)}")
        name = _ps_string(rule.display_name)
        lines.append(f"""
$rule = @{{ {'; '.join(params)} }}
$existing = Get-NetFirewallRule -DisplayName {name} -ErrorAction SilentlyContinue
if ($existing -and -not ${'true' if force else 'false'}) {{
    $results += [pscustomobject]@{{ DisplayName = {name}; Status = 'Skipped'; Notes = 'The rule already exists' }}
}} else {{
    try {{
        if ($existing) {{ $existing | Remove-NetFirewallRule }}
        New-NetFirewallRule @rule | Out-Null
        $results += [pscustomobject]@{{ DisplayName = {name}; Status = 'Successful'; Notes = '' }}
    }} catch {{
        $results += [pscustomobject]@{{ DisplayName = {name}; Status = 'Failed'; Notes = $_.Exception.Message }}
    }}
}}""")
    lines.append("ConvertTo-Json -InputObject @($results) -Compress")
    return "\n".join(lines)


def new_firewall_rule(
    connector,
    credential: Credential | None = None,
    types: Optional[Iterable[str]] = None,
    force: bool = False,
    command_timeout: int = 120,
    enable_exception: bool = False,
    client_factory: Callable[[ConnectionConfig], PSRemoteClient] = PSRemoteClient,
) -> list[FirewallRuleResult]:
    """
    Create inbound firewall rules for an instance on its host.

    Args:
        connector: Instance to open up
        credential: Windows account for WinRM (current user when None)
        types: Engine, Browser and/or DAC; defaults depend on the instance
        force: Replace rules that already exist
        command_timeout: Seconds the remote PowerShell command may run
        enable_exception: Raise on the first failure
        client_factory: Builds the PowerShell runner
    """
    target = connector.server_instance
    try:
        facts = read_instance_facts(connector)
    except pyodbc.Error as e:
        report_failure("Cannot read instance network configuration", error=e,
                       enable_exception=enable_exception, target=target)
        return []

    instance_name = connector.instance_name
    rule_types = list(types) if types else default_rule_types(instance_name, facts)
    rules = build_rules(instance_name, facts, rule_types)

    def record(rule: FirewallRule, status: OperationStatus, notes: str) -> FirewallRuleResult:
        return FirewallRuleResult(
            computer_name=connector.computer_name,
            instance_name=instance_name,
            sql_instance=connector.sql_instance,
            display_name=rule.display_name,
            type=rule.type,
            protocol=rule.protocol,
            local_port=rule.local_port,
            program=rule.program,
            status=status,
            notes=notes,
        )

    unresolved = []
    if "Engine" in rule_types and not any(rule.type == "Engine" for rule in rules):
        note = report_failure(
            "No static TCP port or service executable found; refusing an Engine rule without a port or program",
            enable_exception=enable_exception, target=target,
        )
        label = f"SQL Server {_instance_label(instance_name)}"
        unresolved.append(record(
            FirewallRule(type="Engine", display_name=label, name=label, protocol="TCP"),
            OperationStatus.FAILED, note,
        ))
    if not rules:
        return unresolved

    client = client_factory(ConnectionConfig(
        hostname=connector.computer_name,
        username=credential.username if credential else None,
        password=credential.get_password() if credential else None,
        operation_timeout_sec=command_timeout,
    ))
    outcome = client.run_ps(build_firewall_script(rules, force))
    if not outcome.success:
        note = report_failure(
            f"Firewall script failed on {connector.computer_name}",
            error=DbaConnectionError(outcome.error or outcome.stderr.strip()),
            enable_exception=enable_exception, target=target,
        )
        return unresolved + [record(rule, OperationStatus.FAILED, note) for rule in rules]

    try:
        reported = {item["DisplayName"]: item for item in json.loads(outcome.stdout.strip() or "[]")}
    except json.JSONDecodeError as e:
        note = report_failure("Unexpected output from firewall script", error=e,
                              enable_exception=enable_exception, target=target)
        return unresolved + [record(rule, OperationStatus.FAILED, note) for rule in rules]

    results = unresolved
    for rule in rules:
        item = reported.get(rule.display_name)
        if item is None:
            results.append(record(rule, OperationStatus.FAILED, "No result reported for rule"))
            continue
        status = OperationStatus(item["Status"])
        if status == OperationStatus.FAILED:
            report_failure(f"Rule {rule.display_name}: {item['Notes']}",
                           enable_exception=enable_exception, target=target)
        results.append(record(rule, status, item.get("Notes") or ""))
    return results
