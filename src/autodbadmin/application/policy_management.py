"""
Policy-Based Management migration.

Categories, conditions and policies (with their object sets, target sets
and target set levels) are read from the source msdb and recreated on the
destination through the sp_syspolicy procedures. System-shipped objects are
never copied.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.common import filter_names, report_failure
from autodbadmin.domain.models import MigrationResult, OperationStatus
from autodbadmin.infrastructure.tsql import quote_literal

logger = logging.getLogger(__name__)

CATEGORIES_SQL = """
SELECT name, mandate_database_subscriptions
FROM msdb.dbo.syspolicy_policy_categories
ORDER BY name
"""

CONDITIONS_SQL = """
SELECT name, description, facet, expression, is_name_condition, obj_name
FROM msdb.dbo.syspolicy_conditions
WHERE is_system = 0
ORDER BY name
"""

POLICIES_SQL = """
SELECT
    p.name,
    c.name AS condition_name,
    rc.name AS root_condition_name,
    p.policy_category,
    p.description,
    p.help_text,
    p.help_link,
    CAST(p.schedule_uid AS NVARCHAR(36)) AS schedule_uid,
    p.execution_mode,
    p.is_enabled,
    os.object_set_name,
    os.facet_name
FROM msdb.dbo.syspolicy_policies p
JOIN msdb.dbo.syspolicy_conditions c ON c.condition_id = p.condition_id
LEFT JOIN msdb.dbo.syspolicy_conditions rc ON rc.condition_id = p.root_condition_id
LEFT JOIN msdb.dbo.syspolicy_object_sets os ON os.object_set_id = p.object_set_id
WHERE p.is_system = 0
ORDER BY p.name
"""

TARGET_SETS_SQL = """
SELECT ts.target_set_id, ts.type_skeleton, ts.type, ts.enabled
FROM msdb.dbo.syspolicy_target_sets ts
JOIN msdb.dbo.syspolicy_object_sets os ON os.object_set_id = ts.object_set_id
WHERE os.object_set_name = ?
ORDER BY ts.target_set_id
"""

TARGET_SET_LEVELS_SQL = """
SELECT tsl.type_skeleton, tsl.level_name, c.name AS condition_name
FROM msdb.dbo.syspolicy_target_set_levels tsl
LEFT JOIN msdb.dbo.syspolicy_conditions c ON c.condition_id = tsl.condition_id
WHERE tsl.target_set_id = ?
ORDER BY tsl.target_set_level_id
"""

EMPTY_GUID = "00000000-0000-0000-0000-000000000000"


def _names(connector, table: str) -> set[str]:
    rows = connector.execute_query(f"SELECT name FROM msdb.dbo.{table}")
    return {r["name"].lower() for r in rows}


def build_category_script(category: dict) -> str:
    return (
        "DECLARE @policy_category_id INT\n"
        f"EXEC msdb.dbo.sp_syspolicy_add_policy_category @name = {quote_literal(category['name'])}, "
        f"@mandate_database_subscriptions = {int(category['mandate_database_subscriptions'])}, "
        "@policy_category_id = @policy_category_id OUTPUT"
    )


def build_condition_script(condition: dict) -> str:
    return (
        "DECLARE @condition_id INT\n"
        f"EXEC msdb.dbo.sp_syspolicy_add_condition @name = {quote_literal(condition['name'])}, "
        f"@description = {quote_literal(condition['description'] or '')}, "
        f"@facet = {quote_literal(condition['facet'])}, "
        f"@expression = {quote_literal(condition['expression'])}, "
        f"@is_name_condition = {int(condition['is_name_condition'] or 0)}, "
        f"@obj_name = {quote_literal(condition['obj_name'] or '')}, "
        "@condition_id = @condition_id OUTPUT"
    )


def build_object_set_script(object_set: str, facet: str, target_sets: list[dict]) -> str:
    """
    Object set plus its target sets and levels, in one batch.

    Each target set dict carries ``type_skeleton``, ``type``, ``enabled`` and
    ``levels`` (dicts with ``type_skeleton``, ``level_name``, ``condition_name``).
    """
    name = quote_literal(object_set)
    lines = [
        "DECLARE @object_set_id INT, @target_set_id INT, @target_set_level_id INT",
        f"EXEC msdb.dbo.sp_syspolicy_add_object_set @object_set_name = {name}, "
        f"@facet = {quote_literal(facet)}, @object_set_id = @object_set_id OUTPUT",
    ]
    for target_set in target_sets:
        lines.append(
            f"EXEC msdb.dbo.sp_syspolicy_add_target_set @object_set_name = {name}, "
            f"@type_skeleton = {quote_literal(target_set['type_skeleton'])}, "
            f"@type = {quote_literal(target_set['type'])}, "
            f"@enabled = {int(target_set['enabled'])}, "
            "@target_set_id = @target_set_id OUTPUT"
        )
        for level in target_set["levels"]:
            lines.append(
                "EXEC msdb.dbo.sp_syspolicy_add_target_set_level @target_set_id = @target_set_id, "
                f"@type_skeleton = {quote_literal(level['type_skeleton'])}, "
                f"@level_name = {quote_literal(level['level_name'])}, "
                f"@condition_name = {quote_literal(level['condition_name'] or '')}, "
                "@target_set_level_id = @target_set_level_id OUTPUT"
            )
    return "\n".join(lines)


def build_policy_script(policy: dict) -> str:
    params = [
        f"@name = {quote_literal(policy['name'])}",
        f"@condition_name = {quote_literal(policy['condition_name'])}",
        f"@execution_mode = {int(policy['execution_mode'])}",
        f"@is_enabled = {int(policy['is_enabled'])}",
    ]
    optional = (
        ("policy_category", policy["policy_category"]),
        ("description", policy["description"]),
        ("help_text", policy["help_text"]),
        ("help_link", policy["help_link"]),
        ("root_condition_name", policy["root_condition_name"]),
        ("object_set", policy["object_set_name"]),
    )
    params.extend(f"@{key} = {quote_literal(value)}" for key, value in optional if value)
    if policy["schedule_uid"] and policy["schedule_uid"] != EMPTY_GUID:
        params.append(f"@schedule_uid = {quote_literal(policy['schedule_uid'])}")
    return (
        "DECLARE @policy_id INT\n"
        f"EXEC msdb.dbo.sp_syspolicy_add_policy {', '.join(params)}, @policy_id = @policy_id OUTPUT"
    )


def _target_sets(source, object_set: str) -> list[dict]:
    target_sets = []
    for row in source.execute_query(TARGET_SETS_SQL, [object_set]):
        levels = source.execute_query(TARGET_SET_LEVELS_SQL, [row["target_set_id"]])
        target_sets.append({**row, "levels": levels})
    return target_sets


def copy_policy_management(
    source,
    destination,
    policies: Optional[Iterable[str]] = None,
    exclude_policies: Optional[Iterable[str]] = None,
    conditions: Optional[Iterable[str]] = None,
    exclude_conditions: Optional[Iterable[str]] = None,
    force: bool = False,
    enable_exception: bool = False,
) -> list[MigrationResult]:
    """
    Copy policy categories, conditions and policies between instances.

    Args:
        source: Instance to read from
        destination: Instance to write to
        policies: Only these policies
        exclude_policies: Skip these policies
        conditions: Only these conditions
        exclude_conditions: Skip these conditions
        force: Drop and recreate objects that already exist on the destination
        enable_exception: Raise on the first failure
    """
    src, dst = source.server_instance, destination.server_instance
    results: list[MigrationResult] = []

    def record(name: str, kind: str, status: OperationStatus = OperationStatus.SUCCESSFUL,
               notes: str = "") -> MigrationResult:
        result = MigrationResult(source_server=src, destination_server=dst, name=name,
                                 type=kind, status=status, notes=notes)
        results.append(result)
        return result

    try:
        source_categories = source.execute_query(CATEGORIES_SQL)
        source_conditions = source.execute_query(CONDITIONS_SQL)
        source_policies = source.execute_query(POLICIES_SQL)
        dest_categories = _names(destination, "syspolicy_policy_categories")
        dest_conditions = _names(destination, "syspolicy_conditions")
        dest_policies = _names(destination, "syspolicy_policies")
    except pyodbc.Error as e:
        report_failure("Cannot read policy management objects", error=e,
                       enable_exception=enable_exception, target=src)
        return results

    for category in source_categories:
        if category["name"].lower() in dest_categories:
            continue
        try:
            destination.execute_non_query(build_category_script(category), database="msdb")
            record(category["name"], "Policy Category")
        except pyodbc.Error as e:
            record(category["name"], "Policy Category", OperationStatus.FAILED, report_failure(
                f"Cannot create policy category {category['name']}", error=e,
                enable_exception=enable_exception, target=dst))

    wanted = set(filter_names([c["name"] for c in source_conditions], conditions, exclude_conditions))
    for condition in source_conditions:
        name = condition["name"]
        if name not in wanted:
            continue
        if name.lower() in dest_conditions:
            if not force:
                record(name, "Policy Condition", OperationStatus.SKIPPED,
                       "Already exists on destination. Use force to drop and recreate it.")
                continue
            try:
                destination.execute_non_query(
                    "EXEC msdb.dbo.sp_syspolicy_delete_condition @name = ?", [name]
                )
            except pyodbc.Error as e:
                record(name, "Policy Condition", OperationStatus.FAILED, report_failure(
                    f"Cannot drop condition {name}; it may be in use by a policy", error=e,
                    enable_exception=enable_exception, target=dst))
                continue
        try:
            destination.execute_non_query(build_condition_script(condition), database="msdb")
            record(name, "Policy Condition")
        except pyodbc.Error as e:
            record(name, "Policy Condition", OperationStatus.FAILED, report_failure(
                f"Cannot create condition {name}", error=e,
                enable_exception=enable_exception, target=dst))

    wanted = set(filter_names([p["name"] for p in source_policies], policies, exclude_policies))
    for policy in source_policies:
        name = policy["name"]
        if name not in wanted:
            continue
        object_set = policy["object_set_name"]
        try:
            if name.lower() in dest_policies:
                if not force:
                    record(name, "Policy", OperationStatus.SKIPPED,
                           "Already exists on destination. Use force to drop and recreate it.")
                    continue
                destination.execute_non_query("EXEC msdb.dbo.sp_syspolicy_delete_policy @name = ?", [name])
                if object_set:
                    destination.execute_non_query(
                        "EXEC msdb.dbo.sp_syspolicy_delete_object_set @object_set_name = ?", [object_set]
                    )
            if object_set:
                script = build_object_set_script(
                    object_set, policy["facet_name"], _target_sets(source, object_set)
                )
                destination.execute_non_query(script, database="msdb")
            destination.execute_non_query(build_policy_script(policy), database="msdb")
            record(name, "Policy")
        except pyodbc.Error as e:
            record(name, "Policy", OperationStatus.FAILED, report_failure(
                f"Cannot copy policy {name}", error=e,
                enable_exception=enable_exception, target=dst))
    return results
