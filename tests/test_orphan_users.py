"""
Tests for orphaned user removal.
"""

from dataclasses import replace

import pytest

from autodbadmin.application.orphan_users import orphans_query, plan_user_removal, remove_orphan_users
from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import OperationStatus

OWNED_SCHEMAS = {
    "app_user": [{"schema_name": "app_user", "object_count": 0}],
    "etl": [{"schema_name": "staging", "object_count": 12}],
    "old_dev": [],
}


@pytest.fixture
def orphans(connector):
    connector.on_query("FROM sys.databases", [{"name": "Sales", "state_desc": "ONLINE"}])
    connector.on_query("sp.sid IS NULL", [{"name": u, "type_desc": "SQL_USER"} for u in OWNED_SCHEMAS])
    connector.on_query("s.principal_id = USER_ID(?)", lambda params, db: OWNED_SCHEMAS[params[0]])
    connector.on_query("owning_principal_id = USER_ID(?)",
                       lambda params, db: [{"name": "reporting"}] if params[0] == "old_dev" else [])
    return connector


class TestPlanUserRemoval:

    def test_user_schema_dropped_other_schemas_reowned(self):
        statements = plan_user_removal(
            "bob",
            [{"schema_name": "bob", "object_count": 0}, {"schema_name": "misc", "object_count": 0}],
            ["auditors"],
            force=False,
        )

        assert statements == [
            "DROP SCHEMA [bob]",
            "ALTER AUTHORIZATION ON SCHEMA::[misc] TO [dbo]",
            "ALTER AUTHORIZATION ON ROLE::[auditors] TO [dbo]",
            "DROP USER [bob]",
        ]

    def test_schema_with_objects_needs_force(self):
        schemas = [{"schema_name": "bob", "object_count": 3}]

        assert plan_user_removal("bob", schemas, [], force=False) is None
        assert plan_user_removal("bob", schemas, [], force=True)[0] == "ALTER AUTHORIZATION ON SCHEMA::[bob] TO [dbo]"


class TestOrphansQuery:

    def test_authentication_type_from_2012(self):
        assert "dp.authentication_type IN (1, 3)" in orphans_query(11)

    def test_sid_filter_before_2012(self):
        query = orphans_query(10)

        assert "authentication_type" not in query
        assert "dp.sid <> 0x00" in query


class TestRemoveOrphanUsers:

    def test_removes_what_it_can(self, orphans):
        results = {r.user: r for r in remove_orphan_users(orphans)}

        assert results["app_user"].actions == ["DROP SCHEMA [app_user]", "DROP USER [app_user]"]
        assert results["etl"].status == OperationStatus.SKIPPED
        assert results["old_dev"].actions[0] == "ALTER AUTHORIZATION ON ROLE::[reporting] TO [dbo]"
        assert not orphans.executed("DROP USER [etl]")
        assert {db for _, _, db in orphans.statements} == {"Sales"}

    def test_force_moves_populated_schema(self, orphans):
        results = remove_orphan_users(orphans, users=["ETL"], force=True)

        assert [r.user for r in results] == ["etl"]
        assert results[0].notes == "User dropped"
        assert orphans.executed("ALTER AUTHORIZATION ON SCHEMA::[staging] TO [dbo]")

    def test_drop_failure(self, orphans):
        orphans.fail_on("DROP USER [app_user]", "The database principal owns a service")

        results = {r.user: r for r in remove_orphan_users(orphans, users=["app_user"])}

        assert results["app_user"].status == OperationStatus.FAILED
        assert results["app_user"].actions == ["DROP SCHEMA [app_user]"]

        with pytest.raises(OperationError, match="Cannot remove app_user from Sales"):
            remove_orphan_users(orphans, users=["app_user"], enable_exception=True)

    def test_2008_r2_instance(self, orphans, monkeypatch):
        info = replace(orphans.detect_version(), version="10.50.6000.34", version_major=10)
        monkeypatch.setattr(orphans, "detect_version", lambda: info)

        remove_orphan_users(orphans, users=["old_dev"])

        [(query, _, _)] = orphans.queried("sp.sid IS NULL")
        assert "authentication_type" not in query
        assert orphans.executed("DROP USER [old_dev]")
