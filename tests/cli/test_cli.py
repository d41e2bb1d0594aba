"""
Tests for the warden CLI.
"""

from __future__ import annotations

import json
import sys
import textwrap

import pytest
import structlog
from structlog.testing import capture_logs
from typer.testing import CliRunner

from warden.cli import app

runner = CliRunner()

TARGET_MODULE = "warden_cli_targets"

TARGET_SOURCE = textwrap.dedent(
    """
    from warden.executor import Plugin
    from warden.rls import allow, define_rls_schema, deny, filter_, rls_plugin

    schema = define_rls_schema(
        {
            "orders": [
                filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}, name="tenant-filter"),
                allow("all", lambda ctx: True, name="open"),
                deny(
                    "delete",
                    lambda ctx: ctx.row is not None and ctx.row.get("status") == "shipped",
                    name="no-shipped-delete",
                ),
            ],
            "items": [allow("read", lambda ctx: True, name="items-read")],
        }
    )


    def plugins():
        return [
            Plugin("audit-trail", dependencies=["warden-rls"]),
            rls_plugin(schema),
            Plugin("metrics", priority=100),
        ]


    clashing = define_rls_schema(
        {
            "orders": [
                filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}, name="tenant-filter"),
                filter_("read", lambda ctx: {"tenant_id": 0}, name="shared-rows"),
                allow("read", lambda ctx: True, name="open"),
            ],
        }
    )

    cyclic = [Plugin("a", dependencies=["b"]), Plugin("b", dependencies=["a"])]
    answer = 42
    """
)


@pytest.fixture(autouse=True)
def target_module(tmp_path, monkeypatch):
    (tmp_path / f"{TARGET_MODULE}.py").write_text(TARGET_SOURCE)
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, TARGET_MODULE, raising=False)
    yield
    sys.modules.pop(TARGET_MODULE, None)


def invoke(*args: str):
    with capture_logs():
        return runner.invoke(app, list(args))


def target(attr: str) -> str:
    return f"{TARGET_MODULE}:{attr}"


class TestRoot:
    def test_help(self):
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("plugins", "policies", "check"):
            assert command in result.output

    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert result.output.startswith("spine-warden ")


class TestPlugins:
    def test_resolved_order_json(self):
        result = invoke("plugins", target("plugins"), "--json")
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert [r["name"] for r in rows] == ["metrics", "warden-rls", "audit-trail"]
        assert rows[1]["intercepts"] == "yes"
        assert rows[2]["dependencies"] == "warden-rls"

    def test_table_output(self):
        result = invoke("plugins", target("plugins"))
        assert result.exit_code == 0
        assert "Plugin order" in result.output
        assert "audit-trail" in result.output

    def test_cycle_is_reported(self):
        result = invoke("plugins", target("cyclic"))
        assert result.exit_code == 1
        assert "PLUGIN_VALIDATION_ERROR" in result.output

    def test_not_a_plugin_list(self):
        result = invoke("plugins", target("answer"))
        assert result.exit_code == 1
        assert "BAD_TARGET" in result.output


class TestTargets:
    @pytest.mark.parametrize("bad", ["no_colon", "missing_module_xyz:thing", f"{TARGET_MODULE}:ghost"])
    def test_unloadable_target(self, bad):
        assert invoke("plugins", bad).exit_code == 2


class TestPolicies:
    def test_all_tables(self):
        result = invoke("policies", target("schema"), "--json")
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert {r["table"] for r in rows} == {"orders", "items"}
        names = {r["name"] for r in rows if r["table"] == "orders"}
        assert names == {"tenant-filter", "open", "no-shipped-delete"}

    def test_single_resource(self):
        result = invoke("policies", target("schema"), "-r", "items", "--json")
        assert [r["name"] for r in json.loads(result.stdout)] == ["items-read"]

    def test_unknown_resource(self):
        result = invoke("policies", target("schema"), "-r", "nope")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestCheck:
    def test_denied_delete_exits_nonzero(self):
        result = invoke(
            "check", target("schema"), "orders", "delete",
            "--subject", "1", "--tenant", "7", "--row", '{"status": "shipped"}', "--json",
        )
        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["allowed"] is False
        assert payload["decision"] == "deny"
        assert payload["policy"] == "no-shipped-delete"

    def test_allowed_delete(self):
        result = invoke(
            "check", target("schema"), "orders", "delete", "--row", '{"status": "placed"}', "--json"
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["policy"] == "open"

    def test_read_reports_filters(self):
        result = invoke("check", target("schema"), "orders", "read", "--tenant", "7", "--json")
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["filters"] == {"tenant_id": 7}
        assert payload["applied_filters"] == ["tenant-filter"]
        assert "conflicting_columns" not in payload

    def test_read_reports_conflicting_filters(self):
        result = invoke("check", target("clashing"), "orders", "read", "--tenant", "7", "--json")
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["applied_filters"] == ["tenant-filter", "shared-rows"]
        assert payload["conflicting_columns"] == ["tenant_id"]

    def test_system_context_bypasses(self):
        result = invoke(
            "check", target("schema"), "orders", "delete",
            "--system", "--row", '{"status": "shipped"}', "--json",
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["reason"] == "System user bypasses RLS"

    def test_human_output(self):
        result = invoke("check", target("schema"), "orders", "delete", "--row", '{"status": "shipped"}')
        assert result.exit_code == 1
        assert "DENIED" in result.output
        assert "Evaluated policies" in result.output

    def test_invalid_operation(self):
        result = invoke("check", target("schema"), "orders", "truncate")
        assert result.exit_code == 1
        assert "BAD_OPERATION" in result.output

    def test_row_must_be_json_object(self):
        result = invoke("check", target("schema"), "orders", "delete", "--row", "[1, 2]")
        assert result.exit_code == 2


class TestLogging:
    def test_log_level_emits_structured_events(self):
        try:
            result = invoke("--log-level", "DEBUG", "policies", target("schema"), "--json")
            assert result.exit_code == 0
            assert "rls_registry_compiled" in result.output
        finally:
            structlog.reset_defaults()

    def test_unknown_log_level_is_reported(self):
        result = invoke("--log-level", "LOUD", "policies", target("schema"))
        assert result.exit_code == 1
        assert "CONFIG_ERROR" in result.output
