"""
Tests for core primitives — errors, settings, cache, logging.
"""

from __future__ import annotations

import io

import pytest
import structlog
from structlog.testing import capture_logs

from warden.core import (
    ConfigError,
    ErrorCategory,
    LRUCache,
    NotFoundError,
    PluginValidationError,
    RLSContextError,
    RLSPolicyViolation,
    ValidationError,
    WardenError,
    WardenSettings,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    get_settings,
    log_context,
    unbind_context,
)


class TestErrors:
    def test_base_error(self):
        err = WardenError("boom")
        assert err.message == "boom"
        assert err.category is ErrorCategory.INTERNAL
        assert err.code == "WARDEN_ERROR"
        assert str(err) == "boom"

    def test_with_context(self):
        err = WardenError("x").with_context(resource="orders", request_id="r1")
        assert err.context.resource == "orders"
        assert err.context.metadata == {"request_id": "r1"}
        assert err.to_dict()["context"] == {"resource": "orders", "request_id": "r1"}

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        err = WardenError("outer", cause=cause)
        assert err.__cause__ is cause

    def test_hierarchy(self):
        assert issubclass(PluginValidationError, WardenError)
        assert issubclass(RLSContextError, WardenError)
        assert issubclass(RLSPolicyViolation, WardenError)
        assert RLSContextError().category is ErrorCategory.AUTH

    def test_violation_message(self):
        err = RLSPolicyViolation("delete", "orders", "Denied by policy: p", policy_name="p")
        assert err.message == "RLS policy violation: delete on orders - Denied by policy: p"
        assert err.to_dict()["policy_name"] == "p"
        assert err.code == "RLS_POLICY_VIOLATION"

    def test_not_found(self):
        err = NotFoundError("orders", 5)
        assert err.key == 5
        assert err.category is ErrorCategory.NOT_FOUND

    def test_validation_issues(self):
        err = ValidationError("bad", issues=[{"loc": ["x"], "msg": "m", "type": "t"}])
        assert err.to_dict()["issues"][0]["loc"] == ["x"]


class TestSettings:
    def test_defaults(self):
        settings = WardenSettings()
        assert settings.executor_enabled is True
        assert settings.schema_cache_size == 100
        assert settings.rls_require_context is True
        assert settings.rls_allow_unfiltered_queries is False
        assert settings.rls_primary_key_column == "id"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("WARDEN_SCHEMA_CACHE_SIZE", "5")
        monkeypatch.setenv("WARDEN_RLS_AUDIT_DECISIONS", "true")
        settings = get_settings(_force_reload=True)
        assert settings.schema_cache_size == 5
        assert settings.rls_audit_decisions is True

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_cache_size_must_be_positive(self, monkeypatch):
        from pydantic import ValidationError as PydanticValidationError

        monkeypatch.setenv("WARDEN_SCHEMA_CACHE_SIZE", "0")
        with pytest.raises(PydanticValidationError):
            WardenSettings()

    def test_invalid_environment_is_a_config_error(self, monkeypatch):
        monkeypatch.setenv("WARDEN_SCHEMA_CACHE_SIZE", "0")
        with pytest.raises(ConfigError, match="schema_cache_size") as exc_info:
            get_settings(_force_reload=True)
        assert exc_info.value.code == "CONFIG_ERROR"
        assert exc_info.value.category is ErrorCategory.CONFIG


class TestLRUCache:
    def test_evicts_least_recently_used(self):
        cache: LRUCache[str, int] = LRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.contains("a")
        assert not cache.contains("b")
        assert len(cache) == 2

    def test_miss_returns_none(self):
        assert LRUCache().get("x") is None

    def test_clear(self):
        cache: LRUCache[str, int] = LRUCache()
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LRUCache(max_size=0)


class TestLogging:
    def test_bind_and_unbind_context(self):
        try:
            bind_context(subject_id=1, tenant_id=7)
            assert structlog.contextvars.get_contextvars() == {"subject_id": 1, "tenant_id": 7}
            unbind_context("tenant_id")
            assert structlog.contextvars.get_contextvars() == {"subject_id": 1}
        finally:
            clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_events_are_snake_case_keyed(self):
        with capture_logs() as logs:
            get_logger("test").warning("something_happened", resource="orders")
        assert logs == [
            {"event": "something_happened", "resource": "orders", "logger": "test", "log_level": "warning"}
        ]

    def test_configure_logging_json(self, capsys):
        try:
            configure_logging(level="INFO", json_format=True, service="warden-test")
            get_logger("test").info("configured", answer=42)
            out = capsys.readouterr().out
            assert '"event": "configured"' in out
            assert '"service.name": "warden-test"' in out
            assert '"log.level": "info"' in out
            assert '"log.logger": "test"' in out
        finally:
            structlog.reset_defaults()

    def test_log_context_restores_previous_bindings(self):
        try:
            bind_context(subject_id=1)
            with log_context(subject_id=2, tenant_id=7):
                assert structlog.contextvars.get_contextvars() == {"subject_id": 2, "tenant_id": 7}
            assert structlog.contextvars.get_contextvars() == {"subject_id": 1}
        finally:
            clear_context()

    def test_row_payloads_are_dropped(self, capsys):
        try:
            configure_logging(level="INFO", json_format=True, cache_loggers=False)
            get_logger("test").info("rls_decision", resource="orders", row={"ssn": "123"}, data={"x": 1})
            out = capsys.readouterr().out
            assert '"resource": "orders"' in out
            assert "ssn" not in out
            assert '"data"' not in out
        finally:
            structlog.reset_defaults()

    def test_defaults_come_from_settings(self, monkeypatch, capsys):
        monkeypatch.setenv("WARDEN_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("WARDEN_LOG_FORMAT", "json")
        get_settings(_force_reload=True)
        try:
            configure_logging(cache_loggers=False)
            logger = get_logger("test")
            logger.info("filtered_out")
            logger.warning("kept")
            out = capsys.readouterr().out
            assert "filtered_out" not in out
            assert '"event": "kept"' in out
        finally:
            structlog.reset_defaults()

    def test_configured_logging_survives_plugin_startup(self, engine, orders_schema):
        from warden.repository import create_orm
        from warden.rls import rls_plugin

        stream = io.StringIO()
        try:
            configure_logging(level="INFO", json_format=False, stream=stream, cache_loggers=False)
            orm = create_orm(engine, [rls_plugin(orders_schema)])
            orm.destroy()
        finally:
            structlog.reset_defaults()
        out = stream.getvalue()
        assert "rls_plugin_initialized" in out
        assert "warden.rls.plugin" in out

    def test_unknown_level_is_a_config_error(self):
        with pytest.raises(ConfigError, match="LOUD"):
            configure_logging(level="LOUD", json_format=False)
