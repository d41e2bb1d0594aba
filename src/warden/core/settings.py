"""
Centralized settings for spine-warden.

Manifesto:
    Security defaults must be explicit and validated at startup. One cached
    settings object holds the secure-by-default RLS switches and the executor
    tuning knobs; plugin options that are not passed explicitly fall back to
    these values.

All fields can be set via ``WARDEN_*`` environment variables (e.g.
``WARDEN_RLS_REQUIRE_CONTEXT=false``) or a ``.env`` file.

Tags:
    spine-warden, configuration, settings, pydantic, caching

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from warden.core.errors import ConfigError


class WardenSettings(BaseSettings):
    """spine-warden configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WARDEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="console | json")

    # ── Executor ─────────────────────────────────────────────────
    executor_enabled: bool = Field(
        default=True,
        description="Disable to hand out raw engine handles (plugins bypassed)",
    )
    schema_cache_size: int = Field(
        default=100,
        ge=1,
        description="Schema-scoped handles memoized per executor",
    )

    # ── Row-level security ───────────────────────────────────────
    rls_require_context: bool = Field(
        default=True,
        description="Raise RLSContextError when no AuthContext is installed",
    )
    rls_allow_unfiltered_queries: bool = Field(
        default=False,
        description="Let reads run unfiltered when context is missing",
    )
    rls_audit_decisions: bool = Field(default=False)
    rls_primary_key_column: str = Field(default="id")


_settings_cache: dict[str, WardenSettings] = {}


def get_settings(*, _force_reload: bool = False) -> WardenSettings:
    """Return the cached settings, building them from the environment once.

    Raises:
        ConfigError: A ``WARDEN_*`` value failed validation.
    """
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    try:
        settings = WardenSettings()
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in e.errors())
        raise ConfigError(f"Invalid warden settings: {fields}", cause=e) from e
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop cached settings (tests, reconfiguration)."""
    _settings_cache.clear()


__all__ = [
    "WardenSettings",
    "get_settings",
    "clear_settings_cache",
]
