"""Repositories and the plugin-aware ORM entry point."""

from warden.repository.orm import PluginOrm, create_orm, create_orm_async
from warden.repository.repository import Repository
from warden.repository.validation import (
    NativeAdapter,
    PydanticAdapter,
    ValidationResult,
    native_adapter,
    pydantic_adapter,
)

__all__ = [
    "NativeAdapter",
    "PluginOrm",
    "PydanticAdapter",
    "Repository",
    "ValidationResult",
    "create_orm",
    "create_orm_async",
    "native_adapter",
    "pydantic_adapter",
]
