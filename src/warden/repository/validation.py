"""
Validation adapters implementing ``{parse, safe_parse}``.

Repositories validate create/update payloads through one of these before
building a statement. ``native_adapter()`` passes mappings through;
``pydantic_adapter(Model)`` validates with a pydantic model and returns
only the fields the caller set.

Examples:
    >>> class OrderIn(BaseModel):
    ...     tenant_id: int
    ...     status: str = "placed"
    >>> adapter = pydantic_adapter(OrderIn)
    >>> adapter.parse({"tenant_id": "7"})
    {'tenant_id': 7}
    >>> adapter.safe_parse({}).success
    False

Tags:
    validation, pydantic, repository, spine-warden
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from warden.core.errors import ValidationError


@dataclass(frozen=True)
class ValidationResult:
    success: bool
    data: dict[str, Any] | None = None
    error: ValidationError | None = None


class NativeAdapter:
    """Accepts any mapping; rejects everything else."""

    def parse(self, data: Any) -> dict[str, Any]:
        if isinstance(data, BaseModel):
            return data.model_dump(exclude_unset=True)
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"Expected a mapping, got {type(data).__name__}",
                issues=[{"loc": [], "msg": "not a mapping", "type": "type_error"}],
            )
        return dict(data)

    def safe_parse(self, data: Any) -> ValidationResult:
        try:
            return ValidationResult(True, self.parse(data))
        except ValidationError as e:
            return ValidationResult(False, error=e)


class PydanticAdapter:
    """Validates payloads with a pydantic model."""

    def __init__(self, model: type[BaseModel], *, exclude_unset: bool = True):
        self.model = model
        self.exclude_unset = exclude_unset

    def parse(self, data: Any) -> dict[str, Any]:
        if isinstance(data, self.model):
            instance = data
        else:
            try:
                instance = self.model.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid {self.model.__name__}: {e.error_count()} error(s)",
                    issues=[
                        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                        for err in e.errors()
                    ],
                    cause=e,
                ) from e
        return instance.model_dump(exclude_unset=self.exclude_unset)

    def safe_parse(self, data: Any) -> ValidationResult:
        try:
            return ValidationResult(True, self.parse(data))
        except ValidationError as e:
            return ValidationResult(False, error=e)


def native_adapter() -> NativeAdapter:
    return NativeAdapter()


def pydantic_adapter(model: type[BaseModel], *, exclude_unset: bool = True) -> PydanticAdapter:
    return PydanticAdapter(model, exclude_unset=exclude_unset)


__all__ = [
    "NativeAdapter",
    "PydanticAdapter",
    "ValidationResult",
    "native_adapter",
    "pydantic_adapter",
]
