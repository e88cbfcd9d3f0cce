"""Payload validation: ValidationResult and the validators a Consumer accepts."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

if TYPE_CHECKING:
    from collections.abc import Callable


def default_errors_factory() -> dict[str, list[str]]:
    return {}


@dataclass
class ValidationResult:
    """Collects field-level validation errors and the validated payload.

    Usage::

        result = ValidationResult.success({"id": 1})
        result = ValidationResult.failure({"id": ["is required"]})
    """

    errors: dict[str, list[str]] = field(default_factory=default_errors_factory)
    value: Any = None

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    # ── Factory methods ──────────────────────────────────────────

    @classmethod
    def success(cls, value: Any = None) -> ValidationResult:
        return cls(value=value)

    @classmethod
    def failure(cls, errors: dict[str, list[str]]) -> ValidationResult:
        return cls(errors=errors)

    def __bool__(self) -> bool:
        return self.is_valid


@runtime_checkable
class PayloadValidator(Protocol):
    """Checks a decoded payload before it reaches the business handler."""

    def validate(self, payload: Any) -> ValidationResult: ...


class AcceptAllValidator:
    """Passes every decoded payload through unchanged."""

    def validate(self, payload: Any) -> ValidationResult:
        return ValidationResult.success(payload)


class PredicateValidator:
    """Wraps a boolean predicate; the payload is passed through unchanged."""

    def __init__(self, predicate: Callable[[Any], bool]) -> None:
        self._predicate = predicate

    def validate(self, payload: Any) -> ValidationResult:
        if self._predicate(payload):
            return ValidationResult.success(payload)
        name = getattr(self._predicate, "__name__", type(self._predicate).__name__)
        return ValidationResult.failure({"__root__": [f"rejected by {name}"]})


class PydanticValidator:
    """Validates payloads against a Pydantic model.

    The handler receives the model instance; any ``ValidationError`` is
    converted into a :class:`ValidationResult`.
    """

    def __init__(self, model: type[BaseModel]) -> None:
        self._model = model

    def validate(self, payload: Any) -> ValidationResult:
        try:
            return ValidationResult.success(self._model.model_validate(payload))
        except PydanticValidationError as exc:
            errors: dict[str, list[str]] = {}
            for error in exc.errors():
                loc = ".".join(str(p) for p in error.get("loc", ())) or "__root__"
                msg = error.get("msg", "validation error")
                errors.setdefault(loc, []).append(msg)
            return ValidationResult.failure(errors)


ValidatorLike = Union[
    PayloadValidator, "type[BaseModel]", "Callable[[Any], bool]", None
]


def as_validator(validator: ValidatorLike) -> PayloadValidator:
    """Normalize the accepted validator shapes into a :class:`PayloadValidator`."""
    if validator is None:
        return AcceptAllValidator()
    if isinstance(validator, type) and issubclass(validator, BaseModel):
        return PydanticValidator(validator)
    if isinstance(validator, PayloadValidator):
        return validator
    if inspect.iscoroutinefunction(validator):
        raise TypeError("validator predicates must be synchronous")
    if callable(validator):
        return PredicateValidator(validator)
    raise TypeError(
        "validator must be a PayloadValidator, a pydantic model or a predicate"
    )
