"""Conversion of generic result values into caller-requested types."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Final, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from gpjobs.domain.exceptions import TypeMismatchError
from gpjobs.domain.models import Value

T = TypeVar("T")

# Primitive targets are matched strictly: a string never becomes a number.
STRICT_TARGETS: Final[frozenset[type]] = frozenset({bool, str, list, dict})


@lru_cache(maxsize=128)
def _adapter(target: Any) -> TypeAdapter[Any]:
    return TypeAdapter(target)


def _convert_number(value: Value, target: type) -> float | int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    if target is float:
        return float(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not an integral number")
        return int(value)
    return value


def convert_value(value: Value, target: type[T] | Any, *, name: str = "") -> T:
    """Convert a JSON-like value into ``target``.

    ``float`` accepts any number, ``int`` accepts integral numbers, ``bool``,
    ``str``, ``list`` and ``dict`` accept only their own JSON type. Any other
    target (pydantic models, dataclasses, ``list[float]``, ``float | None``...)
    is validated by pydantic in strict JSON mode, so the same rules hold
    inside containers and models: a string never becomes a number or a bool.

    Raises:
        TypeMismatchError: If the value does not fit ``target``.
    """
    try:
        if target is float or target is int:
            return _convert_number(value, target)  # type: ignore[return-value]
        if target in STRICT_TARGETS:
            if not isinstance(value, target) or (
                target is not bool and isinstance(value, bool)
            ):
                raise ValueError(
                    f"expected {target.__name__}, got {type(value).__name__}"
                )
            return value  # type: ignore[no-any-return]
        # JSON input keeps objects valid for models while strict mode keeps
        # strings from being coerced.
        return _adapter(target).validate_json(  # type: ignore[no-any-return]
            json.dumps(value, allow_nan=False), strict=True
        )
    except (ValueError, TypeError, PydanticValidationError) as exc:
        raise TypeMismatchError(name, target, str(exc)) from exc


__all__ = ["convert_value"]
