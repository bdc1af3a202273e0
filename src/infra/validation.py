"""Boundary helpers that turn pydantic validation failures into RecordValidationError."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from src.infra.errors import RecordValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model_cls: type[ModelT], data: Any, *, entity: str | None = None) -> ModelT:
    """Validate *data* against *model_cls*.

    Raises RecordValidationError with the first failing field in the message.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", str(e))
        message = f"Invalid {entity or model_cls.__name__}: {loc + ': ' if loc else ''}{detail}"
        raise RecordValidationError(message, entity=entity) from e
