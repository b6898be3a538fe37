from __future__ import annotations

import math
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


def _rate_from_storage(value: Any) -> Any:
    # Undefined ratios are persisted as null.
    if value is None:
        return math.nan
    return value


def _rate_to_json(value: float) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return value


Rate = Annotated[
    float,
    BeforeValidator(_rate_from_storage),
    PlainSerializer(_rate_to_json, return_type=float | None),
]


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Envelope(CamelModel):
    """Common success envelope for API responses."""

    success: bool = True


class ErrorResponse(CamelModel):
    """Failure envelope returned by the exception handlers."""

    success: bool = False
    message: str
    errors: list[dict[str, Any]] | None = None
