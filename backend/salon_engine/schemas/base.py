# backend/salon_engine/schemas/base.py
"""Shared pydantic bases and field types for request and response bodies."""
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer


class StandardizedModel(BaseModel):
    """Response base; reads ORM rows and queue dataclasses by attribute."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request base. Unknown fields are a 422, not silently dropped."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


# Naira amounts: kept exact as Decimal internally, emitted as JSON numbers
Money = Annotated[
    Decimal,
    Field(ge=0, max_digits=12, decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]
