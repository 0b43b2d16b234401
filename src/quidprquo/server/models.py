"""Pydantic models for server API requests and responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from quidprquo import __version__


class StoreCredentialRequest(BaseModel):
    """POST /partitions/{key}/credentials request body."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True
    )

    user: str = Field(min_length=1)
    scope: str = Field(min_length=1)
    access: str = Field(min_length=1)
    refresh: str = ""
    expires_at: int


class StoreCredentialResponse(BaseModel):
    status: str = "stored"


class PledgeListResponse(BaseModel):
    """GET /partitions/{key}/pledges response."""

    partition: str
    pledges: list[dict[str, Any]]


class ResultEnvelope(BaseModel):
    """Escrow result serialized as ``{type, data}``."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str = __version__
