from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ZoneCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    location: str | None = Field(default=None, max_length=255)
    description: str | None = None
    client_id: int | None = None
    operator_id: int | None = None
    generator_mix: dict[str, int] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def _trim_name(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        trimmed = value.strip()
        if trimmed == "":
            raise ValueError("value must not be empty")
        return trimmed


class ZoneUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    location: str | None = Field(default=None, max_length=255)
    description: str | None = None
    client_id: int | None = None
    operator_id: int | None = None
    generator_mix: dict[str, int] | None = None


class ZoneOperatorRequest(BaseModel):
    operator_id: int | None


class ZoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    location: str | None
    description: str | None
    client_id: int | None
    assigned_operator_id: int | None
    created_at: datetime
    updated_at: datetime
