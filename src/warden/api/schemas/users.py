"""Pydantic schemas for the /users administration endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CreateUserRequest(BaseModel):
    """Account created by an administrator."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=320)
    name: str = Field(..., max_length=200)
    phone: str | None = Field(None, max_length=30)
    password: str = Field(..., max_length=200)
    is_verified: bool = Field(False, description="Skip the email verification step")


class UpdateUserRequest(BaseModel):
    """Profile edit guarded by the optimistic version."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., max_length=200)
    phone: str | None = Field(None, max_length=30)
    version: int = Field(..., ge=1, description="Version the client last read")
