"""Pydantic schemas for auth, users, and roles.

Request bodies declare fields optional so routes can answer missing
fields with a 400 and a readable message. Read schemas never include
password material.

The wire format is camelCase (fullName, organizationId, ...); Python
attributes stay snake_case. Requests accept either spelling.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tenantcrm.auth.permissions import Permission


# ─── Requests ───────────────────────────────────────────

class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = Field(default=None, alias="fullName")
    organization_name: Optional[str] = Field(default=None, alias="organizationName")
    organization_subdomain: Optional[str] = Field(
        default=None, alias="organizationSubdomain"
    )

    model_config = {"populate_by_name": True}


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    permissions: list[Permission] = Field(default_factory=list)

    @field_validator("permissions")
    @classmethod
    def dedupe(cls, v: list[Permission]) -> list[Permission]:
        return sorted(set(v), key=lambda p: p.value)


# ─── Responses ──────────────────────────────────────────

class ReadModel(BaseModel):
    """Built from ORM rows or identity dataclasses, serialized camelCase."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class OrganizationRead(ReadModel):
    id: uuid.UUID
    name: str
    subdomain: str
    settings: dict = Field(default_factory=dict)
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserRead(ReadModel):
    """The signed-in user: every column except the password hash."""
    id: uuid.UUID
    email: str
    username: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    role_id: Optional[uuid.UUID] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    organization: OrganizationRead


class UserEnvelope(BaseModel):
    user: UserRead


class MemberRead(ReadModel):
    """A user as seen by another member of the same organization."""
    id: uuid.UUID
    email: str
    username: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    role_id: Optional[uuid.UUID] = None
    is_active: bool
    last_login: Optional[datetime] = None


class RoleRead(ReadModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    permissions: list[str]
    organization_id: uuid.UUID
    created_at: Optional[datetime] = None
