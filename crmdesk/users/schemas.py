from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


UserRole = Literal["user", "admin", "super_admin"]
UserStatus = Literal["active", "inactive", "suspended", "pending"]


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    email: EmailStr
    full_name: str | None = Field(default=None, max_length=200)
    password: str = Field(min_length=8, max_length=128)
    role: UserRole = "user"
    status: UserStatus = "active"


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    full_name: str | None
    role: str
    status: str
    last_login_at: datetime | None
    created_at: datetime


class CurrentUserRead(BaseModel):
    id: int
    username: str
    role: str
    permissions: list[str]
