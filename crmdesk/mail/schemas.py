from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class EmailAccountCreate(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    email: EmailStr
    smtp_host: str | None = None
    smtp_port: int | None = Field(default=None, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    imap_host: str | None = None
    imap_port: int | None = Field(default=None, ge=1, le=65535)
    imap_username: str | None = None
    imap_password: str | None = None
    use_ssl: bool = True
    is_primary: bool = False


class EmailAccountUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    email: EmailStr | None = None
    smtp_host: str | None = None
    smtp_port: int | None = Field(default=None, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    imap_host: str | None = None
    imap_port: int | None = Field(default=None, ge=1, le=65535)
    imap_username: str | None = None
    imap_password: str | None = None
    use_ssl: bool | None = None
    is_primary: bool | None = None
    status: str | None = None


class EmailAccountRead(BaseModel):
    """Account settings without the stored SMTP/IMAP passwords."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str | None
    email: str
    smtp_host: str | None
    smtp_port: int | None
    smtp_username: str | None
    imap_host: str | None
    imap_port: int | None
    imap_username: str | None
    use_ssl: bool
    is_primary: bool
    status: str
    last_synced: datetime | None
    created_at: datetime
    updated_at: datetime


class SignatureCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1)
    is_default: bool = False


class SignatureUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    content: str | None = Field(default=None, min_length=1)
    is_default: bool | None = None


class SignatureRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    content: str
    is_default: bool
    created_at: datetime
    updated_at: datetime


class AccountSignatureCreate(BaseModel):
    signature_id: int
    is_default: bool = False


class AccountSignatureUpdate(BaseModel):
    is_default: bool | None = None


class AccountSignatureRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    signature_id: int
    is_default: bool
    created_at: datetime
    updated_at: datetime
