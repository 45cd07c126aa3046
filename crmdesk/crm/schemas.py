from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


EntityStatus = Literal["active", "inactive", "archived"]
EmailType = Literal["work", "personal", "previous_work", "other"]
DealStatus = Literal["open", "won", "lost"]
LeadStatus = Literal["new", "contacted", "qualified", "unqualified", "converted"]
TaskPriority = Literal["low", "medium", "high"]
TaskStatus = Literal["open", "done"]


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = None
    website: str | None = None
    industry: str | None = None
    address: str | None = None
    notes: str | None = None
    status: EntityStatus = "active"


class CompanyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = None
    website: str | None = None
    industry: str | None = None
    address: str | None = None
    notes: str | None = None
    status: EntityStatus | None = None


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str | None
    phone: str | None
    website: str | None
    industry: str | None
    address: str | None
    notes: str | None
    status: str
    created_at: datetime
    updated_at: datetime


class ContactEmailCreate(BaseModel):
    email_address: EmailStr
    type: EmailType = "work"
    is_primary: bool = False
    is_archived: bool = False
    status: EntityStatus = "active"


class ContactEmailUpdate(BaseModel):
    email_address: EmailStr | None = None
    type: EmailType | None = None
    is_primary: bool | None = None
    is_archived: bool | None = None
    status: EntityStatus | None = None
    contact_id: int | None = None


class ContactEmailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contact_id: int
    email_address: str
    type: str
    is_primary: bool
    is_archived: bool
    status: str
    created_at: datetime
    updated_at: datetime


class AreaOfActivityCreate(BaseModel):
    company_id: int | None = None
    company_name: str | None = None
    role: str | None = None
    job_description: str | None = None
    is_primary: bool = False


class AreaOfActivityUpdate(BaseModel):
    company_id: int | None = None
    company_name: str | None = None
    role: str | None = None
    job_description: str | None = None
    is_primary: bool | None = None
    contact_id: int | None = None


class AreaOfActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contact_id: int
    company_id: int | None
    company_name: str | None
    role: str | None
    job_description: str | None
    is_primary: bool
    created_at: datetime
    updated_at: datetime


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None
    mobile_phone: str | None = None
    notes: str | None = None
    status: EntityStatus = "active"
    emails: list[EmailStr] = Field(default_factory=list)


class ContactUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = None
    mobile_phone: str | None = None
    notes: str | None = None
    status: EntityStatus | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    phone: str | None
    mobile_phone: str | None
    notes: str | None
    status: str
    primary_email: str | None = None
    primary_company_id: int | None = None
    primary_company_name: str | None = None
    created_at: datetime
    updated_at: datetime


class PipelineStageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    position: int = Field(ge=0)


class PipelineStageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    position: int | None = Field(default=None, ge=0)


class PipelineStageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    position: int


class DealCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    value: Decimal | None = Field(default=None, ge=0)
    status: DealStatus = "open"
    stage_id: int | None = None
    contact_id: int | None = None
    company_id: int | None = None
    expected_close_date: date | None = None
    notes: str | None = None


class DealUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    value: Decimal | None = Field(default=None, ge=0)
    status: DealStatus | None = None
    stage_id: int | None = None
    contact_id: int | None = None
    company_id: int | None = None
    expected_close_date: date | None = None
    notes: str | None = None


class DealStageMove(BaseModel):
    stage_id: int


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    value: Decimal | None
    status: str
    stage_id: int | None
    contact_id: int | None
    company_id: int | None
    expected_close_date: date | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class LeadCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    company_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    source: str | None = None
    status: LeadStatus = "new"
    notes: str | None = None
    assigned_to_user_id: int | None = None


class LeadUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    company_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    source: str | None = None
    status: LeadStatus | None = None
    notes: str | None = None
    assigned_to_user_id: int | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    company_name: str | None
    email: str | None
    phone: str | None
    source: str | None
    status: str
    notes: str | None
    assigned_to_user_id: int | None
    converted_contact_id: int | None
    converted_company_id: int | None
    converted_at: datetime | None
    created_at: datetime
    updated_at: datetime


class LeadConvertResponse(BaseModel):
    lead_id: int
    contact_id: int
    company_id: int | None
    contact_email_id: int | None
    area_of_activity_id: int | None


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    due_date: datetime | None = None
    priority: TaskPriority = "medium"
    contact_id: int | None = None
    company_id: int | None = None
    deal_id: int | None = None
    assigned_to_user_id: int | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    due_date: datetime | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    contact_id: int | None = None
    company_id: int | None = None
    deal_id: int | None = None
    assigned_to_user_id: int | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    due_date: datetime | None
    priority: str
    status: str
    completed_at: datetime | None
    contact_id: int | None
    company_id: int | None
    deal_id: int | None
    assigned_to_user_id: int | None
    created_at: datetime
    updated_at: datetime


class SynergyCreate(BaseModel):
    contact_id: int
    company_id: int
    deal_id: int | None = None
    type: str = Field(min_length=1, max_length=50)
    description: str | None = None
    status: str = "active"
    start_date: date
    end_date: date | None = None


class SynergyUpdate(BaseModel):
    deal_id: int | None = None
    type: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = None
    status: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class SynergyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contact_id: int
    company_id: int
    deal_id: int | None
    type: str
    description: str | None
    status: str
    start_date: date
    end_date: date | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ImportRowError(BaseModel):
    row_number: int
    errors: list[str]


class ImportResult(BaseModel):
    entity: str
    total_rows: int
    imported: int
    skipped_duplicates: int
    failed: int
    errors: list[ImportRowError] = Field(default_factory=list)


class DuplicatePair(BaseModel):
    first_id: int
    second_id: int
    score: float
    matched_fields: dict[str, float] = Field(default_factory=dict)


class DuplicateReport(BaseModel):
    entity: str
    threshold: float
    pairs: list[DuplicatePair]
