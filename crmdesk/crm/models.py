from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crmdesk.core.database import Base
from crmdesk.users.models import User  # noqa: F401  registers crm_user for foreign keys


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(Base):
    __tablename__ = "crm_company"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", server_default="active")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Contact(Base):
    __tablename__ = "crm_contact"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    emails: Mapped[list[ContactEmail]] = relationship(
        "ContactEmail",
        back_populates="contact",
        cascade="all, delete-orphan",
        order_by="ContactEmail.id",
    )
    areas: Mapped[list[AreaOfActivity]] = relationship(
        "AreaOfActivity",
        back_populates="contact",
        cascade="all, delete-orphan",
        order_by="AreaOfActivity.id",
    )
    synergies: Mapped[list[Synergy]] = relationship(
        "Synergy",
        back_populates="contact",
        cascade="all, delete-orphan",
    )


class ContactEmail(Base):
    __tablename__ = "crm_contact_email"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="CASCADE"),
        nullable=False,
    )
    email_address: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="work", server_default="work")
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    contact: Mapped[Contact] = relationship("Contact", back_populates="emails")

    __table_args__ = (
        UniqueConstraint("contact_id", "email_address", name="uq_crm_contact_email_address_per_contact"),
    )


class AreaOfActivity(Base):
    __tablename__ = "crm_area_of_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="RESTRICT"),
        nullable=True,
    )
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    job_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    contact: Mapped[Contact] = relationship("Contact", back_populates="areas")


class PipelineStage(Base):
    __tablename__ = "crm_pipeline_stage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Deal(Base):
    __tablename__ = "crm_deal"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    value: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open", server_default="open")
    stage_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_pipeline_stage.id", ondelete="SET NULL"),
        nullable=True,
    )
    contact_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    company_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="RESTRICT"),
        nullable=True,
    )
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Lead(Base):
    __tablename__ = "crm_lead"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new", server_default="new")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    converted_contact_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    converted_company_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="SET NULL"),
        nullable=True,
    )
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Task(Base):
    __tablename__ = "crm_task"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open", server_default="open")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contact_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    company_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="SET NULL"),
        nullable=True,
    )
    deal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_deal.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_to_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Synergy(Base):
    __tablename__ = "crm_synergy"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="RESTRICT"),
        nullable=False,
    )
    deal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_deal.id", ondelete="SET NULL"),
        nullable=True,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", server_default="active")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    contact: Mapped[Contact] = relationship("Contact", back_populates="synergies")


Index("ix_crm_contact_name", Contact.last_name, Contact.first_name)
Index("ix_crm_company_name", Company.name)
Index("ix_crm_contact_email_contact_id", ContactEmail.contact_id)
Index("ix_crm_contact_email_address", ContactEmail.email_address)
Index(
    "uq_crm_contact_email_primary_per_contact",
    ContactEmail.contact_id,
    unique=True,
    postgresql_where=ContactEmail.is_primary.is_(True),
    sqlite_where=ContactEmail.is_primary.is_(True),
)
Index("ix_crm_area_of_activity_contact_id", AreaOfActivity.contact_id)
Index("ix_crm_area_of_activity_company_id", AreaOfActivity.company_id)
Index(
    "uq_crm_area_of_activity_primary_per_contact",
    AreaOfActivity.contact_id,
    unique=True,
    postgresql_where=AreaOfActivity.is_primary.is_(True),
    sqlite_where=AreaOfActivity.is_primary.is_(True),
)
Index("ix_crm_deal_stage_status", Deal.stage_id, Deal.status)
Index("ix_crm_deal_company_id", Deal.company_id)
Index("ix_crm_deal_contact_id", Deal.contact_id)
Index("ix_crm_lead_status", Lead.status)
Index("ix_crm_lead_email", Lead.email)
Index("ix_crm_task_status_due_date", Task.status, Task.due_date)
Index("ix_crm_synergy_contact_id", Synergy.contact_id)
Index("ix_crm_synergy_company_id", Synergy.company_id)
Index("ix_crm_synergy_is_active", Synergy.is_active)
