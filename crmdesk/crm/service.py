from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crmdesk import audit, events
from crmdesk.crm.errors import PrimaryFlagConflict, PrimaryFlagError, PrimaryFlagValidationError, PrimaryRecordNotFound
from crmdesk.crm.models import (
    AreaOfActivity,
    Company,
    Contact,
    ContactEmail,
    Deal,
    Lead,
    PipelineStage,
    Synergy,
    Task,
)
from crmdesk.crm.primary import PrimaryChange, PrimaryFlagPolicy, PrimaryFlagToggler
from crmdesk.crm.schemas import (
    AreaOfActivityCreate,
    AreaOfActivityRead,
    AreaOfActivityUpdate,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactEmailCreate,
    ContactEmailRead,
    ContactEmailUpdate,
    ContactRead,
    ContactUpdate,
    DealCreate,
    DealRead,
    DealUpdate,
    LeadConvertResponse,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    PipelineStageCreate,
    PipelineStageRead,
    PipelineStageUpdate,
    SynergyCreate,
    SynergyRead,
    SynergyUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)
from crmdesk.users.models import User


logger = logging.getLogger("crmdesk.crm.service")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActorUser:
    user_id: str
    username: str
    role: str
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None


def primary_flag_http_error(exc: PrimaryFlagError) -> HTTPException:
    if isinstance(exc, PrimaryRecordNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{exc.entity} not found")
    if isinstance(exc, PrimaryFlagConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, PrimaryFlagValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def publish_event(event_type: str, actor_user: ActorUser, payload: dict[str, Any]) -> None:
    envelope = events.build_envelope(event_type, actor_user.user_id, payload)
    envelope["correlation_id"] = actor_user.correlation_id
    events.publish(envelope)


class FlaggableChildService(ABC):
    """CRUD for rows that share a primary/default flag within a parent group.

    Subclasses bind a ``PrimaryFlagPolicy`` plus the read schema and resolve
    the parent through ``_ensure_group``. All flag bookkeeping is delegated to
    ``PrimaryFlagToggler``; this class owns the transaction, the audit trail
    and the HTTP error mapping.
    """

    entity_type: str
    event_prefix: str
    not_found_detail: str
    integrity_detail: str
    read_schema: type[BaseModel]

    def __init__(self, policy: PrimaryFlagPolicy) -> None:
        self.policy = policy
        self.toggler = PrimaryFlagToggler(policy)

    def list_records(self, session: Session, actor_user: ActorUser, group_key: int) -> list[Any]:
        self._ensure_group(session, actor_user, group_key)
        try:
            rows = self.toggler.list_group(session, group_key)
        except PrimaryFlagError as exc:
            raise primary_flag_http_error(exc)
        return [self._to_read(row) for row in rows]

    def get_record(self, session: Session, actor_user: ActorUser, group_key: int, record_id: int) -> Any:
        self._ensure_group(session, actor_user, group_key)
        return self._to_read(self._get_in_group(session, group_key, record_id))

    def create_record(
        self,
        session: Session,
        actor_user: ActorUser,
        group_key: int,
        values: dict[str, Any],
        requested_primary: bool = False,
    ) -> Any:
        self._ensure_group(session, actor_user, group_key)
        prepared = self._prepare_values(session, values)
        try:
            record = self.toggler.create(session, group_key, prepared, requested_primary=requested_primary)
            read_model = self._to_read(record)
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=self.integrity_detail)

        self._record_mutation(actor_user, "create", read_model, before=None)
        return read_model

    def update_record(
        self,
        session: Session,
        actor_user: ActorUser,
        group_key: int,
        record_id: int,
        values: dict[str, Any],
    ) -> Any:
        self._ensure_group(session, actor_user, group_key)
        before = self._to_read(self._get_in_group(session, group_key, record_id)).model_dump(mode="json")
        prepared = self._prepare_values(session, values)
        try:
            record = self.toggler.update(session, record_id, prepared, group_key=group_key)
            read_model = self._to_read(record)
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=self.integrity_detail)

        self._record_mutation(actor_user, "update", read_model, before=before)
        return read_model

    def set_primary(self, session: Session, actor_user: ActorUser, group_key: int, record_id: int) -> Any:
        self._ensure_group(session, actor_user, group_key)
        try:
            change = self.toggler.apply_primary(session, group_key, record_id)
            if change is PrimaryChange.NOT_FOUND:
                session.rollback()
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=self.not_found_detail)
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=self.integrity_detail)

        read_model = self._to_read(self._get_in_group(session, group_key, record_id))
        if change is PrimaryChange.CHANGED:
            self._record_mutation(actor_user, "set_primary", read_model, before=None)
        return read_model

    def delete_record(self, session: Session, actor_user: ActorUser, group_key: int, record_id: int) -> None:
        self._ensure_group(session, actor_user, group_key)
        before = self._to_read(self._get_in_group(session, group_key, record_id)).model_dump(mode="json")
        try:
            self._before_delete(session, group_key, record_id)
            deleted = self.toggler.delete(session, record_id, group_key=group_key)
            if not deleted:
                session.rollback()
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=self.not_found_detail)
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=self.integrity_detail)

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(record_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        publish_event(
            f"{self.event_prefix}.deleted",
            actor_user,
            {"id": record_id, self.policy.group_attr: group_key},
        )

    @abstractmethod
    def _ensure_group(self, session: Session, actor_user: ActorUser, group_key: int) -> None:
        """Raise 404 unless the parent exists and the actor may use it."""

    def _prepare_values(self, session: Session, values: dict[str, Any]) -> dict[str, Any]:
        return values

    def _before_delete(self, session: Session, group_key: int, record_id: int) -> None:
        return None

    def _get_in_group(self, session: Session, group_key: int, record_id: int) -> Any:
        record = session.get(self.policy.model, record_id)
        if record is None or getattr(record, self.policy.group_attr) != group_key:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=self.not_found_detail)
        return record

    def _to_read(self, record: Any) -> Any:
        return self.read_schema.model_validate(record)

    def _record_mutation(self, actor_user: ActorUser, action: str, read_model: Any, before: dict[str, Any] | None) -> None:
        after = read_model.model_dump(mode="json")
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action=action,
            before=before,
            after=after,
            correlation_id=actor_user.correlation_id,
        )
        event_suffix = {"create": "created", "update": "updated", "set_primary": self.policy.flag_attr.removeprefix("is_") + "_set"}
        publish_event(
            f"{self.event_prefix}.{event_suffix[action]}",
            actor_user,
            {
                "id": read_model.id,
                self.policy.group_attr: after[self.policy.group_attr],
                self.policy.flag_attr: after[self.policy.flag_attr],
            },
        )


CONTACT_EMAIL_POLICY = PrimaryFlagPolicy(
    entity="contact_email",
    model=ContactEmail,
    group_attr="contact_id",
    parent_model=Contact,
)
AREA_OF_ACTIVITY_POLICY = PrimaryFlagPolicy(
    entity="area_of_activity",
    model=AreaOfActivity,
    group_attr="contact_id",
    parent_model=Contact,
)


class _ContactChildService(FlaggableChildService):
    def _ensure_group(self, session: Session, actor_user: ActorUser, group_key: int) -> None:
        if session.get(Contact, group_key) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")


class ContactEmailService(_ContactChildService):
    entity_type = "crm.contact_email"
    event_prefix = "crm.contact_email"
    not_found_detail = "contact email not found"
    integrity_detail = "email address already exists for contact"
    read_schema = ContactEmailRead

    def __init__(self) -> None:
        super().__init__(CONTACT_EMAIL_POLICY)

    def create_email(self, session: Session, actor_user: ActorUser, contact_id: int, dto: ContactEmailCreate) -> ContactEmailRead:
        values = dto.model_dump(exclude={"is_primary"})
        values["email_address"] = str(dto.email_address).strip().lower()
        return self.create_record(session, actor_user, contact_id, values, requested_primary=dto.is_primary)

    def update_email(
        self,
        session: Session,
        actor_user: ActorUser,
        contact_id: int,
        email_id: int,
        dto: ContactEmailUpdate,
    ) -> ContactEmailRead:
        values = dto.model_dump(exclude_unset=True)
        if values.get("email_address") is not None:
            values["email_address"] = str(values["email_address"]).strip().lower()
        elif "email_address" in values:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="email_address cannot be empty")
        return self.update_record(session, actor_user, contact_id, email_id, values)


class AreaOfActivityService(_ContactChildService):
    entity_type = "crm.area_of_activity"
    event_prefix = "crm.area_of_activity"
    not_found_detail = "area of activity not found"
    integrity_detail = "area of activity conflict for contact"
    read_schema = AreaOfActivityRead

    def __init__(self) -> None:
        super().__init__(AREA_OF_ACTIVITY_POLICY)

    def create_area(
        self,
        session: Session,
        actor_user: ActorUser,
        contact_id: int,
        dto: AreaOfActivityCreate,
    ) -> AreaOfActivityRead:
        return self.create_record(
            session,
            actor_user,
            contact_id,
            dto.model_dump(exclude={"is_primary"}),
            requested_primary=dto.is_primary,
        )

    def update_area(
        self,
        session: Session,
        actor_user: ActorUser,
        contact_id: int,
        area_id: int,
        dto: AreaOfActivityUpdate,
    ) -> AreaOfActivityRead:
        return self.update_record(session, actor_user, contact_id, area_id, dto.model_dump(exclude_unset=True))

    def _prepare_values(self, session: Session, values: dict[str, Any]) -> dict[str, Any]:
        company_id = values.get("company_id")
        if company_id is None:
            return values
        company = session.get(Company, company_id)
        if company is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="company not found")
        prepared = dict(values)
        if not prepared.get("company_name"):
            prepared["company_name"] = company.name
        return prepared


contact_email_service = ContactEmailService()
area_of_activity_service = AreaOfActivityService()


class CompanyService:
    entity_type = "crm.company"

    def create_company(self, session: Session, actor_user: ActorUser, dto: CompanyCreate) -> CompanyRead:
        company = Company(**self._normalize(dto.model_dump()))
        session.add(company)
        session.flush()
        read_model = CompanyRead.model_validate(company)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.company.created", actor_user, {"company_id": read_model.id, "name": read_model.name})
        return read_model

    def list_companies(
        self,
        session: Session,
        q: str | None = None,
        status_filter: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CompanyRead]:
        stmt = select(Company)
        if q:
            stmt = stmt.where(Company.name.ilike(f"%{q.strip()}%"))
        if status_filter:
            stmt = stmt.where(Company.status == status_filter)
        stmt = stmt.order_by(Company.name.asc(), Company.id.asc()).limit(limit).offset(offset)
        return [CompanyRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_company(self, session: Session, company_id: int) -> CompanyRead:
        return CompanyRead.model_validate(self._get(session, company_id))

    def update_company(self, session: Session, actor_user: ActorUser, company_id: int, dto: CompanyUpdate) -> CompanyRead:
        company = self._get(session, company_id)
        before = CompanyRead.model_validate(company).model_dump(mode="json")
        changes = self._normalize(dto.model_dump(exclude_unset=True))
        if "name" in changes and not changes["name"]:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name cannot be empty")
        for field_name, value in changes.items():
            setattr(company, field_name, value)
        company.updated_at = utcnow()

        if changes.get("name"):
            # affiliations keep a denormalised copy of the name
            session.execute(
                update(AreaOfActivity)
                .where(AreaOfActivity.company_id == company.id)
                .values(company_name=changes["name"], updated_at=utcnow())
                .execution_options(synchronize_session="fetch")
            )
        session.flush()
        read_model = CompanyRead.model_validate(company)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.company.updated", actor_user, {"company_id": read_model.id, "changed_fields": sorted(changes)})
        return read_model

    def delete_company(self, session: Session, actor_user: ActorUser, company_id: int) -> None:
        company = self._get(session, company_id)
        dependencies = self._count_dependencies(session, company.id)
        if any(dependencies.values()):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"message": "company has dependent records", "dependencies": dependencies},
            )

        before = CompanyRead.model_validate(company).model_dump(mode="json")
        session.execute(
            update(Task).where(Task.company_id == company.id).values(company_id=None).execution_options(synchronize_session="fetch")
        )
        session.execute(
            update(Lead)
            .where(Lead.converted_company_id == company.id)
            .values(converted_company_id=None)
            .execution_options(synchronize_session="fetch")
        )
        session.delete(company)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="company has dependent records")

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(company_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.company.deleted", actor_user, {"company_id": company_id})

    def _get(self, session: Session, company_id: int) -> Company:
        company = session.get(Company, company_id)
        if company is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="company not found")
        return company

    def _normalize(self, values: dict[str, Any]) -> dict[str, Any]:
        normalized = dict(values)
        if isinstance(normalized.get("name"), str):
            normalized["name"] = normalized["name"].strip()
        if normalized.get("email") is not None:
            normalized["email"] = str(normalized["email"]).lower()
        return normalized

    def _count_dependencies(self, session: Session, company_id: int) -> dict[str, int]:
        return {
            "areas_of_activity": int(
                session.scalar(select(func.count()).select_from(AreaOfActivity).where(AreaOfActivity.company_id == company_id))
                or 0
            ),
            "deals": int(session.scalar(select(func.count()).select_from(Deal).where(Deal.company_id == company_id)) or 0),
            "synergies": int(
                session.scalar(select(func.count()).select_from(Synergy).where(Synergy.company_id == company_id)) or 0
            ),
        }


class ContactService:
    entity_type = "crm.contact"

    def create_contact(self, session: Session, actor_user: ActorUser, dto: ContactCreate) -> ContactRead:
        addresses = [str(item).strip().lower() for item in dto.emails]
        if len(set(addresses)) != len(addresses):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="duplicate email addresses")

        try:
            contact = Contact(**dto.model_dump(exclude={"emails"}))
            contact.first_name = contact.first_name.strip()
            contact.last_name = contact.last_name.strip()
            session.add(contact)
            session.flush()
            for address in addresses:
                # the first address lands in an empty group and becomes primary
                contact_email_service.toggler.create(session, contact.id, {"email_address": address, "type": "work"})
            read_model = self._to_read(session, contact)
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="contact email conflict")

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.contact.created", actor_user, {"contact_id": read_model.id, "email_count": len(addresses)})
        return read_model

    def list_contacts(
        self,
        session: Session,
        q: str | None = None,
        company_id: int | None = None,
        status_filter: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ContactRead]:
        stmt = select(Contact)
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(or_(Contact.first_name.ilike(pattern), Contact.last_name.ilike(pattern)))
        if company_id is not None:
            stmt = stmt.where(
                Contact.id.in_(select(AreaOfActivity.contact_id).where(AreaOfActivity.company_id == company_id))
            )
        if status_filter:
            stmt = stmt.where(Contact.status == status_filter)
        stmt = stmt.order_by(Contact.last_name.asc(), Contact.first_name.asc(), Contact.id.asc()).limit(limit).offset(offset)
        return [self._to_read(session, row) for row in session.scalars(stmt).all()]

    def get_contact(self, session: Session, contact_id: int) -> ContactRead:
        return self._to_read(session, self._get(session, contact_id))

    def update_contact(self, session: Session, actor_user: ActorUser, contact_id: int, dto: ContactUpdate) -> ContactRead:
        contact = self._get(session, contact_id)
        before = self._to_read(session, contact).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)
        for name_field in ("first_name", "last_name"):
            if name_field in changes:
                if not changes[name_field] or not changes[name_field].strip():
                    raise HTTPException(
                        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                        detail=f"{name_field} cannot be empty",
                    )
                changes[name_field] = changes[name_field].strip()
        for field_name, value in changes.items():
            setattr(contact, field_name, value)
        contact.updated_at = utcnow()
        session.flush()
        read_model = self._to_read(session, contact)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(contact_id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.contact.updated", actor_user, {"contact_id": contact_id, "changed_fields": sorted(changes)})
        return read_model

    def delete_contact(self, session: Session, actor_user: ActorUser, contact_id: int) -> None:
        contact = self._get(session, contact_id)
        before = self._to_read(session, contact).model_dump(mode="json")
        for model in (Deal, Task):
            session.execute(
                update(model).where(model.contact_id == contact_id).values(contact_id=None).execution_options(synchronize_session="fetch")
            )
        session.execute(
            update(Lead)
            .where(Lead.converted_contact_id == contact_id)
            .values(converted_contact_id=None)
            .execution_options(synchronize_session="fetch")
        )
        # emails, areas and synergies go with the contact
        session.delete(contact)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(contact_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.contact.deleted", actor_user, {"contact_id": contact_id})

    def _get(self, session: Session, contact_id: int) -> Contact:
        contact = session.get(Contact, contact_id)
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
        return contact

    def _to_read(self, session: Session, contact: Contact) -> ContactRead:
        primary_email = contact_email_service.toggler.get_primary(session, contact.id)
        primary_area = area_of_activity_service.toggler.get_primary(session, contact.id)
        return ContactRead(
            id=contact.id,
            first_name=contact.first_name,
            last_name=contact.last_name,
            phone=contact.phone,
            mobile_phone=contact.mobile_phone,
            notes=contact.notes,
            status=contact.status,
            primary_email=primary_email.email_address if primary_email is not None else None,
            primary_company_id=primary_area.company_id if primary_area is not None else None,
            primary_company_name=primary_area.company_name if primary_area is not None else None,
            created_at=contact.created_at,
            updated_at=contact.updated_at,
        )


DEFAULT_PIPELINE_STAGES = (
    "Lead",
    "Qualification",
    "Contact",
    "Analysis",
    "Proposal",
    "Negotiation",
    "Closed won",
    "Closed lost",
)
CLOSED_STAGE_STATUS = {"closed won": "won", "closed lost": "lost"}


class PipelineService:
    entity_type = "crm.pipeline_stage"

    def list_stages(self, session: Session) -> list[PipelineStageRead]:
        rows = session.scalars(select(PipelineStage).order_by(PipelineStage.position.asc(), PipelineStage.id.asc())).all()
        return [PipelineStageRead.model_validate(row) for row in rows]

    def create_stage(self, session: Session, actor_user: ActorUser, dto: PipelineStageCreate) -> PipelineStageRead:
        stage = PipelineStage(name=dto.name.strip(), position=dto.position)
        session.add(stage)
        try:
            session.flush()
            read_model = PipelineStageRead.model_validate(stage)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="stage position already used")

        self._audit(actor_user, read_model.id, "create", None, read_model.model_dump(mode="json"))
        return read_model

    def update_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        stage_id: int,
        dto: PipelineStageUpdate,
    ) -> PipelineStageRead:
        stage = self._get(session, stage_id)
        before = PipelineStageRead.model_validate(stage).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True, exclude_none=True)
        for field_name, value in changes.items():
            setattr(stage, field_name, value.strip() if isinstance(value, str) else value)
        stage.updated_at = utcnow()
        try:
            session.flush()
            read_model = PipelineStageRead.model_validate(stage)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="stage position already used")

        self._audit(actor_user, stage_id, "update", before, read_model.model_dump(mode="json"))
        return read_model

    def delete_stage(self, session: Session, actor_user: ActorUser, stage_id: int) -> None:
        stage = self._get(session, stage_id)
        before = PipelineStageRead.model_validate(stage).model_dump(mode="json")
        session.execute(
            update(Deal).where(Deal.stage_id == stage_id).values(stage_id=None).execution_options(synchronize_session="fetch")
        )
        session.delete(stage)
        session.commit()
        self._audit(actor_user, stage_id, "delete", before, None)

    def initialize_default_stages(self, session: Session, actor_user: ActorUser) -> list[PipelineStageRead]:
        existing = session.scalar(select(func.count()).select_from(PipelineStage)) or 0
        if existing:
            return self.list_stages(session)

        for position, name in enumerate(DEFAULT_PIPELINE_STAGES):
            session.add(PipelineStage(name=name, position=position))
        try:
            session.commit()
        except IntegrityError:
            # another request seeded the stages first
            session.rollback()
            return self.list_stages(session)

        stages = self.list_stages(session)
        publish_event("crm.pipeline.initialized", actor_user, {"stage_ids": [stage.id for stage in stages]})
        return stages

    def _get(self, session: Session, stage_id: int) -> PipelineStage:
        stage = session.get(PipelineStage, stage_id)
        if stage is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="pipeline stage not found")
        return stage

    def _audit(
        self,
        actor_user: ActorUser,
        stage_id: int,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(stage_id),
            action=action,
            before=before,
            after=after,
            correlation_id=actor_user.correlation_id,
        )


def _ensure_reference(session: Session, model: type[Any], record_id: int | None, label: str) -> None:
    if record_id is not None and session.get(model, record_id) is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{label} not found")


class DealService:
    entity_type = "crm.deal"

    def create_deal(self, session: Session, actor_user: ActorUser, dto: DealCreate) -> DealRead:
        self._ensure_references(session, dto.model_dump())
        deal = Deal(**dto.model_dump())
        deal.name = deal.name.strip()
        if deal.stage_id is not None:
            deal.status = self._status_for_stage(session, deal.stage_id, deal.status)
        session.add(deal)
        session.flush()
        read_model = DealRead.model_validate(deal)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.deal.created", actor_user, {"deal_id": read_model.id, "stage_id": read_model.stage_id})
        return read_model

    def list_deals(
        self,
        session: Session,
        stage_id: int | None = None,
        status_filter: str | None = None,
        company_id: int | None = None,
        contact_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DealRead]:
        conditions = []
        if stage_id is not None:
            conditions.append(Deal.stage_id == stage_id)
        if status_filter:
            conditions.append(Deal.status == status_filter)
        if company_id is not None:
            conditions.append(Deal.company_id == company_id)
        if contact_id is not None:
            conditions.append(Deal.contact_id == contact_id)
        stmt = select(Deal)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(Deal.created_at.desc(), Deal.id.desc()).limit(limit).offset(offset)
        return [DealRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_deal(self, session: Session, deal_id: int) -> DealRead:
        return DealRead.model_validate(self._get(session, deal_id))

    def update_deal(self, session: Session, actor_user: ActorUser, deal_id: int, dto: DealUpdate) -> DealRead:
        deal = self._get(session, deal_id)
        before = DealRead.model_validate(deal).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)
        if "name" in changes and not (changes["name"] or "").strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name cannot be empty")
        self._ensure_references(session, changes)
        for field_name, value in changes.items():
            setattr(deal, field_name, value)
        if "stage_id" in changes and deal.stage_id is not None and "status" not in changes:
            deal.status = self._status_for_stage(session, deal.stage_id, deal.status)
        deal.updated_at = utcnow()
        session.flush()
        read_model = DealRead.model_validate(deal)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal_id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.deal.updated", actor_user, {"deal_id": deal_id, "changed_fields": sorted(changes)})
        return read_model

    def move_stage(self, session: Session, actor_user: ActorUser, deal_id: int, stage_id: int) -> DealRead:
        deal = self._get(session, deal_id)
        stage = session.get(PipelineStage, stage_id)
        if stage is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="pipeline stage not found")

        before = {"stage_id": deal.stage_id, "status": deal.status}
        deal.stage_id = stage.id
        deal.status = self._status_for_stage(session, stage.id, deal.status)
        deal.updated_at = utcnow()
        session.flush()
        read_model = DealRead.model_validate(deal)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal_id),
            action="stage_change",
            before=before,
            after={"stage_id": read_model.stage_id, "status": read_model.status},
            correlation_id=actor_user.correlation_id,
        )
        publish_event(
            "crm.deal.stage_changed",
            actor_user,
            {"deal_id": deal_id, "from_stage_id": before["stage_id"], "to_stage_id": stage.id, "status": read_model.status},
        )
        return read_model

    def delete_deal(self, session: Session, actor_user: ActorUser, deal_id: int) -> None:
        deal = self._get(session, deal_id)
        before = DealRead.model_validate(deal).model_dump(mode="json")
        session.execute(
            update(Task).where(Task.deal_id == deal_id).values(deal_id=None).execution_options(synchronize_session="fetch")
        )
        session.execute(
            update(Synergy).where(Synergy.deal_id == deal_id).values(deal_id=None).execution_options(synchronize_session="fetch")
        )
        session.delete(deal)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.deal.deleted", actor_user, {"deal_id": deal_id})

    def _get(self, session: Session, deal_id: int) -> Deal:
        deal = session.get(Deal, deal_id)
        if deal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="deal not found")
        return deal

    def _ensure_references(self, session: Session, values: dict[str, Any]) -> None:
        _ensure_reference(session, PipelineStage, values.get("stage_id"), "pipeline stage")
        _ensure_reference(session, Contact, values.get("contact_id"), "contact")
        _ensure_reference(session, Company, values.get("company_id"), "company")

    def _status_for_stage(self, session: Session, stage_id: int, current_status: str) -> str:
        stage = session.get(PipelineStage, stage_id)
        if stage is None:
            return current_status
        closed_status = CLOSED_STAGE_STATUS.get(stage.name.strip().lower())
        if closed_status is not None:
            return closed_status
        # leaving a closed stage reopens the deal
        return "open" if current_status in {"won", "lost"} else current_status


class LeadService:
    entity_type = "crm.lead"

    def create_lead(self, session: Session, actor_user: ActorUser, dto: LeadCreate) -> LeadRead:
        if dto.status == "converted":
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="lead cannot be created as converted")
        values = dto.model_dump()
        if values.get("email") is not None:
            values["email"] = str(values["email"]).lower()
        lead = Lead(**values)
        session.add(lead)
        session.flush()
        read_model = LeadRead.model_validate(lead)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.lead.created", actor_user, {"lead_id": read_model.id, "status": read_model.status})
        return read_model

    def list_leads(
        self,
        session: Session,
        status_filter: str | None = None,
        q: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LeadRead]:
        stmt = select(Lead)
        if status_filter:
            stmt = stmt.where(Lead.status == status_filter)
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(
                or_(Lead.first_name.ilike(pattern), Lead.last_name.ilike(pattern), Lead.company_name.ilike(pattern))
            )
        stmt = stmt.order_by(Lead.created_at.desc(), Lead.id.desc()).limit(limit).offset(offset)
        return [LeadRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_lead(self, session: Session, lead_id: int) -> LeadRead:
        return LeadRead.model_validate(self._get(session, lead_id))

    def update_lead(self, session: Session, actor_user: ActorUser, lead_id: int, dto: LeadUpdate) -> LeadRead:
        lead = self._get(session, lead_id)
        if lead.status == "converted":
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="converted lead cannot be updated")
        changes = dto.model_dump(exclude_unset=True)
        if changes.get("status") == "converted":
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="use the convert endpoint")
        if changes.get("email") is not None:
            changes["email"] = str(changes["email"]).lower()
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        for field_name, value in changes.items():
            setattr(lead, field_name, value)
        lead.updated_at = utcnow()
        session.flush()
        read_model = LeadRead.model_validate(lead)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.lead.updated", actor_user, {"lead_id": lead_id, "status": read_model.status})
        return read_model

    def delete_lead(self, session: Session, actor_user: ActorUser, lead_id: int) -> None:
        lead = self._get(session, lead_id)
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        session.delete(lead)
        session.commit()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.lead.deleted", actor_user, {"lead_id": lead_id})

    def convert_lead(self, session: Session, actor_user: ActorUser, lead_id: int) -> LeadConvertResponse:
        """Turn a lead into a contact (and company) in one transaction.

        The lead's email becomes the contact's primary email and the company
        becomes the contact's primary area of activity. An existing company
        with the same name (case-insensitive) is reused.
        """
        lead = self._get(session, lead_id)
        if lead.status == "converted" or lead.converted_at is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead already converted")

        before_status = lead.status
        company: Company | None = None
        email_record: ContactEmail | None = None
        area_record: AreaOfActivity | None = None
        try:
            company_name = (lead.company_name or "").strip()
            if company_name:
                company = session.scalar(
                    select(Company).where(func.lower(Company.name) == company_name.lower()).order_by(Company.id.asc()).limit(1)
                )
                if company is None:
                    company = Company(name=company_name, phone=lead.phone)
                    session.add(company)
                    session.flush()

            contact = Contact(
                first_name=lead.first_name,
                last_name=lead.last_name,
                phone=lead.phone,
                notes=lead.notes,
            )
            session.add(contact)
            session.flush()

            if lead.email:
                email_record = contact_email_service.toggler.create(
                    session,
                    contact.id,
                    {"email_address": lead.email.lower(), "type": "work"},
                    requested_primary=True,
                )
            if company is not None:
                area_record = area_of_activity_service.toggler.create(
                    session,
                    contact.id,
                    {"company_id": company.id, "company_name": company.name},
                    requested_primary=True,
                )

            lead.status = "converted"
            lead.converted_contact_id = contact.id
            lead.converted_company_id = company.id if company is not None else None
            lead.converted_at = utcnow()
            lead.updated_at = utcnow()
            session.flush()
            result = LeadConvertResponse(
                lead_id=lead.id,
                contact_id=contact.id,
                company_id=company.id if company is not None else None,
                contact_email_id=email_record.id if email_record is not None else None,
                area_of_activity_id=area_record.id if area_record is not None else None,
            )
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead conversion conflict")

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="convert",
            before={"status": before_status},
            after=result.model_dump(mode="json") | {"status": "converted"},
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.lead.converted", actor_user, result.model_dump(mode="json"))
        logger.info("lead.converted", extra={"entity": "lead", "operation": "convert", "record_id": lead_id})
        return result

    def _get(self, session: Session, lead_id: int) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        return lead


class TaskService:
    entity_type = "crm.task"

    def create_task(self, session: Session, actor_user: ActorUser, dto: TaskCreate) -> TaskRead:
        values = dto.model_dump()
        self._ensure_references(session, values)
        task = Task(**values)
        task.title = task.title.strip()
        session.add(task)
        session.flush()
        read_model = TaskRead.model_validate(task)
        session.commit()

        self._audit(actor_user, read_model.id, "create", None, read_model.model_dump(mode="json"))
        publish_event("crm.task.created", actor_user, {"task_id": read_model.id})
        return read_model

    def list_tasks(
        self,
        session: Session,
        status_filter: str | None = None,
        contact_id: int | None = None,
        company_id: int | None = None,
        deal_id: int | None = None,
        assigned_to_user_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TaskRead]:
        conditions = []
        if status_filter:
            conditions.append(Task.status == status_filter)
        if contact_id is not None:
            conditions.append(Task.contact_id == contact_id)
        if company_id is not None:
            conditions.append(Task.company_id == company_id)
        if deal_id is not None:
            conditions.append(Task.deal_id == deal_id)
        if assigned_to_user_id is not None:
            conditions.append(Task.assigned_to_user_id == assigned_to_user_id)
        stmt = select(Task)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc()).limit(limit).offset(offset)
        return [TaskRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_task(self, session: Session, task_id: int) -> TaskRead:
        return TaskRead.model_validate(self._get(session, task_id))

    def update_task(self, session: Session, actor_user: ActorUser, task_id: int, dto: TaskUpdate) -> TaskRead:
        task = self._get(session, task_id)
        before = TaskRead.model_validate(task).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)
        if "title" in changes and not (changes["title"] or "").strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="title cannot be empty")
        self._ensure_references(session, changes)
        for field_name, value in changes.items():
            setattr(task, field_name, value)
        if changes.get("status") == "done" and task.completed_at is None:
            task.completed_at = utcnow()
        elif changes.get("status") == "open":
            task.completed_at = None
        task.updated_at = utcnow()
        session.flush()
        read_model = TaskRead.model_validate(task)
        session.commit()

        self._audit(actor_user, task_id, "update", before, read_model.model_dump(mode="json"))
        publish_event("crm.task.updated", actor_user, {"task_id": task_id, "changed_fields": sorted(changes)})
        return read_model

    def complete_task(self, session: Session, actor_user: ActorUser, task_id: int) -> TaskRead:
        task = self._get(session, task_id)
        if task.status == "done":
            return TaskRead.model_validate(task)
        before = TaskRead.model_validate(task).model_dump(mode="json")
        task.status = "done"
        task.completed_at = utcnow()
        task.updated_at = utcnow()
        session.flush()
        read_model = TaskRead.model_validate(task)
        session.commit()

        self._audit(actor_user, task_id, "complete", before, read_model.model_dump(mode="json"))
        publish_event("crm.task.completed", actor_user, {"task_id": task_id})
        return read_model

    def delete_task(self, session: Session, actor_user: ActorUser, task_id: int) -> None:
        task = self._get(session, task_id)
        before = TaskRead.model_validate(task).model_dump(mode="json")
        session.delete(task)
        session.commit()
        self._audit(actor_user, task_id, "delete", before, None)
        publish_event("crm.task.deleted", actor_user, {"task_id": task_id})

    def _get(self, session: Session, task_id: int) -> Task:
        task = session.get(Task, task_id)
        if task is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task not found")
        return task

    def _ensure_references(self, session: Session, values: dict[str, Any]) -> None:
        _ensure_reference(session, Contact, values.get("contact_id"), "contact")
        _ensure_reference(session, Company, values.get("company_id"), "company")
        _ensure_reference(session, Deal, values.get("deal_id"), "deal")
        _ensure_reference(session, User, values.get("assigned_to_user_id"), "user")

    def _audit(
        self,
        actor_user: ActorUser,
        task_id: int,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(task_id),
            action=action,
            before=before,
            after=after,
            correlation_id=actor_user.correlation_id,
        )


class SynergyService:
    entity_type = "crm.synergy"

    def create_synergy(self, session: Session, actor_user: ActorUser, dto: SynergyCreate) -> SynergyRead:
        if session.get(Contact, dto.contact_id) is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="contact not found")
        if session.get(Company, dto.company_id) is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="company not found")
        _ensure_reference(session, Deal, dto.deal_id, "deal")
        self._validate_dates(dto.start_date, dto.end_date)

        synergy = Synergy(**dto.model_dump(), is_active=True)
        session.add(synergy)
        session.flush()
        read_model = SynergyRead.model_validate(synergy)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event(
            "crm.synergy.created",
            actor_user,
            {"synergy_id": read_model.id, "contact_id": read_model.contact_id, "company_id": read_model.company_id},
        )
        return read_model

    def list_synergies(
        self,
        session: Session,
        contact_id: int | None = None,
        company_id: int | None = None,
        deal_id: int | None = None,
        include_inactive: bool = False,
    ) -> list[SynergyRead]:
        conditions = []
        if not include_inactive:
            conditions.append(Synergy.is_active.is_(True))
        if contact_id is not None:
            conditions.append(Synergy.contact_id == contact_id)
        if company_id is not None:
            conditions.append(Synergy.company_id == company_id)
        if deal_id is not None:
            conditions.append(Synergy.deal_id == deal_id)
        stmt = select(Synergy)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(Synergy.start_date.desc(), Synergy.id.desc())
        return [SynergyRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_synergy(self, session: Session, synergy_id: int) -> SynergyRead:
        return SynergyRead.model_validate(self._get(session, synergy_id))

    def update_synergy(self, session: Session, actor_user: ActorUser, synergy_id: int, dto: SynergyUpdate) -> SynergyRead:
        synergy = self._get(session, synergy_id)
        if not synergy.is_active:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="inactive synergy cannot be updated")
        changes = dto.model_dump(exclude_unset=True)
        _ensure_reference(session, Deal, changes.get("deal_id"), "deal")
        self._validate_dates(changes.get("start_date", synergy.start_date), changes.get("end_date", synergy.end_date))
        before = SynergyRead.model_validate(synergy).model_dump(mode="json")
        for field_name, value in changes.items():
            if field_name in {"type", "start_date", "status"} and value is None:
                continue
            setattr(synergy, field_name, value)
        synergy.updated_at = utcnow()
        session.flush()
        read_model = SynergyRead.model_validate(synergy)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(synergy_id),
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.synergy.updated", actor_user, {"synergy_id": synergy_id, "changed_fields": sorted(changes)})
        return read_model

    def soft_delete_synergy(self, session: Session, actor_user: ActorUser, synergy_id: int) -> None:
        synergy = self._get(session, synergy_id)
        if not synergy.is_active:
            return
        synergy.is_active = False
        synergy.updated_at = utcnow()
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(synergy_id),
            action="delete",
            before={"is_active": True},
            after={"is_active": False},
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.synergy.deleted", actor_user, {"synergy_id": synergy_id})

    def _get(self, session: Session, synergy_id: int) -> Synergy:
        synergy = session.get(Synergy, synergy_id)
        if synergy is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="synergy not found")
        return synergy

    def _validate_dates(self, start_date: Any, end_date: Any) -> None:
        if start_date is not None and end_date is not None and end_date < start_date:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="end_date before start_date")
