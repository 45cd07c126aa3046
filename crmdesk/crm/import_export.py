from __future__ import annotations

import csv
import io
import logging
from typing import Any

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crmdesk import audit
from crmdesk.core.config import get_settings
from crmdesk.crm.duplicates import SUPPORTED_ENTITIES, best_match, find_duplicate_pairs
from crmdesk.crm.errors import PrimaryFlagError
from crmdesk.crm.models import AreaOfActivity, Company, Contact, ContactEmail, Deal, Lead
from crmdesk.crm.schemas import (
    CompanyCreate,
    ContactCreate,
    DuplicatePair,
    DuplicateReport,
    ImportResult,
    ImportRowError,
    LeadCreate,
)
from crmdesk.crm.service import (
    ActorUser,
    area_of_activity_service,
    contact_email_service,
    primary_flag_http_error,
    publish_event,
)
from crmdesk.metrics import observe_import_row


logger = logging.getLogger("crmdesk.crm.import_export")

IMPORTABLE_ENTITIES = ("contacts", "companies", "leads")

EXPORT_FIELDS: dict[str, list[str]] = {
    "contacts": ["id", "first_name", "last_name", "email", "phone", "mobile_phone", "company_name", "status", "notes"],
    "companies": ["id", "name", "email", "phone", "website", "industry", "address", "status", "notes"],
    "leads": ["id", "first_name", "last_name", "company_name", "email", "phone", "source", "status", "notes"],
}


def _clean_row(raw_row: dict[str | None, Any]) -> dict[str, str]:
    cleaned: dict[str, str] = {}
    for key, value in raw_row.items():
        if key is None:
            # values beyond the header row
            continue
        name = key.strip().lower().replace(" ", "_")
        if isinstance(value, str) and value.strip():
            cleaned[name] = value.strip()
    return cleaned


def _split_emails(raw: str | None) -> list[str]:
    if not raw:
        return []
    normalized = raw.replace(";", ",").replace("|", ",")
    emails: list[str] = []
    for item in normalized.split(","):
        address = item.strip().lower()
        if address and address not in emails:
            emails.append(address)
    return emails


def _validation_messages(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return messages


class ImportExportService:
    def export_csv(self, session: Session, entity: str) -> str:
        self._validate_entity(entity, IMPORTABLE_ENTITIES)
        fieldnames = EXPORT_FIELDS[entity]
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for row in self._load_records(session, entity):
            writer.writerow({name: "" if row.get(name) is None else row.get(name) for name in fieldnames})
        return output.getvalue()

    def import_csv(
        self,
        session: Session,
        actor_user: ActorUser,
        entity: str,
        content: bytes,
        skip_duplicates: bool = True,
        threshold: float | None = None,
    ) -> ImportResult:
        self._validate_entity(entity, IMPORTABLE_ENTITIES)
        settings = get_settings()
        resolved_threshold = settings.duplicate_threshold if threshold is None else threshold

        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="file must be UTF-8 encoded CSV")
        reader = csv.DictReader(io.StringIO(text))
        if not reader.fieldnames:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="CSV header row is missing")
        rows = [_clean_row(raw_row) for raw_row in reader]
        if len(rows) > settings.import_max_rows:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"too many rows (max {settings.import_max_rows})",
            )

        known = self._load_records(session, entity)
        errors: list[ImportRowError] = []
        imported = 0
        skipped = 0
        try:
            for index, row in enumerate(rows):
                # header is line 1
                row_number = index + 2
                if not row:
                    continue
                try:
                    candidate = self._validate_row(entity, row)
                except ValidationError as exc:
                    errors.append(ImportRowError(row_number=row_number, errors=_validation_messages(exc)))
                    observe_import_row(entity, "failed")
                    continue
                except ValueError as exc:
                    errors.append(ImportRowError(row_number=row_number, errors=[str(exc)]))
                    observe_import_row(entity, "failed")
                    continue

                if skip_duplicates:
                    match = best_match(candidate, known, entity, resolved_threshold)
                    if match is not None:
                        skipped += 1
                        observe_import_row(entity, "duplicate")
                        logger.info(
                            "import.row_duplicate",
                            extra={"entity": entity, "row_number": row_number, "record_id": match[0].get("id")},
                        )
                        continue

                record_id = self._create(session, entity, candidate)
                known.append({**candidate, "id": record_id})
                imported += 1
                observe_import_row(entity, "imported")
            session.commit()
        except PrimaryFlagError as exc:
            session.rollback()
            raise primary_flag_http_error(exc)
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="import conflicts with existing records")

        result = ImportResult(
            entity=entity,
            total_rows=len(rows),
            imported=imported,
            skipped_duplicates=skipped,
            failed=len(errors),
            errors=errors,
        )
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"crm.{entity}",
            entity_id="import",
            action="import",
            before=None,
            after=result.model_dump(mode="json", exclude={"errors"}),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("crm.import.completed", actor_user, result.model_dump(mode="json", exclude={"errors"}))
        return result

    def find_duplicates(self, session: Session, entity: str, threshold: float | None = None) -> DuplicateReport:
        self._validate_entity(entity, tuple(sorted(SUPPORTED_ENTITIES)))
        resolved_threshold = get_settings().duplicate_threshold if threshold is None else threshold
        pairs = find_duplicate_pairs(self._load_records(session, entity), entity, resolved_threshold)
        return DuplicateReport(
            entity=entity,
            threshold=resolved_threshold,
            pairs=[DuplicatePair(**pair) for pair in pairs],
        )

    def _validate_entity(self, entity: str, allowed: tuple[str, ...]) -> None:
        if entity not in allowed:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"entity must be one of: {', '.join(allowed)}",
            )

    def _validate_row(self, entity: str, row: dict[str, str]) -> dict[str, Any]:
        if entity == "contacts":
            emails = _split_emails(row.get("emails") or row.get("email"))
            dto = ContactCreate.model_validate(
                {key: value for key, value in row.items() if key in ContactCreate.model_fields and key != "emails"}
                | {"emails": emails}
            )
            candidate = dto.model_dump(exclude={"emails"})
            candidate["emails"] = [str(address).lower() for address in dto.emails]
            candidate["email"] = candidate["emails"][0] if candidate["emails"] else None
            candidate["company_name"] = row.get("company_name")
            return candidate
        if entity == "companies":
            dto = CompanyCreate.model_validate({key: value for key, value in row.items() if key in CompanyCreate.model_fields})
            candidate = dto.model_dump()
            if candidate.get("email") is not None:
                candidate["email"] = str(candidate["email"]).lower()
            return candidate

        dto = LeadCreate.model_validate({key: value for key, value in row.items() if key in LeadCreate.model_fields})
        if dto.status == "converted":
            raise ValueError("status: lead cannot be imported as converted")
        candidate = dto.model_dump()
        if candidate.get("email") is not None:
            candidate["email"] = str(candidate["email"]).lower()
        return candidate

    def _create(self, session: Session, entity: str, candidate: dict[str, Any]) -> int:
        if entity == "companies":
            company = Company(**candidate)
            session.add(company)
            session.flush()
            return company.id
        if entity == "leads":
            lead = Lead(**candidate)
            session.add(lead)
            session.flush()
            return lead.id

        contact = Contact(
            first_name=candidate["first_name"],
            last_name=candidate["last_name"],
            phone=candidate.get("phone"),
            mobile_phone=candidate.get("mobile_phone"),
            notes=candidate.get("notes"),
            status=candidate.get("status") or "active",
        )
        session.add(contact)
        session.flush()
        for address in candidate["emails"]:
            contact_email_service.toggler.create(session, contact.id, {"email_address": address, "type": "work"})
        company_name = (candidate.get("company_name") or "").strip()
        if company_name:
            company = session.scalar(
                select(Company).where(func.lower(Company.name) == company_name.lower()).order_by(Company.id.asc()).limit(1)
            )
            area_of_activity_service.toggler.create(
                session,
                contact.id,
                {
                    "company_id": company.id if company is not None else None,
                    "company_name": company.name if company is not None else company_name,
                },
            )
        return contact.id

    def _load_records(self, session: Session, entity: str) -> list[dict[str, Any]]:
        if entity == "companies":
            companies = session.scalars(select(Company).order_by(Company.id.asc())).all()
            return [
                {
                    "id": company.id,
                    "name": company.name,
                    "email": company.email,
                    "phone": company.phone,
                    "website": company.website,
                    "industry": company.industry,
                    "address": company.address,
                    "status": company.status,
                    "notes": company.notes,
                }
                for company in companies
            ]
        if entity == "deals":
            deals = session.scalars(select(Deal).order_by(Deal.id.asc())).all()
            return [
                {
                    "id": deal.id,
                    "name": deal.name,
                    "company_id": deal.company_id,
                    "contact_id": deal.contact_id,
                    "status": deal.status,
                }
                for deal in deals
            ]
        if entity == "leads":
            leads = session.scalars(select(Lead).order_by(Lead.id.asc())).all()
            return [
                {
                    "id": lead.id,
                    "first_name": lead.first_name,
                    "last_name": lead.last_name,
                    "company_name": lead.company_name,
                    "email": lead.email,
                    "phone": lead.phone,
                    "source": lead.source,
                    "status": lead.status,
                    "notes": lead.notes,
                }
                for lead in leads
            ]

        primary_emails = dict(
            session.execute(
                select(ContactEmail.contact_id, ContactEmail.email_address).where(ContactEmail.is_primary.is_(True))
            ).all()
        )
        primary_companies = dict(
            session.execute(
                select(AreaOfActivity.contact_id, AreaOfActivity.company_name).where(AreaOfActivity.is_primary.is_(True))
            ).all()
        )
        contacts = session.scalars(select(Contact).order_by(Contact.id.asc())).all()
        return [
            {
                "id": contact.id,
                "first_name": contact.first_name,
                "last_name": contact.last_name,
                "email": primary_emails.get(contact.id),
                "phone": contact.phone,
                "mobile_phone": contact.mobile_phone,
                "company_name": primary_companies.get(contact.id),
                "status": contact.status,
                "notes": contact.notes,
            }
            for contact in contacts
        ]
