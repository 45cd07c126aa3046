from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from crmdesk.api.deps import get_current_user, http_error_response, require_permission
from crmdesk.core.database import get_db
from crmdesk.crm.duplicates import SUPPORTED_ENTITIES
from crmdesk.crm.import_export import ImportExportService
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
    DealStageMove,
    DealUpdate,
    DuplicateReport,
    ImportResult,
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
from crmdesk.crm.service import (
    ActorUser,
    CompanyService,
    ContactService,
    DealService,
    LeadService,
    PipelineService,
    SynergyService,
    TaskService,
    area_of_activity_service,
    contact_email_service,
)

companies_router = APIRouter(prefix="/api/crm/companies", tags=["crm.companies"])
contacts_router = APIRouter(prefix="/api/crm/contacts", tags=["crm.contacts"])
pipeline_router = APIRouter(prefix="/api/crm/pipeline-stages", tags=["crm.pipeline"])
deals_router = APIRouter(prefix="/api/crm/deals", tags=["crm.deals"])
leads_router = APIRouter(prefix="/api/crm/leads", tags=["crm.leads"])
tasks_router = APIRouter(prefix="/api/crm/tasks", tags=["crm.tasks"])
synergies_router = APIRouter(prefix="/api/crm/synergies", tags=["crm.synergies"])
import_export_router = APIRouter(prefix="/api/crm", tags=["crm.import_export"])
company_service = CompanyService()
contact_service = ContactService()
pipeline_service = PipelineService()
deal_service = DealService()
lead_service = LeadService()
task_service = TaskService()
synergy_service = SynergyService()
import_export_service = ImportExportService()


@companies_router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    request: Request,
    dto: CompanyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.write")
        return company_service.create_company(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_create_failed")


@companies_router.get("", response_model=list[CompanyRead])
def list_companies(
    request: Request,
    q: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[CompanyRead] | JSONResponse:
    try:
        require_permission(user, "crm.companies.read")
        return company_service.list_companies(db, q=q, status_filter=status_filter, limit=limit, offset=offset)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_list_failed")


@companies_router.get("/{company_id}", response_model=CompanyRead)
def get_company(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.read")
        return company_service.get_company(db, company_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_get_failed")


@companies_router.patch("/{company_id}", response_model=CompanyRead)
def patch_company(
    request: Request,
    company_id: int,
    dto: CompanyUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.write")
        return company_service.update_company(db, user, company_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_update_failed")


@companies_router.delete("/{company_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_company(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.companies.write")
        company_service.delete_company(db, user, company_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_delete_failed")


@contacts_router.post("", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return contact_service.create_contact(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_create_failed")


@contacts_router.get("", response_model=list[ContactRead])
def list_contacts(
    request: Request,
    q: str | None = Query(default=None),
    company_id: int | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ContactRead] | JSONResponse:
    try:
        require_permission(user, "crm.contacts.read")
        return contact_service.list_contacts(
            db,
            q=q,
            company_id=company_id,
            status_filter=status_filter,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_list_failed")


@contacts_router.get("/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.read")
        return contact_service.get_contact(db, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_get_failed")


@contacts_router.patch("/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: int,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return contact_service.update_contact(db, user, contact_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_update_failed")


@contacts_router.delete("/{contact_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.contacts.write")
        contact_service.delete_contact(db, user, contact_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_delete_failed")


@contacts_router.get("/{contact_id}/emails", response_model=list[ContactEmailRead])
def list_contact_emails(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ContactEmailRead] | JSONResponse:
    try:
        require_permission(user, "crm.contacts.read")
        return contact_email_service.list_records(db, user, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_email_list_failed")


@contacts_router.post("/{contact_id}/emails", response_model=ContactEmailRead, status_code=status.HTTP_201_CREATED)
def create_contact_email(
    request: Request,
    contact_id: int,
    dto: ContactEmailCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactEmailRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return contact_email_service.create_email(db, user, contact_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_email_create_failed")


@contacts_router.get("/{contact_id}/emails/{email_id}", response_model=ContactEmailRead)
def get_contact_email(
    request: Request,
    contact_id: int,
    email_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactEmailRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.read")
        return contact_email_service.get_record(db, user, contact_id, email_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_email_get_failed")


@contacts_router.patch("/{contact_id}/emails/{email_id}", response_model=ContactEmailRead)
def patch_contact_email(
    request: Request,
    contact_id: int,
    email_id: int,
    dto: ContactEmailUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactEmailRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return contact_email_service.update_email(db, user, contact_id, email_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_email_update_failed")


@contacts_router.patch("/{contact_id}/emails/{email_id}/primary", response_model=ContactEmailRead)
def set_primary_contact_email(
    request: Request,
    contact_id: int,
    email_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactEmailRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return contact_email_service.set_primary(db, user, contact_id, email_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_email_set_primary_failed")


@contacts_router.delete("/{contact_id}/emails/{email_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_contact_email(
    request: Request,
    contact_id: int,
    email_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.contacts.write")
        contact_email_service.delete_record(db, user, contact_id, email_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_email_delete_failed")


@contacts_router.get("/{contact_id}/areas-of-activity", response_model=list[AreaOfActivityRead])
def list_areas_of_activity(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AreaOfActivityRead] | JSONResponse:
    try:
        require_permission(user, "crm.contacts.read")
        return area_of_activity_service.list_records(db, user, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_area_of_activity_list_failed")


@contacts_router.post(
    "/{contact_id}/areas-of-activity",
    response_model=AreaOfActivityRead,
    status_code=status.HTTP_201_CREATED,
)
def create_area_of_activity(
    request: Request,
    contact_id: int,
    dto: AreaOfActivityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AreaOfActivityRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return area_of_activity_service.create_area(db, user, contact_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_area_of_activity_create_failed")


@contacts_router.get("/{contact_id}/areas-of-activity/{area_id}", response_model=AreaOfActivityRead)
def get_area_of_activity(
    request: Request,
    contact_id: int,
    area_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AreaOfActivityRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.read")
        return area_of_activity_service.get_record(db, user, contact_id, area_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_area_of_activity_get_failed")


@contacts_router.patch("/{contact_id}/areas-of-activity/{area_id}", response_model=AreaOfActivityRead)
def patch_area_of_activity(
    request: Request,
    contact_id: int,
    area_id: int,
    dto: AreaOfActivityUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AreaOfActivityRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return area_of_activity_service.update_area(db, user, contact_id, area_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_area_of_activity_update_failed")


@contacts_router.patch("/{contact_id}/areas-of-activity/{area_id}/primary", response_model=AreaOfActivityRead)
def set_primary_area_of_activity(
    request: Request,
    contact_id: int,
    area_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AreaOfActivityRead | JSONResponse:
    try:
        require_permission(user, "crm.contacts.write")
        return area_of_activity_service.set_primary(db, user, contact_id, area_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_area_of_activity_set_primary_failed")


@contacts_router.delete(
    "/{contact_id}/areas-of-activity/{area_id}",
    status_code=status.HTTP_200_OK,
    response_model=None,
)
def delete_area_of_activity(
    request: Request,
    contact_id: int,
    area_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.contacts.write")
        area_of_activity_service.delete_record(db, user, contact_id, area_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_area_of_activity_delete_failed")


@pipeline_router.get("", response_model=list[PipelineStageRead])
def list_pipeline_stages(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[PipelineStageRead] | JSONResponse:
    try:
        require_permission(user, "crm.pipeline.read")
        return pipeline_service.list_stages(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_pipeline_stage_list_failed")


@pipeline_router.post("", response_model=PipelineStageRead, status_code=status.HTTP_201_CREATED)
def create_pipeline_stage(
    request: Request,
    dto: PipelineStageCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PipelineStageRead | JSONResponse:
    try:
        require_permission(user, "crm.pipeline.manage")
        return pipeline_service.create_stage(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_pipeline_stage_create_failed")


@pipeline_router.post("/initialize", response_model=list[PipelineStageRead])
def initialize_pipeline_stages(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[PipelineStageRead] | JSONResponse:
    try:
        require_permission(user, "crm.pipeline.manage")
        return pipeline_service.initialize_default_stages(db, user)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_pipeline_initialize_failed")


@pipeline_router.patch("/{stage_id}", response_model=PipelineStageRead)
def patch_pipeline_stage(
    request: Request,
    stage_id: int,
    dto: PipelineStageUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PipelineStageRead | JSONResponse:
    try:
        require_permission(user, "crm.pipeline.manage")
        return pipeline_service.update_stage(db, user, stage_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_pipeline_stage_update_failed")


@pipeline_router.delete("/{stage_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_pipeline_stage(
    request: Request,
    stage_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.pipeline.manage")
        pipeline_service.delete_stage(db, user, stage_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_pipeline_stage_delete_failed")


@deals_router.post("", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    dto: DealCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "crm.deals.write")
        return deal_service.create_deal(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_deal_create_failed")


@deals_router.get("", response_model=list[DealRead])
def list_deals(
    request: Request,
    stage_id: int | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    company_id: int | None = Query(default=None),
    contact_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        require_permission(user, "crm.deals.read")
        return deal_service.list_deals(
            db,
            stage_id=stage_id,
            status_filter=status_filter,
            company_id=company_id,
            contact_id=contact_id,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_deal_list_failed")


@deals_router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "crm.deals.read")
        return deal_service.get_deal(db, deal_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_deal_get_failed")


@deals_router.patch("/{deal_id}", response_model=DealRead)
def patch_deal(
    request: Request,
    deal_id: int,
    dto: DealUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "crm.deals.write")
        return deal_service.update_deal(db, user, deal_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_deal_update_failed")


@deals_router.patch("/{deal_id}/stage", response_model=DealRead)
def move_deal_stage(
    request: Request,
    deal_id: int,
    dto: DealStageMove,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "crm.deals.write")
        return deal_service.move_stage(db, user, deal_id, dto.stage_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_deal_stage_change_failed")


@deals_router.delete("/{deal_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_deal(
    request: Request,
    deal_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.deals.write")
        deal_service.delete_deal(db, user, deal_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_deal_delete_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.write")
        return lead_service.create_lead(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_create_failed")


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    q: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_permission(user, "crm.leads.read")
        return lead_service.list_leads(db, status_filter=status_filter, q=q, limit=limit, offset=offset)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_list_failed")


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.read")
        return lead_service.get_lead(db, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_get_failed")


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: int,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.write")
        return lead_service.update_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_update_failed")


@leads_router.post("/{lead_id}/convert", response_model=LeadConvertResponse)
def convert_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadConvertResponse | JSONResponse:
    try:
        require_permission(user, "crm.leads.write")
        require_permission(user, "crm.contacts.write")
        return lead_service.convert_lead(db, user, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_convert_failed")


@leads_router.delete("/{lead_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.leads.write")
        lead_service.delete_lead(db, user, lead_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_delete_failed")


@tasks_router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.write")
        return task_service.create_task(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_create_failed")


@tasks_router.get("", response_model=list[TaskRead])
def list_tasks(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    contact_id: int | None = Query(default=None),
    company_id: int | None = Query(default=None),
    deal_id: int | None = Query(default=None),
    assigned_to_user_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TaskRead] | JSONResponse:
    try:
        require_permission(user, "crm.tasks.read")
        return task_service.list_tasks(
            db,
            status_filter=status_filter,
            contact_id=contact_id,
            company_id=company_id,
            deal_id=deal_id,
            assigned_to_user_id=assigned_to_user_id,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_list_failed")


@tasks_router.get("/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.read")
        return task_service.get_task(db, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_get_failed")


@tasks_router.patch("/{task_id}", response_model=TaskRead)
def patch_task(
    request: Request,
    task_id: int,
    dto: TaskUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.write")
        return task_service.update_task(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_update_failed")


@tasks_router.post("/{task_id}/complete", response_model=TaskRead)
def complete_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.write")
        return task_service.complete_task(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_complete_failed")


@tasks_router.delete("/{task_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.tasks.write")
        task_service.delete_task(db, user, task_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_delete_failed")


@synergies_router.post("", response_model=SynergyRead, status_code=status.HTTP_201_CREATED)
def create_synergy(
    request: Request,
    dto: SynergyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SynergyRead | JSONResponse:
    try:
        require_permission(user, "crm.synergies.write")
        return synergy_service.create_synergy(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_synergy_create_failed")


@synergies_router.get("", response_model=list[SynergyRead])
def list_synergies(
    request: Request,
    contact_id: int | None = Query(default=None),
    company_id: int | None = Query(default=None),
    deal_id: int | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SynergyRead] | JSONResponse:
    try:
        require_permission(user, "crm.synergies.read")
        return synergy_service.list_synergies(
            db,
            contact_id=contact_id,
            company_id=company_id,
            deal_id=deal_id,
            include_inactive=include_inactive,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_synergy_list_failed")


@synergies_router.get("/{synergy_id}", response_model=SynergyRead)
def get_synergy(
    request: Request,
    synergy_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SynergyRead | JSONResponse:
    try:
        require_permission(user, "crm.synergies.read")
        return synergy_service.get_synergy(db, synergy_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_synergy_get_failed")


@synergies_router.patch("/{synergy_id}", response_model=SynergyRead)
def patch_synergy(
    request: Request,
    synergy_id: int,
    dto: SynergyUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SynergyRead | JSONResponse:
    try:
        require_permission(user, "crm.synergies.write")
        return synergy_service.update_synergy(db, user, synergy_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_synergy_update_failed")


@synergies_router.delete("/{synergy_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_synergy(
    request: Request,
    synergy_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.synergies.write")
        synergy_service.soft_delete_synergy(db, user, synergy_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_synergy_delete_failed")


@import_export_router.get("/export/{entity}")
def export_entity(
    request: Request,
    entity: str,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Response:
    try:
        require_permission(user, "crm.export")
        payload = import_export_service.export_csv(db, entity)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_export_failed")
    return Response(
        content=payload,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{entity}.csv"'},
    )


@import_export_router.post("/import/{entity}", response_model=ImportResult)
def import_entity(
    request: Request,
    entity: str,
    file: UploadFile = File(...),
    skip_duplicates: bool = Query(default=True),
    threshold: float | None = Query(default=None, ge=0, le=1),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ImportResult | JSONResponse:
    try:
        require_permission(user, "crm.import")
        content = file.file.read()
        return import_export_service.import_csv(
            db,
            user,
            entity,
            content,
            skip_duplicates=skip_duplicates,
            threshold=threshold,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_import_failed")


@import_export_router.get("/duplicates/{entity}", response_model=DuplicateReport)
def list_duplicates(
    request: Request,
    entity: str,
    threshold: float | None = Query(default=None, ge=0, le=1),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DuplicateReport | JSONResponse:
    try:
        require_permission(user, f"crm.{entity}.read" if entity in SUPPORTED_ENTITIES else "crm.export")
        return import_export_service.find_duplicates(db, entity, threshold)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_duplicates_failed")
