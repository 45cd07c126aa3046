from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from crmdesk.api.deps import get_current_user, http_error_response, require_permission
from crmdesk.core.database import get_db
from crmdesk.crm.service import ActorUser
from crmdesk.mail.schemas import (
    AccountSignatureCreate,
    AccountSignatureRead,
    AccountSignatureUpdate,
    EmailAccountCreate,
    EmailAccountRead,
    EmailAccountUpdate,
    SignatureCreate,
    SignatureRead,
    SignatureUpdate,
)
from crmdesk.mail.service import account_signature_service, email_account_service, signature_service

accounts_router = APIRouter(prefix="/api/mail/accounts", tags=["mail.accounts"])
signatures_router = APIRouter(prefix="/api/mail/signatures", tags=["mail.signatures"])


@accounts_router.get("", response_model=list[EmailAccountRead])
def list_email_accounts(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[EmailAccountRead] | JSONResponse:
    try:
        require_permission(user, "mail.accounts.manage")
        return email_account_service.list_accounts(db, user)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_list_failed")


@accounts_router.post("", response_model=EmailAccountRead, status_code=status.HTTP_201_CREATED)
def create_email_account(
    request: Request,
    dto: EmailAccountCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EmailAccountRead | JSONResponse:
    try:
        require_permission(user, "mail.accounts.manage")
        return email_account_service.create_account(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_create_failed")


@accounts_router.get("/{account_id}", response_model=EmailAccountRead)
def get_email_account(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EmailAccountRead | JSONResponse:
    try:
        require_permission(user, "mail.accounts.manage")
        return email_account_service.get_account(db, user, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_get_failed")


@accounts_router.patch("/{account_id}", response_model=EmailAccountRead)
def patch_email_account(
    request: Request,
    account_id: int,
    dto: EmailAccountUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EmailAccountRead | JSONResponse:
    try:
        require_permission(user, "mail.accounts.manage")
        return email_account_service.update_account(db, user, account_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_update_failed")


@accounts_router.patch("/{account_id}/primary", response_model=EmailAccountRead)
def set_primary_email_account(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EmailAccountRead | JSONResponse:
    try:
        require_permission(user, "mail.accounts.manage")
        return email_account_service.set_primary_account(db, user, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_set_primary_failed")


@accounts_router.delete("/{account_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_email_account(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "mail.accounts.manage")
        email_account_service.delete_account(db, user, account_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_delete_failed")


@accounts_router.get("/{account_id}/signatures", response_model=list[AccountSignatureRead])
def list_account_signatures(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AccountSignatureRead] | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return account_signature_service.list_links(db, user, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_signature_list_failed")


@accounts_router.get("/{account_id}/signatures/default", response_model=SignatureRead | None)
def get_default_account_signature(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SignatureRead | None | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return account_signature_service.default_signature(db, user, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_signature_default_failed")


@accounts_router.post(
    "/{account_id}/signatures",
    response_model=AccountSignatureRead,
    status_code=status.HTTP_201_CREATED,
)
def link_account_signature(
    request: Request,
    account_id: int,
    dto: AccountSignatureCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AccountSignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return account_signature_service.link_signature(db, user, account_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_signature_create_failed")


@accounts_router.patch("/{account_id}/signatures/{link_id}", response_model=AccountSignatureRead)
def patch_account_signature(
    request: Request,
    account_id: int,
    link_id: int,
    dto: AccountSignatureUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AccountSignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return account_signature_service.update_link(db, user, account_id, link_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_signature_update_failed")


@accounts_router.patch("/{account_id}/signatures/{link_id}/default", response_model=AccountSignatureRead)
def set_default_account_signature(
    request: Request,
    account_id: int,
    link_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AccountSignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return account_signature_service.set_default_link(db, user, account_id, link_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_signature_set_default_failed")


@accounts_router.delete(
    "/{account_id}/signatures/{link_id}",
    status_code=status.HTTP_200_OK,
    response_model=None,
)
def unlink_account_signature(
    request: Request,
    account_id: int,
    link_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "mail.signatures.manage")
        account_signature_service.unlink(db, user, account_id, link_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_account_signature_delete_failed")


@signatures_router.get("", response_model=list[SignatureRead])
def list_signatures(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SignatureRead] | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return signature_service.list_signatures(db, user)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_signature_list_failed")


@signatures_router.post("", response_model=SignatureRead, status_code=status.HTTP_201_CREATED)
def create_signature(
    request: Request,
    dto: SignatureCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return signature_service.create_signature(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_signature_create_failed")


@signatures_router.get("/{signature_id}", response_model=SignatureRead)
def get_signature(
    request: Request,
    signature_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return signature_service.get_signature(db, user, signature_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_signature_get_failed")


@signatures_router.patch("/{signature_id}", response_model=SignatureRead)
def patch_signature(
    request: Request,
    signature_id: int,
    dto: SignatureUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return signature_service.update_signature(db, user, signature_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_signature_update_failed")


@signatures_router.patch("/{signature_id}/default", response_model=SignatureRead)
def set_default_signature(
    request: Request,
    signature_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SignatureRead | JSONResponse:
    try:
        require_permission(user, "mail.signatures.manage")
        return signature_service.set_default_signature(db, user, signature_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_signature_set_default_failed")


@signatures_router.delete("/{signature_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_signature(
    request: Request,
    signature_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "mail.signatures.manage")
        signature_service.delete_signature(db, user, signature_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "mail_signature_delete_failed")
