from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from crmdesk.api.deps import get_current_user, http_error_response, require_authenticated, require_permission
from crmdesk.core.database import get_db
from crmdesk.crm.service import ActorUser
from crmdesk.users.schemas import CurrentUserRead, LoginRequest, TokenResponse, UserCreate, UserRead
from crmdesk.users.service import UserService

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/users", tags=["users"])
user_service = UserService()


@auth_router.post("/login", response_model=TokenResponse)
def login(
    request: Request,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> TokenResponse | JSONResponse:
    try:
        return user_service.login(db, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "auth_login_failed")


@auth_router.get("/me", response_model=CurrentUserRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CurrentUserRead | JSONResponse:
    try:
        require_authenticated(user)
        return user_service.current_user(db, user)
    except HTTPException as exc:
        return http_error_response(request, exc, "auth_me_failed")


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        require_permission(user, "users.manage")
        return user_service.create_user(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_create_failed")


@users_router.get("", response_model=list[UserRead])
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[UserRead] | JSONResponse:
    try:
        require_permission(user, "users.manage")
        return user_service.list_users(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_list_failed")
