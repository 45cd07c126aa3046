from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crmdesk import audit
from crmdesk.core.auth import create_access_token, hash_password, permissions_for_role, verify_password
from crmdesk.core.config import get_settings
from crmdesk.crm.service import ActorUser, publish_event
from crmdesk.users.models import User
from crmdesk.users.schemas import CurrentUserRead, LoginRequest, TokenResponse, UserCreate, UserRead


logger = logging.getLogger("crmdesk.users")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserService:
    entity_type = "users.user"

    def login(self, session: Session, dto: LoginRequest) -> TokenResponse:
        username = dto.username.strip()
        user = session.scalar(
            select(User).where(or_(func.lower(User.username) == username.lower(), func.lower(User.email) == username.lower()))
        )
        if user is None or not verify_password(dto.password, user.password_hash):
            logger.info("auth.login_failed", extra={"status": "invalid_credentials"})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")
        if user.status != "active":
            logger.info("auth.login_failed", extra={"status": user.status, "record_id": user.id})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="user is not active")

        user.last_login_at = utcnow()
        session.commit()

        settings = get_settings()
        token = create_access_token(str(user.id), {"username": user.username, "role": user.role})
        logger.info("auth.login_succeeded", extra={"record_id": user.id})
        return TokenResponse(access_token=token, expires_in=settings.jwt_expire_minutes * 60)

    def current_user(self, session: Session, actor_user: ActorUser) -> CurrentUserRead:
        user = self._get_by_subject(session, actor_user.user_id)
        if user is None or user.status != "active":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
        return CurrentUserRead(
            id=user.id,
            username=user.username,
            role=user.role,
            permissions=sorted(permissions_for_role(user.role)),
        )

    def create_user(self, session: Session, actor_user: ActorUser, dto: UserCreate) -> UserRead:
        if dto.role == "super_admin" and actor_user.role != "super_admin":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="only super admins can create super admins")

        user = User(
            username=dto.username.strip(),
            email=str(dto.email).lower(),
            full_name=dto.full_name,
            password_hash=hash_password(dto.password),
            role=dto.role,
            status=dto.status,
        )
        session.add(user)
        try:
            session.flush()
            read_model = UserRead.model_validate(user)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username or email already exists")

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        publish_event("users.user.created", actor_user, {"user_id": read_model.id, "role": read_model.role})
        return read_model

    def list_users(self, session: Session) -> list[UserRead]:
        rows = session.scalars(select(User).order_by(User.username.asc())).all()
        return [UserRead.model_validate(row) for row in rows]

    def _get_by_subject(self, session: Session, subject: str) -> User | None:
        try:
            user_id = int(subject)
        except (TypeError, ValueError):
            return None
        return session.get(User, user_id)
