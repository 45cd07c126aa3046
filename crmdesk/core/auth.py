"""Token and password primitives.

Access tokens are HS256 JWTs carrying ``sub`` (user id), ``username`` and
``role``. Permissions are derived from the role at request time, so a role
change takes effect on the next token without re-issuing permission lists.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt
from starlette.requests import Request

from crmdesk.core.config import get_settings


USER_PERMISSIONS = frozenset(
    {
        "crm.companies.read",
        "crm.companies.write",
        "crm.contacts.read",
        "crm.contacts.write",
        "crm.deals.read",
        "crm.deals.write",
        "crm.leads.read",
        "crm.leads.write",
        "crm.tasks.read",
        "crm.tasks.write",
        "crm.synergies.read",
        "crm.synergies.write",
        "crm.pipeline.read",
        "crm.import",
        "crm.export",
        "mail.accounts.manage",
        "mail.signatures.manage",
    }
)
ADMIN_PERMISSIONS = USER_PERMISSIONS | {"users.manage", "crm.pipeline.manage", "system.metrics.read"}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "user": USER_PERMISSIONS,
    "admin": ADMIN_PERMISSIONS,
    "super_admin": ADMIN_PERMISSIONS,
}


@dataclass
class AuthUser:
    sub: str
    username: str
    role: str
    permissions: set[str] = field(default_factory=set)

    @property
    def is_authenticated(self) -> bool:
        return self.sub != "anonymous"


ANONYMOUS = AuthUser(sub="anonymous", username="anonymous", role="guest")


def permissions_for_role(role: str) -> set[str]:
    return set(ROLE_PERMISSIONS.get(role, frozenset()))


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed hash stored for the user
        return False


def create_access_token(subject: str, claims: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode = {**claims, "sub": subject, "iat": now, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        return ANONYMOUS

    payload = decode_access_token(token)
    if payload is None or not payload.get("sub"):
        return ANONYMOUS

    subject = str(payload["sub"])
    role = str(payload.get("role", "user"))
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(
        sub=subject,
        username=str(payload.get("username", subject)),
        role=role,
        permissions=permissions_for_role(role),
    )
