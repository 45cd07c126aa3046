from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from crmdesk.api.deps import get_current_user, require_authenticated
from crmdesk.core.config import get_settings
from crmdesk.crm.api import (
    companies_router,
    contacts_router,
    deals_router,
    import_export_router,
    leads_router,
    pipeline_router,
    synergies_router,
    tasks_router,
)
from crmdesk.crm.service import ActorUser
from crmdesk.mail.api import accounts_router, signatures_router
from crmdesk.metrics import generate_metrics_payload, metrics_content_type
from crmdesk.users.api import auth_router, users_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(companies_router)
router.include_router(contacts_router)
router.include_router(pipeline_router)
router.include_router(deals_router)
router.include_router(leads_router)
router.include_router(tasks_router)
router.include_router(synergies_router)
router.include_router(import_export_router)
router.include_router(accounts_router)
router.include_router(signatures_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(user: ActorUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    require_authenticated(user)
    return {
        "sub": user.user_id,
        "role": user.role,
        "permissions": sorted(user.permissions),
    }


@router.get("/metrics", tags=["system"])
def metrics(user: ActorUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
