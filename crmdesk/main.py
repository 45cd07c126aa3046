from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crmdesk import events
from crmdesk.api.routes import router as api_router
from crmdesk.core.config import get_settings
from crmdesk.logging import configure_logging
from crmdesk.middleware.correlation_id import CorrelationIdMiddleware
from crmdesk.middleware.request_logging import RequestLoggingMiddleware
from crmdesk.otel import correlation_request_hook, setup_otel


settings = get_settings()
configure_logging(settings)
logger = logging.getLogger("crmdesk.lifecycle")


def _log_lifecycle_event(envelope: dict[str, Any]) -> None:
    logger.info("system_event", extra={"event_name": envelope["event_type"]})


@asynccontextmanager
async def lifespan(app: FastAPI):
    events.event_bus.subscribe("system.*", _log_lifecycle_event)
    events.publish(events.build_envelope("system.started", None, {"service": settings.app_name}))
    yield
    events.publish(events.build_envelope("system.stopping", None, {"service": settings.app_name}))


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

setup_otel(settings)
if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=correlation_request_hook)
