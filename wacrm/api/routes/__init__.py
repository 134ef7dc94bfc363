"""API routes."""

from wacrm.api.routes.crm import router as crm_router
from wacrm.api.routes.functions import router as functions_router
from wacrm.api.routes.health import router as health_router
from wacrm.api.routes.realtime import router as realtime_router

__all__ = ["crm_router", "functions_router", "health_router", "realtime_router"]
