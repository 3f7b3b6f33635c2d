"""API routers."""

from pms_api.routers.audit import router as audit_router
from pms_api.routers.integrations import router as integrations_router
from pms_api.routers.organizations import router as organizations_router

__all__ = [
    "audit_router",
    "integrations_router",
    "organizations_router",
]
