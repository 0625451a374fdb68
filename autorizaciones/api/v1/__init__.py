# autorizaciones/api/v1/__init__.py

from fastapi import APIRouter

from .dashboard import router as dashboard_router
from .matrix import router as matrix_router
from .workflow import router as workflow_router
from .escalation import router as escalation_router
from .delegation import router as delegation_router
from .notification import router as notification_router

api_router = APIRouter()

# Registrar los routers
api_router.include_router(dashboard_router, tags=["Dashboard"])
api_router.include_router(matrix_router, prefix="/authorization-matrix", tags=["Authorization Matrix"])
api_router.include_router(workflow_router)
api_router.include_router(escalation_router, prefix="/escalations", tags=["Escalations"])
api_router.include_router(delegation_router, prefix="/authority-delegations", tags=["Delegations"])
api_router.include_router(notification_router, prefix="/workflow-notifications", tags=["Notifications"])
