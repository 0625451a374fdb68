# autorizaciones/main.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from autorizaciones.api.v1 import api_router
from autorizaciones.core.config import settings
from autorizaciones.core.database import engine, SessionLocal
from autorizaciones.core.exceptions import (
    BaseAppException, BusinessException, WorkflowException, ValidationException,
    PermissionException, ConfigurationException, ResourceNotFoundException
)
from autorizaciones.services.escalation_service import EscalationRunner

# Importar todos los modelos para que SQLAlchemy los reconozca
from autorizaciones.models import Base

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    runner = EscalationRunner(SessionLocal)
    runner.start()
    yield
    runner.stop()


# Inicialización de la aplicación FastAPI
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="API del motor de autorizaciones del ERP: matriz por montos, cadenas de aprobación y escalamiento",
    lifespan=lifespan,
)


def _error_response(exc: BaseAppException, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error,
            "message": exc.message,
            "details": exc.details,
            "type": exc.error_type
        }
    )

# Exception Handlers for Custom Business Exceptions
@app.exception_handler(WorkflowException)
async def workflow_exception_handler(request: Request, exc: WorkflowException):
    """Handle workflow-specific exceptions."""
    return _error_response(exc, "Workflow Error")

@app.exception_handler(BusinessException)
async def business_exception_handler(request: Request, exc: BusinessException):
    """Handle business logic exceptions with detailed error responses."""
    return _error_response(exc, "Business Rule Violation")

@app.exception_handler(ValidationException)
async def validation_exception_handler(request: Request, exc: ValidationException):
    """Handle validation exceptions."""
    return _error_response(exc, "Validation Error")

@app.exception_handler(PermissionException)
async def permission_exception_handler(request: Request, exc: PermissionException):
    """Handle permission-related exceptions."""
    return _error_response(exc, "Permission Denied")

@app.exception_handler(ResourceNotFoundException)
async def not_found_exception_handler(request: Request, exc: ResourceNotFoundException):
    return _error_response(exc, "Not Found")

@app.exception_handler(ConfigurationException)
async def configuration_exception_handler(request: Request, exc: ConfigurationException):
    """Handle configuration-related exceptions, e.g. a matrix without coverage."""
    return _error_response(exc, "Configuration Error")

@app.exception_handler(BaseAppException)
async def app_exception_handler(request: Request, exc: BaseAppException):
    return _error_response(exc, "Application Error")

# Configuración de CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Incluir todas las rutas de la API definidas en /api/v1/__init__.py
app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/", tags=["Root"])
async def root():
    """
    Endpoint de bienvenida que verifica que la API está funcionando.
    """
    return {"message": "Bienvenido a la API de Autorizaciones del ERP", "version": settings.VERSION}
