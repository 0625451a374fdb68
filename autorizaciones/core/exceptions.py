"""
Custom exceptions for the authorization workflow engine.

This module defines business-specific exceptions that can be raised throughout the application
and handled by FastAPI's exception handlers to return appropriate HTTP responses.
"""

from typing import Dict, Any, Optional
from fastapi import status


class BaseAppException(Exception):
    """Excepción base para todas las excepciones de la aplicación"""
    error_type = "application_error"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(BaseAppException):
    """Excepción para errores de validación"""
    error_type = "validation_error"

    def __init__(self, message: str = "Error de validación", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, details=details)


class PermissionException(BaseAppException):
    """Excepción para errores de permisos"""
    error_type = "permission_error"

    def __init__(self, message: str = "No tiene permisos para realizar esta acción", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class BusinessException(BaseAppException):
    """Excepción para errores de lógica de negocio"""
    error_type = "business_error"

    def __init__(
        self,
        message: str = "Error en la lógica de negocio",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST
    ):
        super().__init__(message, status_code=status_code, details=details)


class WorkflowException(BusinessException):
    """Excepción específica para errores en el flujo de trabajo"""
    error_type = "workflow_error"


class ResourceNotFoundException(BaseAppException):
    """Excepción para recursos no encontrados"""
    error_type = "not_found"

    def __init__(self, message: str = "Recurso no encontrado", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ConfigurationException(BaseAppException):
    """Excepción para errores de configuración"""
    error_type = "configuration_error"

    def __init__(self, message: str = "Error en la configuración", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


# ===============================================
# EXCEPCIONES DEL MOTOR DE AUTORIZACIONES
# ===============================================

class NoMatchingRule(ConfigurationException):
    """No existe una regla activa de la matriz que cubra el tipo y monto solicitados"""
    error_type = "no_matching_rule"

    def __init__(self, tipo_workflow: str, monto):
        super().__init__(
            f"No existe una regla activa en la matriz de autorización para '{tipo_workflow}' con monto {monto}",
            details={"tipo_workflow": tipo_workflow, "monto": str(monto)}
        )


class Unauthorized(PermissionException):
    """El usuario no tiene el nivel o la identidad requerida para el paso actual"""
    error_type = "unauthorized"


class CannotReverse(WorkflowException):
    """Existe una firma posterior que impide revertir la decisión"""
    error_type = "cannot_reverse"

    def __init__(self, message: str = "No es posible revertir: existe una firma posterior", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, status_code=status.HTTP_409_CONFLICT)


class InvalidTransition(WorkflowException):
    """Transición no permitida desde el estado actual del workflow"""
    error_type = "invalid_transition"

    def __init__(self, current_state: str, attempted_action: str, message: Optional[str] = None):
        super().__init__(
            message or f"No se puede ejecutar '{attempted_action}' desde el estado '{current_state}'",
            details={"estado_actual": current_state, "accion": attempted_action}
        )


class ConcurrencyException(WorkflowException):
    """Otro proceso modificó el workflow durante la operación"""
    error_type = "concurrency_error"

    def __init__(self, workflow_id: int):
        super().__init__(
            f"El workflow {workflow_id} fue modificado concurrentemente; reintente la operación",
            details={"workflow_id": workflow_id},
            status_code=status.HTTP_409_CONFLICT
        )
