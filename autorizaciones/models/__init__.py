from .base import Base, TimestampMixin
from .user import Usuario
from .authorization import (
    MatrizAutorizacion,
    WorkflowAutorizacion,
    PasoWorkflow,
    DecisionAprobacion,
    HistorialDecision,
    EventoEscalamiento,
    DelegacionAutoridad,
    NotificacionWorkflow,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Usuario",
    "MatrizAutorizacion",
    "WorkflowAutorizacion",
    "PasoWorkflow",
    "DecisionAprobacion",
    "HistorialDecision",
    "EventoEscalamiento",
    "DelegacionAutoridad",
    "NotificacionWorkflow",
]
