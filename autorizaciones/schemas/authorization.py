# autorizaciones/schemas/authorization.py

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from decimal import Decimal
from datetime import datetime

from ..models.enums import (
    TipoWorkflow, NivelAprobacion, EstadoWorkflow, EstadoPaso, TipoPaso,
    AccionAprobacion, TipoEscalamiento, PrioridadNotificacion
)


class APIModel(BaseModel):
    """Base de los esquemas expuestos: JSON en camelCase, acepta también snake_case"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ===============================================
# MATRIZ DE AUTORIZACIÓN
# ===============================================

class MatrixRuleBase(APIModel):
    workflow_type: TipoWorkflow
    min_amount: Decimal = Field(Decimal("0"), ge=0, description="Monto mínimo del rango (inclusive)")
    max_amount: Optional[Decimal] = Field(None, ge=0, description="Monto máximo del rango (inclusive); nulo = sin límite")
    required_level: NivelAprobacion
    requires_sequential: bool = False
    escalation_hours: int = Field(24, gt=0, description="Horas antes del primer recordatorio")

    @model_validator(mode='after')
    def validate_range(self):
        if self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError('El monto máximo no puede ser menor que el monto mínimo')
        return self


class MatrixRuleCreate(MatrixRuleBase):
    is_active: bool = True


class MatrixRuleUpdate(APIModel):
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    required_level: Optional[NivelAprobacion] = None
    requires_sequential: Optional[bool] = None
    escalation_hours: Optional[int] = Field(None, gt=0)


class MatrixRuleResponse(MatrixRuleBase):
    id: int
    is_active: bool

    @classmethod
    def from_model(cls, regla) -> "MatrixRuleResponse":
        return cls(
            id=regla.id_regla,
            workflow_type=regla.tipo_workflow,
            min_amount=regla.monto_minimo,
            max_amount=regla.monto_maximo,
            required_level=regla.nivel_requerido,
            requires_sequential=regla.requiere_secuencial,
            escalation_hours=regla.horas_escalamiento,
            is_active=regla.es_activa,
        )


class MatrixValidationResponse(APIModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    tiers_by_type: Dict[str, int]


# ===============================================
# WORKFLOWS
# ===============================================

class StepCreate(APIModel):
    """Paso explícito: nominal (user_id) o por nivel (level)"""
    step_type: TipoPaso = TipoPaso.AUTORIZA
    user_id: Optional[int] = None
    level: Optional[NivelAprobacion] = None

    @model_validator(mode='after')
    def validate_target(self):
        if (self.user_id is None) == (self.level is None):
            raise ValueError('Cada paso requiere exactamente uno de: user_id o level')
        return self


class WorkflowCreate(APIModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    workflow_type: TipoWorkflow
    amount: Decimal = Field(..., ge=0)
    requested_by: int
    steps: Optional[List[StepCreate]] = Field(None, description="Cadena explícita; si se omite se deriva de la jerarquía")

    @field_validator('steps')
    def validate_steps_not_empty(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError('La cadena de aprobación explícita no puede estar vacía')
        return v


class StepResponse(APIModel):
    step_index: int
    step_type: TipoPaso
    required_level: Optional[NivelAprobacion] = None
    assigned_user_id: Optional[int] = None
    status: EstadoPaso
    signed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, paso) -> "StepResponse":
        return cls(
            step_index=paso.numero_paso,
            step_type=paso.tipo_paso,
            required_level=paso.nivel_requerido,
            assigned_user_id=paso.id_usuario_asignado,
            status=paso.estado,
            signed_at=paso.fecha_firma,
        )


class WorkflowResponse(APIModel):
    id: int
    title: str
    description: Optional[str] = None
    workflow_type: TipoWorkflow
    amount: Decimal
    status: EstadoWorkflow
    rule_id: int
    requested_by: int
    current_step: Optional[int] = None
    current_approver: Optional[int] = None
    current_level: Optional[NivelAprobacion] = None
    requires_sequential: bool
    escalated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def _campos(cls, workflow) -> Dict[str, Any]:
        return dict(
            id=workflow.id_workflow,
            title=workflow.titulo,
            description=workflow.descripcion,
            workflow_type=workflow.tipo_workflow,
            amount=workflow.monto,
            status=workflow.estado,
            rule_id=workflow.id_regla,
            requested_by=workflow.id_usuario_solicita,
            current_step=workflow.paso_actual,
            current_approver=workflow.id_aprobador_actual,
            current_level=workflow.nivel_actual,
            requires_sequential=workflow.requiere_secuencial,
            escalated_at=workflow.escalado_en,
            resolved_at=workflow.resuelto_en,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
        )

    @classmethod
    def from_model(cls, workflow):
        return cls(**cls._campos(workflow))


class WorkflowDetailResponse(WorkflowResponse):
    steps: List[StepResponse]

    @classmethod
    def from_model(cls, workflow):
        return cls(
            **cls._campos(workflow),
            steps=[StepResponse.from_model(p) for p in workflow.pasos]
        )


# ===============================================
# LEDGER DE DECISIONES
# ===============================================

class DecisionRequest(APIModel):
    user_id: int
    action: AccionAprobacion
    comments: Optional[str] = Field(None, max_length=1000, description="Comentarios opcionales sobre la decisión")


class DecisionResponse(APIModel):
    workflow_id: int
    user_id: int
    user_name: str
    step_index: int
    action: AccionAprobacion
    comments: Optional[str] = None
    timestamp: datetime

    @classmethod
    def from_model(cls, decision) -> "DecisionResponse":
        return cls(
            workflow_id=decision.id_workflow,
            user_id=decision.id_usuario,
            user_name=decision.nombre_usuario,
            step_index=decision.numero_paso,
            action=decision.accion,
            comments=decision.comentarios,
            timestamp=decision.fecha_decision,
        )


class DecisionResult(APIModel):
    """Respuesta estándar tras registrar una decisión"""
    success: bool
    message: str
    workflow_id: int
    previous_status: EstadoWorkflow
    status: EstadoWorkflow
    current_step: Optional[int] = None
    current_approver: Optional[int] = None
    decision: DecisionResponse


class HistoryEntryResponse(APIModel):
    workflow_id: int
    user_id: int
    user_name: str
    on_behalf_of: Optional[int] = None
    step_index: int
    action: AccionAprobacion
    previous_status: EstadoWorkflow
    new_status: EstadoWorkflow
    comments: Optional[str] = None
    timestamp: datetime

    @classmethod
    def from_model(cls, entrada) -> "HistoryEntryResponse":
        return cls(
            workflow_id=entrada.id_workflow,
            user_id=entrada.id_usuario,
            user_name=entrada.nombre_usuario,
            on_behalf_of=entrada.id_usuario_en_nombre_de,
            step_index=entrada.numero_paso,
            action=entrada.accion,
            previous_status=entrada.estado_anterior,
            new_status=entrada.estado_nuevo,
            comments=entrada.comentarios,
            timestamp=entrada.fecha_accion,
        )


class AvailableActionsResponse(APIModel):
    """Acciones que un usuario puede ejecutar ahora sobre un workflow"""
    workflow_id: int
    user_id: int
    status: EstadoWorkflow
    step_index: Optional[int] = None
    available_actions: List[AccionAprobacion]


# ===============================================
# ESCALAMIENTO Y MÉTRICAS
# ===============================================

class EscalationEventResponse(APIModel):
    id: int
    workflow_id: int
    type: TipoEscalamiento
    hours_elapsed: int
    target_user_id: Optional[int] = None
    message: str
    triggered_at: datetime

    @classmethod
    def from_model(cls, evento) -> "EscalationEventResponse":
        return cls(
            id=evento.id_evento,
            workflow_id=evento.id_workflow,
            type=evento.tipo,
            hours_elapsed=evento.horas_transcurridas,
            target_user_id=evento.id_usuario_destino,
            message=evento.mensaje,
            triggered_at=evento.fecha_evento,
        )


class EscalationTypeCount(APIModel):
    type: TipoEscalamiento
    count: int


class EscalationStats(APIModel):
    total: int
    by_type: List[EscalationTypeCount]


class WorkflowAtRisk(APIModel):
    id: int
    title: str
    workflow_type: TipoWorkflow
    amount: Decimal
    status: EstadoWorkflow
    created_at: datetime
    hours_elapsed: float
    escalation_hours: int
    next_escalation_type: TipoEscalamiento
    hours_to_next_escalation: float


class MetricsSnapshot(APIModel):
    total_workflows: int
    pending_workflows: int
    escalated_workflows: int
    approved_workflows: int
    rejected_workflows: int
    average_approval_time: float = Field(..., description="Promedio en horas")
    approval_rate: float = Field(..., description="Porcentaje aprobado / (aprobado + rechazado)")
    active_approvers: int


# ===============================================
# DELEGACIONES Y NOTIFICACIONES
# ===============================================

class DelegationCreate(APIModel):
    delegator_id: int
    delegate_id: int
    workflow_types: List[TipoWorkflow] = Field(..., min_length=1)
    max_amount: Optional[Decimal] = Field(None, gt=0)
    valid_from: datetime
    valid_until: datetime
    reason: str = Field(..., min_length=1, max_length=1000)


class DelegationResponse(APIModel):
    id: int
    delegator_id: int
    delegate_id: int
    workflow_types: List[TipoWorkflow]
    max_amount: Optional[Decimal] = None
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    reason: Optional[str] = None

    @classmethod
    def from_model(cls, delegacion) -> "DelegationResponse":
        return cls(
            id=delegacion.id_delegacion,
            delegator_id=delegacion.id_delegante,
            delegate_id=delegacion.id_delegado,
            workflow_types=delegacion.tipos_workflow,
            max_amount=delegacion.monto_maximo,
            valid_from=delegacion.valido_desde,
            valid_until=delegacion.valido_hasta,
            is_active=delegacion.es_activa,
            reason=delegacion.motivo,
        )


class NotificationResponse(APIModel):
    id: int
    workflow_id: int
    recipient_id: int
    notification_type: str
    priority: PrioridadNotificacion
    message: str
    read_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_model(cls, notificacion) -> "NotificationResponse":
        return cls(
            id=notificacion.id_notificacion,
            workflow_id=notificacion.id_workflow,
            recipient_id=notificacion.id_destinatario,
            notification_type=notificacion.tipo,
            priority=notificacion.prioridad,
            message=notificacion.mensaje,
            read_at=notificacion.leida_en,
            created_at=notificacion.created_at,
        )
