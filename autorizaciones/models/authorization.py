from sqlalchemy import Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column
from typing import List, Optional, TYPE_CHECKING
from decimal import Decimal
from datetime import datetime
from .base import Base, TimestampMixin, enum_column
from .enums import (
    TipoWorkflow, NivelAprobacion, EstadoWorkflow, EstadoPaso, TipoPaso,
    AccionAprobacion, TipoEscalamiento, PrioridadNotificacion
)
from ..utils.fechas import utc_now

if TYPE_CHECKING:
    from .user import Usuario


class MatrizAutorizacion(Base, TimestampMixin):
    __tablename__ = "authorization_matrix"

    id_regla: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tipo_workflow: Mapped[TipoWorkflow] = mapped_column(enum_column(TipoWorkflow), nullable=False, index=True)
    monto_minimo: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    monto_maximo: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True, comment='NULL = sin límite superior')
    nivel_requerido: Mapped[NivelAprobacion] = mapped_column(enum_column(NivelAprobacion), nullable=False)
    requiere_secuencial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    horas_escalamiento: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    es_activa: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    workflows: Mapped[List["WorkflowAutorizacion"]] = relationship("WorkflowAutorizacion", back_populates="regla")

    def cubre_monto(self, monto: Decimal) -> bool:
        """
        Los montos de la matriz son unidades enteras: el rango [min, max]
        cubre hasta el siguiente entero sin incluirlo, de modo que 25000.50
        pertenece al rango 0-25000 y no queda entre dos rangos.
        """
        if monto < self.monto_minimo:
            return False
        return self.monto_maximo is None or monto < self.monto_maximo + 1


class WorkflowAutorizacion(Base, TimestampMixin):
    __tablename__ = "authorization_workflows"

    id_workflow: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    titulo: Mapped[str] = mapped_column(String(255), nullable=False)
    descripcion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tipo_workflow: Mapped[TipoWorkflow] = mapped_column(enum_column(TipoWorkflow), nullable=False, index=True)
    monto: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    estado: Mapped[EstadoWorkflow] = mapped_column(enum_column(EstadoWorkflow), nullable=False, default=EstadoWorkflow.PENDIENTE, index=True)
    id_regla: Mapped[int] = mapped_column(Integer, ForeignKey("authorization_matrix.id_regla"), nullable=False)
    id_usuario_solicita: Mapped[int] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=False)
    paso_actual: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    id_aprobador_actual: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=True)
    nivel_actual: Mapped[Optional[NivelAprobacion]] = mapped_column(enum_column(NivelAprobacion), nullable=True)
    escalado_en: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resuelto_en: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    regla: Mapped["MatrizAutorizacion"] = relationship("MatrizAutorizacion", back_populates="workflows")
    solicitante: Mapped["Usuario"] = relationship("Usuario", foreign_keys=[id_usuario_solicita])
    aprobador_actual: Mapped[Optional["Usuario"]] = relationship("Usuario", foreign_keys=[id_aprobador_actual])
    pasos: Mapped[List["PasoWorkflow"]] = relationship(
        "PasoWorkflow", back_populates="workflow", cascade="all, delete-orphan", order_by="PasoWorkflow.numero_paso"
    )
    decisiones: Mapped[List["DecisionAprobacion"]] = relationship("DecisionAprobacion", back_populates="workflow", cascade="all, delete-orphan")
    historial: Mapped[List["HistorialDecision"]] = relationship("HistorialDecision", back_populates="workflow", cascade="all, delete-orphan")
    eventos_escalamiento: Mapped[List["EventoEscalamiento"]] = relationship("EventoEscalamiento", back_populates="workflow", cascade="all, delete-orphan")

    @property
    def requiere_secuencial(self) -> bool:
        return self.regla.requiere_secuencial

    def paso(self, numero_paso: int) -> Optional["PasoWorkflow"]:
        return next((p for p in self.pasos if p.numero_paso == numero_paso), None)


class PasoWorkflow(Base):
    __tablename__ = "workflow_steps"
    __table_args__ = (UniqueConstraint("id_workflow", "numero_paso", name="uq_paso_workflow"),)

    id_paso: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    id_workflow: Mapped[int] = mapped_column(Integer, ForeignKey("authorization_workflows.id_workflow"), nullable=False)
    numero_paso: Mapped[int] = mapped_column(Integer, nullable=False)
    tipo_paso: Mapped[TipoPaso] = mapped_column(enum_column(TipoPaso), nullable=False, default=TipoPaso.AUTORIZA)
    nivel_requerido: Mapped[Optional[NivelAprobacion]] = mapped_column(enum_column(NivelAprobacion), nullable=True)
    id_usuario_asignado: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=True, comment='Paso nominal: sólo este usuario (o su delegado) puede firmar')
    estado: Mapped[EstadoPaso] = mapped_column(enum_column(EstadoPaso), nullable=False, default=EstadoPaso.PENDIENTE)
    fecha_firma: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    workflow: Mapped["WorkflowAutorizacion"] = relationship("WorkflowAutorizacion", back_populates="pasos")
    usuario_asignado: Mapped[Optional["Usuario"]] = relationship("Usuario", foreign_keys=[id_usuario_asignado])

    @property
    def es_nominal(self) -> bool:
        return self.id_usuario_asignado is not None


class DecisionAprobacion(Base):
    """Decisión activa de un usuario sobre un workflow (una por usuario)"""
    __tablename__ = "approval_decisions"
    __table_args__ = (UniqueConstraint("id_workflow", "id_usuario", name="uq_decision_usuario_workflow"),)

    id_decision: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    id_workflow: Mapped[int] = mapped_column(Integer, ForeignKey("authorization_workflows.id_workflow"), nullable=False, index=True)
    id_usuario: Mapped[int] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=False)
    nombre_usuario: Mapped[str] = mapped_column(String(150), nullable=False)
    numero_paso: Mapped[int] = mapped_column(Integer, nullable=False)
    accion: Mapped[AccionAprobacion] = mapped_column(enum_column(AccionAprobacion), nullable=False)
    comentarios: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fecha_decision: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    workflow: Mapped["WorkflowAutorizacion"] = relationship("WorkflowAutorizacion", back_populates="decisiones")


class HistorialDecision(Base):
    """Bitácora de eventos crudos de decisión, incluidas las reemplazadas"""
    __tablename__ = "approval_history"

    id_historial: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    id_workflow: Mapped[int] = mapped_column(Integer, ForeignKey("authorization_workflows.id_workflow"), nullable=False, index=True)
    id_usuario: Mapped[int] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=False)
    nombre_usuario: Mapped[str] = mapped_column(String(150), nullable=False)
    id_usuario_en_nombre_de: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=True)
    numero_paso: Mapped[int] = mapped_column(Integer, nullable=False)
    accion: Mapped[AccionAprobacion] = mapped_column(enum_column(AccionAprobacion), nullable=False)
    estado_anterior: Mapped[EstadoWorkflow] = mapped_column(enum_column(EstadoWorkflow), nullable=False)
    estado_nuevo: Mapped[EstadoWorkflow] = mapped_column(enum_column(EstadoWorkflow), nullable=False)
    comentarios: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fecha_accion: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    workflow: Mapped["WorkflowAutorizacion"] = relationship("WorkflowAutorizacion", back_populates="historial")


class EventoEscalamiento(Base):
    __tablename__ = "escalation_events"

    id_evento: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    id_workflow: Mapped[int] = mapped_column(Integer, ForeignKey("authorization_workflows.id_workflow"), nullable=False, index=True)
    tipo: Mapped[TipoEscalamiento] = mapped_column(enum_column(TipoEscalamiento), nullable=False)
    horas_transcurridas: Mapped[int] = mapped_column(Integer, nullable=False)
    id_usuario_destino: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=True)
    mensaje: Mapped[str] = mapped_column(Text, nullable=False)
    fecha_evento: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    workflow: Mapped["WorkflowAutorizacion"] = relationship("WorkflowAutorizacion", back_populates="eventos_escalamiento")


class DelegacionAutoridad(Base, TimestampMixin):
    __tablename__ = "authority_delegations"

    id_delegacion: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    id_delegante: Mapped[int] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=False)
    id_delegado: Mapped[int] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=False, index=True)
    tipos_workflow: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    monto_maximo: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    valido_desde: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    valido_hasta: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    es_activa: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    motivo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    delegante: Mapped["Usuario"] = relationship("Usuario", foreign_keys=[id_delegante])
    delegado: Mapped["Usuario"] = relationship("Usuario", foreign_keys=[id_delegado])

    def cubre(self, tipo_workflow: TipoWorkflow, monto: Decimal, ahora: datetime) -> bool:
        if not self.es_activa or not (self.valido_desde <= ahora <= self.valido_hasta):
            return False
        if TipoWorkflow(tipo_workflow).value not in self.tipos_workflow:
            return False
        return self.monto_maximo is None or monto <= self.monto_maximo


class NotificacionWorkflow(Base):
    __tablename__ = "workflow_notifications"

    id_notificacion: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    id_workflow: Mapped[int] = mapped_column(Integer, ForeignKey("authorization_workflows.id_workflow"), nullable=False, index=True)
    id_destinatario: Mapped[int] = mapped_column(Integer, ForeignKey("usuarios.id_usuario"), nullable=False, index=True)
    tipo: Mapped[str] = mapped_column(String(50), nullable=False)
    prioridad: Mapped[PrioridadNotificacion] = mapped_column(enum_column(PrioridadNotificacion), nullable=False, default=PrioridadNotificacion.MEDIA)
    mensaje: Mapped[str] = mapped_column(Text, nullable=False)
    leida_en: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
