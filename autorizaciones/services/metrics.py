from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import func, distinct
from datetime import datetime, timedelta

from ..models.authorization import WorkflowAutorizacion, HistorialDecision
from ..models.enums import EstadoWorkflow
from ..schemas.authorization import MetricsSnapshot
from ..core.config import settings
from ..utils.fechas import utc_now, horas_entre


class MetricsAggregator:
    def __init__(self, db: Session):
        self.db = db

    def get_metrics(self, now: Optional[datetime] = None, window_days: Optional[int] = None) -> MetricsSnapshot:
        """Indicadores agregados del tablero de autorizaciones"""
        now = now or utc_now()
        window_days = settings.ACTIVE_APPROVER_WINDOW_DAYS if window_days is None else window_days

        por_estado = {
            EstadoWorkflow(estado): cantidad
            for estado, cantidad in self.db.query(
                WorkflowAutorizacion.estado,
                func.count(WorkflowAutorizacion.id_workflow).label('cantidad')
            ).group_by(WorkflowAutorizacion.estado).all()
        }
        aprobados = por_estado.get(EstadoWorkflow.APROBADO, 0)
        rechazados = por_estado.get(EstadoWorkflow.RECHAZADO, 0)

        return MetricsSnapshot(
            total_workflows=sum(por_estado.values()),
            pending_workflows=por_estado.get(EstadoWorkflow.PENDIENTE, 0),
            escalated_workflows=por_estado.get(EstadoWorkflow.ESCALADO, 0),
            approved_workflows=aprobados,
            rejected_workflows=rechazados,
            average_approval_time=self._average_approval_hours(),
            approval_rate=round(aprobados / (aprobados + rechazados) * 100, 1) if (aprobados + rechazados) else 0.0,
            active_approvers=self._active_approvers(now - timedelta(days=window_days))
        )

    def _average_approval_hours(self) -> float:
        # Horas desde la creación hasta la aprobación final
        duraciones = [
            horas_entre(creado, resuelto or actualizado)
            for creado, resuelto, actualizado in self.db.query(
                WorkflowAutorizacion.created_at,
                WorkflowAutorizacion.resuelto_en,
                WorkflowAutorizacion.updated_at
            ).filter(WorkflowAutorizacion.estado == EstadoWorkflow.APROBADO).all()
        ]
        if not duraciones:
            return 0.0
        return round(sum(duraciones) / len(duraciones), 1)

    def _active_approvers(self, desde: datetime) -> int:
        return self.db.query(func.count(distinct(HistorialDecision.id_usuario))).filter(
            HistorialDecision.fecha_accion >= desde
        ).scalar() or 0
