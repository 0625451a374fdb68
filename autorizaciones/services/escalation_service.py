# autorizaciones/services/escalation_service.py

import logging
import threading
from typing import Callable, Dict, List, Optional
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..models.authorization import WorkflowAutorizacion, EventoEscalamiento
from ..models.user import Usuario
from ..models.enums import (
    TipoEscalamiento, PrioridadNotificacion, ESTADOS_ABIERTOS
)
from ..schemas.authorization import EscalationStats, EscalationTypeCount, WorkflowAtRisk
from ..core.config import settings
from .workflow_engine import WorkflowStateMachine
from .notification_service import NotificationService
from ..utils.fechas import utc_now, horas_entre

logger = logging.getLogger(__name__)

PRIORIDAD_POR_TIPO = {
    TipoEscalamiento.REMINDER: PrioridadNotificacion.MEDIA,
    TipoEscalamiento.ESCALATION: PrioridadNotificacion.ALTA,
    TipoEscalamiento.FINAL_ESCALATION: PrioridadNotificacion.CRITICA,
}


class EscalationScheduler:
    """
    Escanea los workflows abiertos y emite, a lo sumo una vez por tipo,
    recordatorio (H), escalamiento (2H) y escalamiento final (3H), donde H son
    las horas de escalamiento de la regla del workflow y el tiempo se mide
    desde su creación.
    """

    def __init__(self, db: Session):
        self.db = db
        self._engine = WorkflowStateMachine(db)
        self._notificaciones = NotificationService(db)

    # ===============================================
    # ESCANEO
    # ===============================================

    def scan(self, now: Optional[datetime] = None, cancel_event: Optional[threading.Event] = None) -> List[EventoEscalamiento]:
        """
        Procesa cada workflow abierto en su propia transacción. Un fallo en un
        workflow se registra y no detiene el escaneo; `cancel_event` se revisa
        entre workflows.
        """
        now = now or utc_now()
        ids = [
            row[0] for row in self.db.query(WorkflowAutorizacion.id_workflow).filter(
                WorkflowAutorizacion.estado.in_(ESTADOS_ABIERTOS)
            ).order_by(WorkflowAutorizacion.id_workflow).all()
        ]
        self.db.commit()

        emitidos: List[EventoEscalamiento] = []
        fallidos = 0
        for workflow_id in ids:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Escaneo de escalamiento cancelado tras {len(emitidos)} eventos")
                break
            try:
                evento = self._process_workflow(workflow_id, now)
                self.db.commit()
                if evento is not None:
                    emitidos.append(evento)
            except StaleDataError:
                self.db.rollback()
                fallidos += 1
                logger.warning(f"Workflow {workflow_id} modificado concurrentemente; se reintentará en el próximo escaneo")
            except Exception:
                self.db.rollback()
                fallidos += 1
                logger.exception(f"Error procesando escalamiento del workflow {workflow_id}")

        logger.info(
            f"Escaneo de escalamiento: {len(ids)} workflows abiertos, "
            f"{len(emitidos)} eventos emitidos, {fallidos} fallidos"
        )
        return emitidos

    def trigger(self) -> List[EventoEscalamiento]:
        """Ejecución manual del escaneo con la hora actual"""
        return self.scan(utc_now())

    def _process_workflow(self, workflow_id: int, now: datetime) -> Optional[EventoEscalamiento]:
        workflow = self.db.query(WorkflowAutorizacion).filter(
            WorkflowAutorizacion.id_workflow == workflow_id
        ).with_for_update().first()
        # Pudo resolverse entre la consulta inicial y el bloqueo
        if workflow is None or workflow.estado not in ESTADOS_ABIERTOS:
            return None

        horas = horas_entre(workflow.created_at, now)
        tipo = self.bucket_for(workflow.regla.horas_escalamiento, horas)
        if tipo is None:
            return None

        ya_emitidos = {e.tipo for e in workflow.eventos_escalamiento}
        if any(t.multiplicador >= tipo.multiplicador for t in ya_emitidos):
            return None

        destino = self._escalation_target(workflow, tipo)
        evento = EventoEscalamiento(
            tipo=tipo,
            horas_transcurridas=int(horas),
            id_usuario_destino=destino,
            mensaje=self._message(workflow, tipo, horas),
            fecha_evento=now
        )
        workflow.eventos_escalamiento.append(evento)

        if tipo != TipoEscalamiento.REMINDER and workflow.escalado_en is None:
            workflow.escalado_en = now
        self._engine.recompute(workflow, now)

        if destino is not None:
            self._notificaciones.notify(
                workflow.id_workflow, destino, tipo.value, evento.mensaje, PRIORIDAD_POR_TIPO[tipo], now
            )

        logger.info(f"Workflow {workflow_id}: {tipo.value} emitido a las {int(horas)}h (destino {destino})")
        return evento

    @staticmethod
    def bucket_for(horas_escalamiento: int, horas: float) -> Optional[TipoEscalamiento]:
        """Umbral más alto alcanzado, o None si aún no se alcanza el recordatorio"""
        for tipo in sorted(TipoEscalamiento, key=lambda t: t.multiplicador, reverse=True):
            if horas >= tipo.multiplicador * horas_escalamiento:
                return tipo
        return None

    def _approvers_by_rank(self) -> List[Usuario]:
        usuarios = self.db.query(Usuario).filter(
            Usuario.is_active == True,
            Usuario.nivel_aprobacion.isnot(None)
        ).order_by(Usuario.id_usuario).all()
        return sorted(usuarios, key=lambda u: u.nivel_aprobacion.rank)

    def _escalation_target(self, workflow: WorkflowAutorizacion, tipo: TipoEscalamiento) -> Optional[int]:
        aprobadores = self._approvers_by_rank()

        if tipo == TipoEscalamiento.FINAL_ESCALATION:
            if aprobadores:
                return aprobadores[-1].id_usuario
            return workflow.id_usuario_solicita

        if workflow.id_aprobador_actual is not None:
            asignado = workflow.aprobador_actual
            rank_actual = asignado.nivel_aprobacion.rank if asignado and asignado.nivel_aprobacion else 0
        else:
            rank_actual = workflow.nivel_actual.rank if workflow.nivel_actual else 0

        if tipo == TipoEscalamiento.REMINDER:
            if workflow.id_aprobador_actual is not None:
                return workflow.id_aprobador_actual
            candidatos = [u for u in aprobadores if u.nivel_aprobacion.rank >= rank_actual]
        else:
            candidatos = [u for u in aprobadores if u.nivel_aprobacion.rank > rank_actual]

        if candidatos:
            return candidatos[0].id_usuario
        return workflow.id_usuario_solicita

    @staticmethod
    def _message(workflow: WorkflowAutorizacion, tipo: TipoEscalamiento, horas: float) -> str:
        if tipo == TipoEscalamiento.REMINDER:
            return f'Recordatorio: "{workflow.titulo}" lleva {int(horas)}h pendiente de aprobación'
        if tipo == TipoEscalamiento.ESCALATION:
            return f'Escalamiento: "{workflow.titulo}" lleva {int(horas)}h sin resolución'
        return f'Escalamiento final: "{workflow.titulo}" lleva {int(horas)}h sin resolución y requiere atención inmediata'

    # ===============================================
    # ESTADÍSTICAS Y RIESGO
    # ===============================================

    def get_escalation_stats(self) -> EscalationStats:
        rows = self.db.query(
            EventoEscalamiento.tipo, func.count(EventoEscalamiento.id_evento)
        ).group_by(EventoEscalamiento.tipo).all()
        conteos: Dict[TipoEscalamiento, int] = {TipoEscalamiento(tipo): total for tipo, total in rows}

        return EscalationStats(
            total=sum(conteos.values()),
            by_type=[EscalationTypeCount(type=t, count=conteos.get(t, 0)) for t in TipoEscalamiento]
        )

    def get_workflows_at_risk(
        self,
        now: Optional[datetime] = None,
        risk_window_hours: Optional[int] = None
    ) -> List[WorkflowAtRisk]:
        """
        Workflows abiertos a menos de `risk_window_hours` de su siguiente
        umbral de escalamiento (o que ya lo superaron sin que el escaneo lo
        haya emitido). Ordenados por cercanía al umbral.
        """
        now = now or utc_now()
        ventana = settings.ESCALATION_RISK_WINDOW_HOURS if risk_window_hours is None else risk_window_hours

        workflows = self.db.query(WorkflowAutorizacion).filter(
            WorkflowAutorizacion.estado.in_(ESTADOS_ABIERTOS)
        ).all()

        en_riesgo = []
        for workflow in workflows:
            horas_regla = workflow.regla.horas_escalamiento
            emitido = max((e.tipo.multiplicador for e in workflow.eventos_escalamiento), default=0)
            siguiente = next(
                (t for t in sorted(TipoEscalamiento, key=lambda t: t.multiplicador) if t.multiplicador > emitido),
                None
            )
            if siguiente is None:
                continue

            horas = horas_entre(workflow.created_at, now)
            umbral = siguiente.multiplicador * horas_regla
            if horas < umbral - ventana:
                continue

            en_riesgo.append(WorkflowAtRisk(
                id=workflow.id_workflow,
                title=workflow.titulo,
                workflow_type=workflow.tipo_workflow,
                amount=workflow.monto,
                status=workflow.estado,
                created_at=workflow.created_at,
                hours_elapsed=round(horas, 1),
                escalation_hours=horas_regla,
                next_escalation_type=siguiente,
                hours_to_next_escalation=round(max(umbral - horas, 0.0), 1)
            ))

        return sorted(en_riesgo, key=lambda w: (w.hours_to_next_escalation, w.id))


class EscalationRunner:
    """Ejecuta el escaneo periódicamente en un hilo daemon"""

    def __init__(self, session_factory: Callable[[], Session], interval_s: Optional[int] = None):
        self.session_factory = session_factory
        self.interval_s = settings.ESCALATION_INTERVAL_SECONDS if interval_s is None else interval_s
        self._thread = None
        self._stop = threading.Event()

    @property
    def enabled(self) -> bool:
        return self.interval_s > 0

    def start(self):
        if not self.enabled:
            logger.info("Escaneo automático de escalamiento desactivado")
            return
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="escalation-runner", daemon=True)
        self._thread.start()
        logger.info(f"Escaneo automático de escalamiento cada {self.interval_s}s")

    def stop(self):
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)

    def run_once(self) -> int:
        """Escanea con una sesión propia y devuelve cuántos eventos se emitieron"""
        db = self.session_factory()
        try:
            return len(EscalationScheduler(db).scan(cancel_event=self._stop))
        finally:
            db.close()

    def _run(self):
        while not self._stop.wait(self.interval_s):
            try:
                self.run_once()
            except Exception:
                logger.exception("Fallo en el escaneo automático de escalamiento")
