# autorizaciones/services/approval_ledger.py

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..models.authorization import (
    WorkflowAutorizacion, PasoWorkflow, DecisionAprobacion, HistorialDecision
)
from ..models.user import Usuario
from ..models.enums import AccionAprobacion, EstadoWorkflow, PrioridadNotificacion
from ..schemas.authorization import (
    DecisionResult, DecisionResponse, AvailableActionsResponse
)
from ..core.exceptions import (
    BaseAppException, ResourceNotFoundException, Unauthorized, CannotReverse,
    InvalidTransition, ConcurrencyException
)
from .workflow_engine import WorkflowStateMachine
from .delegation_service import DelegationService
from .notification_service import NotificationService
from ..utils.fechas import utc_now

logger = logging.getLogger(__name__)


@dataclass
class _Autoridad:
    """Paso sobre el que actúa un usuario y, si aplica, el delegante que representa"""
    paso: PasoWorkflow
    en_nombre_de: Optional[int] = None


class DecisionSequence:
    """
    Vista perezosa de las decisiones activas de un workflow. Cada iteración
    consulta de nuevo la base de datos, por lo que puede recorrerse varias veces.
    """

    def __init__(self, db: Session, workflow_id: int, batch_size: int = 100):
        self.db = db
        self.workflow_id = workflow_id
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[DecisionAprobacion]:
        query = self.db.query(DecisionAprobacion).filter(
            DecisionAprobacion.id_workflow == self.workflow_id
        ).order_by(DecisionAprobacion.fecha_decision, DecisionAprobacion.id_decision)
        yield from query.yield_per(self.batch_size)


class ApprovalLedger:
    """
    Registro de decisiones por usuario. Cada usuario tiene a lo sumo una
    decisión activa por workflow; una nueva decisión reemplaza la anterior
    y queda registrada en la bitácora.
    """

    def __init__(self, db: Session):
        self.db = db
        self._engine = WorkflowStateMachine(db)
        self._delegaciones = DelegationService(db)
        self._notificaciones = NotificationService(db)

    # ===============================================
    # REGISTRO DE DECISIONES
    # ===============================================

    def record_decision(
        self,
        workflow_id: int,
        user_id: int,
        action: AccionAprobacion,
        comments: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> DecisionResult:
        """
        Registra approve/reject/reverse de un usuario y recalcula el estado del
        workflow en la misma transacción. El workflow se bloquea para escritura
        y su columna de versión detecta escrituras concurrentes.
        """
        now = now or utc_now()
        accion = AccionAprobacion(action)

        try:
            usuario = self._get_usuario(user_id)
            workflow = self._engine.get_workflow(workflow_id, for_update=True)
            estado_anterior = EstadoWorkflow(workflow.estado)
            aprobador_anterior = workflow.id_aprobador_actual
            previa = self._active_decision(workflow, user_id)

            if accion == AccionAprobacion.REVERSE:
                autoridad = self._validate_reversal(workflow, previa)
            else:
                autoridad = self._validate_decision(workflow, usuario, accion, previa, now)

            decision = self._write_decision(workflow, usuario, autoridad.paso, accion, comments, previa, now)
            nuevo_estado = self._engine.recompute(workflow, now)

            self.db.add(HistorialDecision(
                id_workflow=workflow.id_workflow,
                id_usuario=usuario.id_usuario,
                nombre_usuario=usuario.nombre,
                id_usuario_en_nombre_de=autoridad.en_nombre_de,
                numero_paso=autoridad.paso.numero_paso,
                accion=accion,
                estado_anterior=estado_anterior,
                estado_nuevo=nuevo_estado,
                comentarios=comments,
                fecha_accion=now
            ))
            self._notify_changes(workflow, estado_anterior, aprobador_anterior, now)

            self.db.commit()
            self.db.refresh(workflow)
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Conflicto de concurrencia registrando {accion.value} en workflow {workflow_id}")
            raise ConcurrencyException(workflow_id)
        except BaseAppException as e:
            self.db.rollback()
            logger.warning(f"Decisión rechazada en workflow {workflow_id} para usuario {user_id}: {e.message}")
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Workflow {workflow_id}: {usuario.nombre} ejecutó {accion.value} en paso {decision.numero_paso} "
            f"({estado_anterior.value} -> {nuevo_estado.value})"
        )

        return DecisionResult(
            success=True,
            message=self._result_message(accion, nuevo_estado),
            workflow_id=workflow.id_workflow,
            previous_status=estado_anterior,
            status=nuevo_estado,
            current_step=workflow.paso_actual,
            current_approver=workflow.id_aprobador_actual,
            decision=DecisionResponse.from_model(decision)
        )

    def _get_usuario(self, user_id: int) -> Usuario:
        usuario = self.db.get(Usuario, user_id)
        if not usuario:
            raise ResourceNotFoundException(f"Usuario {user_id} no encontrado")
        if not usuario.is_active:
            raise Unauthorized(f"El usuario {usuario.nombre} está inactivo")
        return usuario

    @staticmethod
    def _active_decision(workflow: WorkflowAutorizacion, user_id: int) -> Optional[DecisionAprobacion]:
        return next((d for d in workflow.decisiones if d.id_usuario == user_id), None)

    def _validate_decision(
        self,
        workflow: WorkflowAutorizacion,
        usuario: Usuario,
        accion: AccionAprobacion,
        previa: Optional[DecisionAprobacion],
        now: datetime
    ) -> _Autoridad:
        estado = EstadoWorkflow(workflow.estado)
        if estado.es_terminal:
            raise InvalidTransition(estado.value, accion.value)

        # Re-decisión sobre el paso que el usuario ya ocupa
        if previa is not None and previa.accion != AccionAprobacion.REVERSE:
            paso = workflow.paso(previa.numero_paso)
            if self._engine.has_later_signoff(workflow, paso.numero_paso):
                raise CannotReverse(
                    f"No es posible cambiar la decisión del paso {paso.numero_paso}: existe una firma posterior",
                    details={"workflow_id": workflow.id_workflow, "paso": paso.numero_paso}
                )
            autoridad = self._authority_for(workflow, paso, usuario, now)
            if autoridad is None:
                raise Unauthorized(f"El usuario {usuario.nombre} ya no tiene autoridad sobre el paso {paso.numero_paso}")
            return autoridad

        # Nominales primero; entre pasos por nivel, el más exigente primero
        candidatos = sorted(
            self._engine.actionable_steps(workflow),
            key=lambda p: (not p.es_nominal, -(p.nivel_requerido.rank if p.nivel_requerido else 0), p.numero_paso)
        )
        # La autoridad propia tiene prioridad sobre la delegada
        for paso in candidatos:
            if self._has_own_authority(paso, usuario):
                return _Autoridad(paso=paso)
        delegantes = self._delegaciones.delegators_for(usuario.id_usuario, workflow.tipo_workflow, workflow.monto, now)
        for paso in candidatos:
            autoridad = self._delegated_authority(paso, delegantes)
            if autoridad is not None:
                return autoridad

        raise Unauthorized(
            f"El usuario {usuario.nombre} no está autorizado para actuar en el paso actual del workflow {workflow.id_workflow}",
            details={
                "workflow_id": workflow.id_workflow,
                "paso_actual": workflow.paso_actual,
                "nivel_requerido": workflow.nivel_actual.value if workflow.nivel_actual else None
            }
        )

    def _validate_reversal(self, workflow: WorkflowAutorizacion, previa: Optional[DecisionAprobacion]) -> _Autoridad:
        estado = EstadoWorkflow(workflow.estado)
        if previa is None or previa.accion == AccionAprobacion.REVERSE:
            raise InvalidTransition(
                estado.value,
                AccionAprobacion.REVERSE.value,
                message="El usuario no tiene una decisión activa que revertir"
            )

        paso = workflow.paso(previa.numero_paso)
        if self._engine.has_later_signoff(workflow, paso.numero_paso):
            raise CannotReverse(
                f"No es posible revertir la decisión del paso {paso.numero_paso}: existe una firma posterior",
                details={"workflow_id": workflow.id_workflow, "paso": paso.numero_paso}
            )
        return _Autoridad(paso=paso)

    def _authority_for(
        self,
        workflow: WorkflowAutorizacion,
        paso: PasoWorkflow,
        usuario: Usuario,
        now: datetime
    ) -> Optional[_Autoridad]:
        if self._has_own_authority(paso, usuario):
            return _Autoridad(paso=paso)
        delegantes = self._delegaciones.delegators_for(usuario.id_usuario, workflow.tipo_workflow, workflow.monto, now)
        return self._delegated_authority(paso, delegantes)

    @staticmethod
    def _has_own_authority(paso: PasoWorkflow, usuario: Usuario) -> bool:
        if paso.es_nominal:
            return paso.id_usuario_asignado == usuario.id_usuario
        return usuario.puede_autorizar_nivel(paso.nivel_requerido)

    @staticmethod
    def _delegated_authority(paso: PasoWorkflow, delegantes: List[Usuario]) -> Optional[_Autoridad]:
        for delegante in delegantes:
            if paso.es_nominal:
                if paso.id_usuario_asignado == delegante.id_usuario:
                    return _Autoridad(paso=paso, en_nombre_de=delegante.id_usuario)
            elif delegante.puede_autorizar_nivel(paso.nivel_requerido):
                return _Autoridad(paso=paso, en_nombre_de=delegante.id_usuario)
        return None

    def _write_decision(
        self,
        workflow: WorkflowAutorizacion,
        usuario: Usuario,
        paso: PasoWorkflow,
        accion: AccionAprobacion,
        comentarios: Optional[str],
        previa: Optional[DecisionAprobacion],
        now: datetime
    ) -> DecisionAprobacion:
        if previa is not None:
            previa.accion = accion
            previa.numero_paso = paso.numero_paso
            previa.comentarios = comentarios
            previa.nombre_usuario = usuario.nombre
            previa.fecha_decision = now
            return previa

        decision = DecisionAprobacion(
            id_usuario=usuario.id_usuario,
            nombre_usuario=usuario.nombre,
            numero_paso=paso.numero_paso,
            accion=accion,
            comentarios=comentarios,
            fecha_decision=now
        )
        workflow.decisiones.append(decision)
        return decision

    def _notify_changes(
        self,
        workflow: WorkflowAutorizacion,
        estado_anterior: EstadoWorkflow,
        aprobador_anterior: Optional[int],
        now: datetime
    ):
        estado = EstadoWorkflow(workflow.estado)
        if estado != estado_anterior and estado.es_terminal:
            verbo = "aprobada" if estado == EstadoWorkflow.APROBADO else "rechazada"
            self._notificaciones.notify(
                workflow.id_workflow,
                workflow.id_usuario_solicita,
                f"workflow_{estado.value}",
                f'Tu solicitud "{workflow.titulo}" ha sido {verbo}',
                PrioridadNotificacion.ALTA if estado == EstadoWorkflow.RECHAZADO else PrioridadNotificacion.MEDIA,
                now
            )
        elif workflow.id_aprobador_actual is not None and workflow.id_aprobador_actual != aprobador_anterior:
            self._notificaciones.notify(
                workflow.id_workflow,
                workflow.id_aprobador_actual,
                "approval_required",
                f'Tienes una solicitud pendiente de aprobación: "{workflow.titulo}"',
                PrioridadNotificacion.MEDIA,
                now
            )

    @staticmethod
    def _result_message(accion: AccionAprobacion, estado: EstadoWorkflow) -> str:
        if accion == AccionAprobacion.REVERSE:
            return f"Decisión revertida; el workflow queda {estado.value}"
        if estado.es_terminal:
            return f"Decisión registrada; el workflow fue {estado.value}"
        return "Decisión registrada exitosamente"

    # ===============================================
    # CONSULTAS
    # ===============================================

    def get_approvals(self, workflow_id: int) -> DecisionSequence:
        self._engine.get_workflow(workflow_id)
        return DecisionSequence(self.db, workflow_id)

    def get_user_approval(self, workflow_id: int, user_id: int) -> Optional[DecisionAprobacion]:
        return self.db.query(DecisionAprobacion).filter(
            DecisionAprobacion.id_workflow == workflow_id,
            DecisionAprobacion.id_usuario == user_id
        ).first()

    def get_history(self, workflow_id: int) -> List[HistorialDecision]:
        self._engine.get_workflow(workflow_id)
        return self.db.query(HistorialDecision).filter(
            HistorialDecision.id_workflow == workflow_id
        ).order_by(HistorialDecision.fecha_accion, HistorialDecision.id_historial).all()

    def get_available_actions(self, workflow_id: int, user_id: int, now: Optional[datetime] = None) -> AvailableActionsResponse:
        """Evalúa, sin modificar nada, qué acciones aceptaría `record_decision`"""
        now = now or utc_now()
        workflow = self._engine.get_workflow(workflow_id)
        acciones: List[AccionAprobacion] = []
        numero_paso = None

        usuario = self.db.get(Usuario, user_id)
        if not usuario:
            raise ResourceNotFoundException(f"Usuario {user_id} no encontrado")

        if usuario.is_active:
            previa = self._active_decision(workflow, user_id)
            try:
                autoridad = self._validate_decision(workflow, usuario, AccionAprobacion.APPROVE, previa, now)
                acciones.extend([AccionAprobacion.APPROVE, AccionAprobacion.REJECT])
                numero_paso = autoridad.paso.numero_paso
            except BaseAppException:
                pass

            try:
                autoridad = self._validate_reversal(workflow, previa)
                acciones.append(AccionAprobacion.REVERSE)
                numero_paso = autoridad.paso.numero_paso
            except BaseAppException:
                pass

        return AvailableActionsResponse(
            workflow_id=workflow.id_workflow,
            user_id=user_id,
            status=workflow.estado,
            step_index=numero_paso,
            available_actions=acciones
        )
