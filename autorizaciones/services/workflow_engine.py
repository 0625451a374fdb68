# autorizaciones/services/workflow_engine.py

import logging
from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session

from ..models.authorization import WorkflowAutorizacion, PasoWorkflow, MatrizAutorizacion
from ..models.user import Usuario
from ..models.enums import (
    EstadoWorkflow, EstadoPaso, TipoPaso, AccionAprobacion, NivelAprobacion, TipoWorkflow
)
from ..schemas.authorization import WorkflowCreate
from ..core.exceptions import ResourceNotFoundException, ValidationException
from .matrix_resolver import AuthorizationMatrixResolver
from ..utils.fechas import utc_now

logger = logging.getLogger(__name__)


class WorkflowStateMachine:
    """
    Deriva el estado agregado de un workflow a partir del ledger de decisiones
    y de la cadena de pasos resuelta por la matriz.

    El estado almacenado en `WorkflowAutorizacion.estado` es una proyección:
    se recalcula en la misma transacción que cada escritura del ledger y en
    cada escalamiento.
    """

    def __init__(self, db: Session):
        self.db = db
        self._resolver = AuthorizationMatrixResolver(db)

    # ===============================================
    # CREACIÓN
    # ===============================================

    def create_workflow(self, data: WorkflowCreate, now: Optional[datetime] = None) -> WorkflowAutorizacion:
        """Crea un workflow resolviendo su regla y construyendo la cadena de pasos"""
        now = now or utc_now()

        solicitante = self.db.get(Usuario, data.requested_by)
        if not solicitante:
            raise ResourceNotFoundException(f"Usuario {data.requested_by} no encontrado")

        regla = self._resolver.resolve(data.workflow_type, data.amount)

        workflow = WorkflowAutorizacion(
            titulo=data.title,
            descripcion=data.description,
            tipo_workflow=data.workflow_type,
            monto=data.amount,
            estado=EstadoWorkflow.PENDIENTE,
            id_usuario_solicita=solicitante.id_usuario,
            created_at=now,
            updated_at=now
        )
        workflow.regla = regla
        workflow.pasos = self._build_steps(data, regla)
        self.recompute(workflow, now)

        try:
            self.db.add(workflow)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(workflow)

        logger.info(
            f"Workflow {workflow.id_workflow} creado ({workflow.tipo_workflow.value}, monto {workflow.monto}) "
            f"con regla {regla.id_regla}: {len(workflow.pasos)} pasos, "
            f"{'secuencial' if regla.requiere_secuencial else 'paralelo'}"
        )
        return workflow

    def _build_steps(self, data: WorkflowCreate, regla: MatrizAutorizacion) -> List[PasoWorkflow]:
        if data.steps:
            nominales = [s.user_id for s in data.steps if s.user_id is not None]
            if len(nominales) != len(set(nominales)):
                raise ValidationException("Un usuario no puede estar asignado a más de un paso del mismo workflow")
            asignados = {}
            for id_usuario in nominales:
                usuario = self.db.get(Usuario, id_usuario)
                if not usuario:
                    raise ResourceNotFoundException(f"Usuario {id_usuario} no encontrado")
                asignados[id_usuario] = usuario
            self._validate_explicit_chain(data, regla, asignados)

            return [
                PasoWorkflow(
                    numero_paso=indice,
                    tipo_paso=step.step_type,
                    nivel_requerido=step.level,
                    id_usuario_asignado=step.user_id,
                    estado=EstadoPaso.PENDIENTE
                )
                for indice, step in enumerate(data.steps, start=1)
            ]

        # Cadena por defecto: el solicitante elabora, luego un paso por nivel
        # de la jerarquía hasta el nivel requerido por la regla.
        pasos = [
            PasoWorkflow(
                numero_paso=1,
                tipo_paso=TipoPaso.ELABORA,
                id_usuario_asignado=data.requested_by,
                estado=EstadoPaso.PENDIENTE
            )
        ]
        for indice, nivel in enumerate(NivelAprobacion.hasta(regla.nivel_requerido), start=2):
            pasos.append(
                PasoWorkflow(
                    numero_paso=indice,
                    tipo_paso=TipoPaso.AUTORIZA,
                    nivel_requerido=nivel,
                    estado=EstadoPaso.PENDIENTE
                )
            )
        return pasos

    @staticmethod
    def _validate_explicit_chain(
        data: WorkflowCreate,
        regla: MatrizAutorizacion,
        asignados: Dict[int, Usuario]
    ) -> None:
        """
        Una cadena explícita no puede rebajar la regla: al menos un paso
        `autoriza` debe alcanzar el nivel requerido, y el solicitante no
        puede autorizar su propia solicitud.
        """
        autoriza = [s for s in data.steps if s.step_type == TipoPaso.AUTORIZA]

        if any(s.user_id == data.requested_by for s in autoriza):
            raise ValidationException(
                "El solicitante no puede estar asignado a un paso de autorización de su propia solicitud",
                details={"requested_by": data.requested_by}
            )

        def alcanza(step) -> bool:
            if step.level is not None:
                return step.level.rank >= regla.nivel_requerido.rank
            return asignados[step.user_id].puede_autorizar_nivel(regla.nivel_requerido)

        if not any(alcanza(s) for s in autoriza):
            raise ValidationException(
                f"La cadena de aprobación debe incluir un paso de autorización de nivel "
                f"{regla.nivel_requerido.value} o superior",
                details={"id_regla": regla.id_regla, "nivel_requerido": regla.nivel_requerido.value}
            )

    # ===============================================
    # RECÁLCULO DE ESTADO
    # ===============================================

    def recompute(self, workflow: WorkflowAutorizacion, now: Optional[datetime] = None) -> EstadoWorkflow:
        """
        Recalcula el estado de cada paso y del workflow desde las decisiones
        activas. Un paso está firmado si la decisión activa ligada a él es
        `approve`; cualquier `reject` activo rechaza el workflow.
        """
        now = now or utc_now()
        estado_anterior = workflow.estado

        activas = {
            d.numero_paso: d
            for d in workflow.decisiones
            if d.accion in (AccionAprobacion.APPROVE, AccionAprobacion.REJECT)
        }

        for paso in workflow.pasos:
            decision = activas.get(paso.numero_paso)
            if decision is not None and decision.accion == AccionAprobacion.APPROVE:
                paso.estado = EstadoPaso.FIRMADO
                paso.fecha_firma = decision.fecha_decision
            else:
                paso.estado = EstadoPaso.PENDIENTE
                paso.fecha_firma = None

        rechazado = any(d.accion == AccionAprobacion.REJECT for d in activas.values())
        pendientes = [p for p in workflow.pasos if p.estado == EstadoPaso.PENDIENTE]

        if rechazado:
            nuevo = EstadoWorkflow.RECHAZADO
        elif not pendientes:
            nuevo = EstadoWorkflow.APROBADO
        else:
            # Un workflow reabierto por una reversión vuelve a pendiente
            if estado_anterior is not None and EstadoWorkflow(estado_anterior).es_terminal:
                workflow.escalado_en = None
            nuevo = EstadoWorkflow.ESCALADO if workflow.escalado_en is not None else EstadoWorkflow.PENDIENTE

        if nuevo.es_terminal:
            workflow.paso_actual = None
            workflow.id_aprobador_actual = None
            workflow.nivel_actual = None
            if estado_anterior is None or not EstadoWorkflow(estado_anterior).es_terminal:
                workflow.resuelto_en = now
        else:
            siguiente = pendientes[0]
            workflow.paso_actual = siguiente.numero_paso
            workflow.id_aprobador_actual = siguiente.id_usuario_asignado
            workflow.nivel_actual = siguiente.nivel_requerido
            workflow.resuelto_en = None

        workflow.estado = nuevo
        workflow.updated_at = now
        return nuevo

    def actionable_steps(self, workflow: WorkflowAutorizacion) -> List[PasoWorkflow]:
        """Pasos sobre los que se puede decidir ahora según el modo de la regla"""
        if EstadoWorkflow(workflow.estado).es_terminal:
            return []
        pendientes = [p for p in workflow.pasos if p.estado == EstadoPaso.PENDIENTE]
        if workflow.requiere_secuencial:
            return pendientes[:1]
        return pendientes

    @staticmethod
    def has_later_signoff(workflow: WorkflowAutorizacion, numero_paso: int) -> bool:
        return any(
            p.numero_paso > numero_paso and p.estado == EstadoPaso.FIRMADO
            for p in workflow.pasos
        )

    # ===============================================
    # CONSULTAS
    # ===============================================

    def get_workflow(self, workflow_id: int, for_update: bool = False) -> WorkflowAutorizacion:
        query = self.db.query(WorkflowAutorizacion).filter(WorkflowAutorizacion.id_workflow == workflow_id)
        if for_update:
            query = query.with_for_update()
        workflow = query.first()
        if not workflow:
            raise ResourceNotFoundException(f"Workflow {workflow_id} no encontrado")
        return workflow

    def get_steps(self, workflow_id: int) -> List[PasoWorkflow]:
        return list(self.get_workflow(workflow_id).pasos)

    def list_workflows(
        self,
        estado: Optional[EstadoWorkflow] = None,
        tipo_workflow: Optional[TipoWorkflow] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[WorkflowAutorizacion]:
        query = self.db.query(WorkflowAutorizacion)
        if estado is not None:
            query = query.filter(WorkflowAutorizacion.estado == estado)
        if tipo_workflow is not None:
            query = query.filter(WorkflowAutorizacion.tipo_workflow == tipo_workflow)
        return query.order_by(WorkflowAutorizacion.id_workflow.desc()).offset(skip).limit(limit).all()

    def get_recent_workflows(self, limit: int = 10) -> List[WorkflowAutorizacion]:
        """Workflows actualizados más recientemente primero"""
        return self.db.query(WorkflowAutorizacion).order_by(
            WorkflowAutorizacion.updated_at.desc(),
            WorkflowAutorizacion.id_workflow.desc()
        ).limit(limit).all()
