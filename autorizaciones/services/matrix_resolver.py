# autorizaciones/services/matrix_resolver.py

import logging
from typing import List, Dict, Any, Optional
from decimal import Decimal
from sqlalchemy.orm import Session

from ..models.authorization import MatrizAutorizacion, WorkflowAutorizacion
from ..models.enums import TipoWorkflow, ESTADOS_ABIERTOS
from ..schemas.authorization import MatrixRuleCreate, MatrixRuleUpdate
from ..core.exceptions import NoMatchingRule, BusinessException, ResourceNotFoundException

logger = logging.getLogger(__name__)


class AuthorizationMatrixResolver:
    """
    Resuelve la regla de la matriz de autorización aplicable a un tipo de
    workflow y monto, y administra las reglas (sin borrado físico).
    """

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, tipo_workflow: TipoWorkflow, monto: Decimal) -> MatrizAutorizacion:
        """
        Selecciona la regla activa que cubre el monto. Los límites son
        unidades enteras y un rango llega hasta el inicio del siguiente
        (ver `MatrizAutorizacion.cubre_monto`); ante un solape se toma el
        rango de mayor monto mínimo.
        """
        monto = Decimal(str(monto))
        reglas = self._active_rules(tipo_workflow)

        for regla in reversed(reglas):
            if regla.cubre_monto(monto):
                return regla

        logger.error(f"Matriz sin cobertura para {TipoWorkflow(tipo_workflow).value} con monto {monto}")
        raise NoMatchingRule(TipoWorkflow(tipo_workflow).value, monto)

    def _active_rules(self, tipo_workflow: TipoWorkflow) -> List[MatrizAutorizacion]:
        return self.db.query(MatrizAutorizacion).filter(
            MatrizAutorizacion.tipo_workflow == tipo_workflow,
            MatrizAutorizacion.es_activa == True
        ).order_by(MatrizAutorizacion.monto_minimo, MatrizAutorizacion.id_regla).all()

    # ===============================================
    # ADMINISTRACIÓN DE REGLAS
    # ===============================================

    def list_rules(self, tipo_workflow: Optional[TipoWorkflow] = None, include_inactive: bool = False) -> List[MatrizAutorizacion]:
        query = self.db.query(MatrizAutorizacion)
        if tipo_workflow is not None:
            query = query.filter(MatrizAutorizacion.tipo_workflow == tipo_workflow)
        if not include_inactive:
            query = query.filter(MatrizAutorizacion.es_activa == True)
        return query.order_by(MatrizAutorizacion.tipo_workflow, MatrizAutorizacion.monto_minimo).all()

    def get_rule(self, id_regla: int) -> MatrizAutorizacion:
        regla = self.db.get(MatrizAutorizacion, id_regla)
        if not regla:
            raise ResourceNotFoundException(f"Regla de matriz {id_regla} no encontrada")
        return regla

    def create_rule(self, data: MatrixRuleCreate) -> MatrizAutorizacion:
        regla = MatrizAutorizacion(
            tipo_workflow=data.workflow_type,
            monto_minimo=data.min_amount,
            monto_maximo=data.max_amount,
            nivel_requerido=data.required_level,
            requiere_secuencial=data.requires_sequential,
            horas_escalamiento=data.escalation_hours,
            es_activa=data.is_active
        )
        self.db.add(regla)
        self.db.commit()
        self.db.refresh(regla)
        logger.info(f"Regla de matriz {regla.id_regla} creada para {regla.tipo_workflow.value}")
        return regla

    def update_rule(self, id_regla: int, data: MatrixRuleUpdate) -> MatrizAutorizacion:
        """Edita una regla que no esté referenciada por workflows en curso"""
        regla = self.get_rule(id_regla)

        en_curso = self.db.query(WorkflowAutorizacion).filter(
            WorkflowAutorizacion.id_regla == id_regla,
            WorkflowAutorizacion.estado.in_(ESTADOS_ABIERTOS)
        ).count()
        if en_curso:
            raise BusinessException(
                f"La regla {id_regla} está asociada a {en_curso} workflow(s) en curso y no puede modificarse",
                details={"id_regla": id_regla, "workflows_en_curso": en_curso}
            )

        field_map = {
            "min_amount": "monto_minimo",
            "max_amount": "monto_maximo",
            "required_level": "nivel_requerido",
            "requires_sequential": "requiere_secuencial",
            "escalation_hours": "horas_escalamiento",
        }
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(regla, field_map[field], value)

        if regla.monto_maximo is not None and regla.monto_maximo < regla.monto_minimo:
            self.db.rollback()
            raise BusinessException("El monto máximo no puede ser menor que el monto mínimo")

        self.db.commit()
        self.db.refresh(regla)
        return regla

    def deactivate_rule(self, id_regla: int) -> MatrizAutorizacion:
        regla = self.get_rule(id_regla)
        regla.es_activa = False
        self.db.commit()
        self.db.refresh(regla)
        logger.info(f"Regla de matriz {id_regla} desactivada")
        return regla

    # ===============================================
    # VALIDACIÓN DE CONFIGURACIÓN
    # ===============================================

    def validate_matrix(self) -> Dict[str, Any]:
        """
        Verifica que, por tipo de workflow, los rangos activos cubran desde 0
        sin huecos ni solapes y terminen en un rango abierto.
        """
        result = {"is_valid": True, "errors": [], "warnings": [], "tiers_by_type": {}}

        for tipo in TipoWorkflow:
            reglas = self._active_rules(tipo)
            result["tiers_by_type"][tipo.value] = len(reglas)

            if not reglas:
                result["is_valid"] = False
                result["errors"].append(f"'{tipo.value}' no tiene reglas activas")
                continue

            if reglas[0].monto_minimo > 0:
                result["warnings"].append(
                    f"'{tipo.value}' no cubre montos menores a {reglas[0].monto_minimo}"
                )

            for actual, siguiente in zip(reglas, reglas[1:]):
                if actual.monto_maximo is None:
                    result["is_valid"] = False
                    result["errors"].append(
                        f"'{tipo.value}': la regla {actual.id_regla} es abierta y se solapa con la regla {siguiente.id_regla}"
                    )
                elif siguiente.monto_minimo < actual.monto_maximo + 1:
                    result["is_valid"] = False
                    result["errors"].append(
                        f"'{tipo.value}': las reglas {actual.id_regla} y {siguiente.id_regla} se solapan"
                    )
                elif siguiente.monto_minimo > actual.monto_maximo + 1:
                    result["is_valid"] = False
                    result["errors"].append(
                        f"'{tipo.value}': hueco entre {actual.monto_maximo} y {siguiente.monto_minimo}"
                    )

            if reglas[-1].monto_maximo is not None:
                result["is_valid"] = False
                result["errors"].append(
                    f"'{tipo.value}': no existe un rango abierto por encima de {reglas[-1].monto_maximo}"
                )

        return result
