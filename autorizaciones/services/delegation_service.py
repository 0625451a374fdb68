# autorizaciones/services/delegation_service.py

import logging
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session

from ..models.authorization import DelegacionAutoridad
from ..models.user import Usuario
from ..models.enums import TipoWorkflow
from ..schemas.authorization import DelegationCreate
from ..core.exceptions import ValidationException, ResourceNotFoundException
from ..utils.fechas import utc_now, a_utc_naive

logger = logging.getLogger(__name__)


class DelegationService:
    """Delegación temporal de autoridad de aprobación entre usuarios"""

    def __init__(self, db: Session):
        self.db = db

    def create_delegation(self, data: DelegationCreate) -> DelegacionAutoridad:
        if data.delegator_id == data.delegate_id:
            raise ValidationException("Un usuario no puede delegarse autoridad a sí mismo")
        if a_utc_naive(data.valid_until) <= a_utc_naive(data.valid_from):
            raise ValidationException("La fecha de fin debe ser posterior a la fecha de inicio")

        for id_usuario in (data.delegator_id, data.delegate_id):
            if not self.db.get(Usuario, id_usuario):
                raise ResourceNotFoundException(f"Usuario {id_usuario} no encontrado")

        delegacion = DelegacionAutoridad(
            id_delegante=data.delegator_id,
            id_delegado=data.delegate_id,
            tipos_workflow=[TipoWorkflow(t).value for t in data.workflow_types],
            monto_maximo=data.max_amount,
            valido_desde=a_utc_naive(data.valid_from),
            valido_hasta=a_utc_naive(data.valid_until),
            es_activa=True,
            motivo=data.reason
        )
        self.db.add(delegacion)
        self.db.commit()
        self.db.refresh(delegacion)
        logger.info(
            f"Delegación {delegacion.id_delegacion}: usuario {data.delegator_id} -> {data.delegate_id} "
            f"({', '.join(delegacion.tipos_workflow)})"
        )
        return delegacion

    def list_active_delegations(self, delegate_id: Optional[int] = None, now: Optional[datetime] = None) -> List[DelegacionAutoridad]:
        now = now or utc_now()
        query = self.db.query(DelegacionAutoridad).filter(
            DelegacionAutoridad.es_activa == True,
            DelegacionAutoridad.valido_desde <= now,
            DelegacionAutoridad.valido_hasta >= now
        )
        if delegate_id is not None:
            query = query.filter(DelegacionAutoridad.id_delegado == delegate_id)
        return query.order_by(DelegacionAutoridad.valido_hasta).all()

    def revoke_delegation(self, id_delegacion: int) -> DelegacionAutoridad:
        delegacion = self.db.get(DelegacionAutoridad, id_delegacion)
        if not delegacion:
            raise ResourceNotFoundException(f"Delegación {id_delegacion} no encontrada")
        delegacion.es_activa = False
        self.db.commit()
        self.db.refresh(delegacion)
        logger.info(f"Delegación {id_delegacion} revocada")
        return delegacion

    def delegators_for(self, delegate_id: int, tipo_workflow: TipoWorkflow, monto: Decimal, now: datetime) -> List[Usuario]:
        """Usuarios cuya autoridad ejerce `delegate_id` para este tipo y monto"""
        return [
            d.delegante
            for d in self.list_active_delegations(delegate_id, now)
            if d.cubre(tipo_workflow, monto, now)
        ]
