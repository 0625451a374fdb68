from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session

from ..models.authorization import NotificacionWorkflow
from ..models.enums import PrioridadNotificacion
from ..core.exceptions import ResourceNotFoundException
from ..utils.fechas import utc_now


class NotificationService:
    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        id_workflow: int,
        id_destinatario: int,
        tipo: str,
        mensaje: str,
        prioridad: PrioridadNotificacion = PrioridadNotificacion.MEDIA,
        now: Optional[datetime] = None
    ) -> NotificacionWorkflow:
        """Agrega la notificación a la sesión; el commit lo hace quien llama"""
        notificacion = NotificacionWorkflow(
            id_workflow=id_workflow,
            id_destinatario=id_destinatario,
            tipo=tipo,
            mensaje=mensaje,
            prioridad=prioridad,
            created_at=now or utc_now()
        )
        self.db.add(notificacion)
        return notificacion

    def get_notifications(self, recipient_id: int, unread_only: bool = False, skip: int = 0, limit: int = 100) -> List[NotificacionWorkflow]:
        query = self.db.query(NotificacionWorkflow).filter(NotificacionWorkflow.id_destinatario == recipient_id)
        if unread_only:
            query = query.filter(NotificacionWorkflow.leida_en.is_(None))
        return query.order_by(
            NotificacionWorkflow.created_at.desc(), NotificacionWorkflow.id_notificacion.desc()
        ).offset(skip).limit(limit).all()

    def mark_as_read(self, id_notificacion: int) -> NotificacionWorkflow:
        notificacion = self.db.get(NotificacionWorkflow, id_notificacion)
        if not notificacion:
            raise ResourceNotFoundException("Notificación no encontrada")
        if notificacion.leida_en is None:
            notificacion.leida_en = utc_now()
            self.db.commit()
            self.db.refresh(notificacion)
        return notificacion
