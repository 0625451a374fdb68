from typing import List
from fastapi import APIRouter, Depends, Query

from autorizaciones.schemas.authorization import NotificationResponse
from autorizaciones.services.notification_service import NotificationService
from autorizaciones.api.deps import get_notification_service

router = APIRouter()

# === ENDPOINTS DE NOTIFICACIONES ===

@router.get("", response_model=List[NotificationResponse])
async def get_notifications(
    user_id: int = Query(...),
    unread_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    service: NotificationService = Depends(get_notification_service)
):
    """Notificaciones de un usuario, más recientes primero"""
    notificaciones = service.get_notifications(user_id, unread_only=unread_only, skip=skip, limit=limit)
    return [NotificationResponse.from_model(n) for n in notificaciones]


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_as_read(
    notification_id: int,
    service: NotificationService = Depends(get_notification_service)
):
    return NotificationResponse.from_model(service.mark_as_read(notification_id))
