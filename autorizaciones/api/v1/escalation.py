from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from autorizaciones.schemas.authorization import EscalationStats, WorkflowAtRisk, EscalationEventResponse
from autorizaciones.services.escalation_service import EscalationScheduler
from autorizaciones.api.deps import get_escalation_scheduler

router = APIRouter()


@router.get("/stats", response_model=EscalationStats)
async def get_escalation_stats(
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler)
):
    return scheduler.get_escalation_stats()


@router.get("/at-risk", response_model=List[WorkflowAtRisk])
async def get_workflows_at_risk(
    risk_window_hours: Optional[int] = Query(None, ge=0),
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler)
):
    """Workflows próximos a su siguiente umbral de escalamiento"""
    return scheduler.get_workflows_at_risk(risk_window_hours=risk_window_hours)


@router.post("/trigger", response_model=List[EscalationEventResponse])
async def trigger_escalation(
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler)
):
    """Ejecuta el escaneo de escalamiento inmediatamente"""
    return [EscalationEventResponse.from_model(e) for e in scheduler.trigger()]
