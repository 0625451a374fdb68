from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from autorizaciones.core.config import settings
from autorizaciones.schemas.authorization import MetricsSnapshot, WorkflowResponse
from autorizaciones.services.metrics import MetricsAggregator
from autorizaciones.services.workflow_engine import WorkflowStateMachine
from autorizaciones.api.deps import get_metrics_aggregator, get_workflow_engine

router = APIRouter()


@router.get("/authorization-metrics", response_model=MetricsSnapshot)
async def get_authorization_metrics(
    metrics: MetricsAggregator = Depends(get_metrics_aggregator)
):
    """Indicadores del tablero de autorizaciones"""
    return metrics.get_metrics()


@router.get("/authorization-workflows/recent", response_model=List[WorkflowResponse])
async def get_recent_workflows(
    limit: Optional[int] = Query(None, ge=1, le=100),
    engine: WorkflowStateMachine = Depends(get_workflow_engine)
):
    """Workflows con actividad más reciente"""
    workflows = engine.get_recent_workflows(limit or settings.RECENT_WORKFLOWS_LIMIT)
    return [WorkflowResponse.from_model(w) for w in workflows]
