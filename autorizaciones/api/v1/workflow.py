# autorizaciones/api/v1/workflow.py

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from autorizaciones.models.enums import EstadoWorkflow, TipoWorkflow
from autorizaciones.schemas.authorization import (
    WorkflowCreate, WorkflowResponse, WorkflowDetailResponse, StepResponse,
    DecisionRequest, DecisionResult, DecisionResponse, HistoryEntryResponse,
    AvailableActionsResponse
)
from autorizaciones.services.workflow_engine import WorkflowStateMachine
from autorizaciones.services.approval_ledger import ApprovalLedger
from autorizaciones.api.deps import get_workflow_engine, get_approval_ledger


router = APIRouter(prefix="/workflow", tags=["Workflow Management"])

# ===============================================
# WORKFLOWS
# ===============================================

@router.post("", response_model=WorkflowDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    data: WorkflowCreate,
    engine: WorkflowStateMachine = Depends(get_workflow_engine)
):
    """
    Crea una solicitud de autorización. La regla se resuelve por tipo y monto;
    si no se envían pasos se construye la cadena por jerarquía.
    """
    return WorkflowDetailResponse.from_model(engine.create_workflow(data))


@router.get("", response_model=List[WorkflowResponse])
async def list_workflows(
    status_filter: Optional[EstadoWorkflow] = Query(None, alias="status"),
    workflow_type: Optional[TipoWorkflow] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    engine: WorkflowStateMachine = Depends(get_workflow_engine)
):
    workflows = engine.list_workflows(status_filter, workflow_type, skip, limit)
    return [WorkflowResponse.from_model(w) for w in workflows]


@router.get("/{workflow_id}", response_model=WorkflowDetailResponse)
async def get_workflow(
    workflow_id: int,
    engine: WorkflowStateMachine = Depends(get_workflow_engine)
):
    return WorkflowDetailResponse.from_model(engine.get_workflow(workflow_id))


@router.get("/{workflow_id}/steps", response_model=List[StepResponse])
async def get_workflow_steps(
    workflow_id: int,
    engine: WorkflowStateMachine = Depends(get_workflow_engine)
):
    return [StepResponse.from_model(p) for p in engine.get_steps(workflow_id)]

# ===============================================
# DECISIONES
# ===============================================

@router.post("/{workflow_id}/decision", response_model=DecisionResult)
async def record_decision(
    workflow_id: int,
    request_data: DecisionRequest,
    ledger: ApprovalLedger = Depends(get_approval_ledger)
):
    """
    Registra approve, reject o reverse de un usuario. Errores:
    403 sin autoridad sobre el paso, 409 reversión bloqueada o conflicto
    concurrente, 400 transición inválida.
    """
    return ledger.record_decision(
        workflow_id=workflow_id,
        user_id=request_data.user_id,
        action=request_data.action,
        comments=request_data.comments
    )


@router.get("/{workflow_id}/approvals", response_model=List[DecisionResponse])
async def get_workflow_approvals(
    workflow_id: int,
    ledger: ApprovalLedger = Depends(get_approval_ledger)
):
    return [DecisionResponse.from_model(d) for d in ledger.get_approvals(workflow_id)]


@router.get("/{workflow_id}/history", response_model=List[HistoryEntryResponse])
async def get_workflow_history(
    workflow_id: int,
    ledger: ApprovalLedger = Depends(get_approval_ledger)
):
    """Bitácora completa, incluidas las decisiones reemplazadas"""
    return [HistoryEntryResponse.from_model(h) for h in ledger.get_history(workflow_id)]


@router.get("/{workflow_id}/actions", response_model=AvailableActionsResponse)
async def get_available_actions(
    workflow_id: int,
    user_id: int = Query(...),
    ledger: ApprovalLedger = Depends(get_approval_ledger)
):
    """Acciones que el usuario puede ejecutar ahora sobre el workflow"""
    return ledger.get_available_actions(workflow_id, user_id)
