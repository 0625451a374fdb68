from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from autorizaciones.schemas.authorization import DelegationCreate, DelegationResponse
from autorizaciones.services.delegation_service import DelegationService
from autorizaciones.api.deps import get_delegation_service

router = APIRouter()


@router.get("", response_model=List[DelegationResponse])
async def list_delegations(
    delegate_id: Optional[int] = Query(None),
    service: DelegationService = Depends(get_delegation_service)
):
    """Delegaciones vigentes, opcionalmente filtradas por delegado"""
    return [DelegationResponse.from_model(d) for d in service.list_active_delegations(delegate_id)]


@router.post("", response_model=DelegationResponse, status_code=status.HTTP_201_CREATED)
async def create_delegation(
    data: DelegationCreate,
    service: DelegationService = Depends(get_delegation_service)
):
    return DelegationResponse.from_model(service.create_delegation(data))


@router.delete("/{delegation_id}", response_model=DelegationResponse)
async def revoke_delegation(
    delegation_id: int,
    service: DelegationService = Depends(get_delegation_service)
):
    return DelegationResponse.from_model(service.revoke_delegation(delegation_id))
