from typing import List, Optional
from decimal import Decimal
from fastapi import APIRouter, Depends, Query, status

from autorizaciones.models.enums import TipoWorkflow
from autorizaciones.schemas.authorization import (
    MatrixRuleCreate, MatrixRuleUpdate, MatrixRuleResponse, MatrixValidationResponse
)
from autorizaciones.services.matrix_resolver import AuthorizationMatrixResolver
from autorizaciones.api.deps import get_matrix_resolver

router = APIRouter()

# ===============================================
# CONSULTA
# ===============================================

@router.get("", response_model=List[MatrixRuleResponse])
async def list_matrix_rules(
    workflow_type: Optional[TipoWorkflow] = Query(None),
    include_inactive: bool = Query(False),
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    reglas = resolver.list_rules(workflow_type, include_inactive)
    return [MatrixRuleResponse.from_model(r) for r in reglas]


@router.get("/validate", response_model=MatrixValidationResponse)
async def validate_matrix(
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    """Reporta huecos, solapes y rangos abiertos faltantes por tipo de workflow"""
    return resolver.validate_matrix()


@router.get("/resolve", response_model=MatrixRuleResponse)
async def resolve_rule(
    workflow_type: TipoWorkflow = Query(...),
    amount: Decimal = Query(..., ge=0),
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    """Regla que aplicaría a un workflow del tipo y monto indicados"""
    return MatrixRuleResponse.from_model(resolver.resolve(workflow_type, amount))


@router.get("/{rule_id}", response_model=MatrixRuleResponse)
async def get_matrix_rule(
    rule_id: int,
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    return MatrixRuleResponse.from_model(resolver.get_rule(rule_id))

# ===============================================
# ADMINISTRACIÓN
# ===============================================

@router.post("", response_model=MatrixRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_matrix_rule(
    rule: MatrixRuleCreate,
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    return MatrixRuleResponse.from_model(resolver.create_rule(rule))


@router.put("/{rule_id}", response_model=MatrixRuleResponse)
async def update_matrix_rule(
    rule_id: int,
    rule: MatrixRuleUpdate,
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    """Edita una regla; se rechaza si hay workflows en curso que la referencian"""
    return MatrixRuleResponse.from_model(resolver.update_rule(rule_id, rule))


@router.post("/{rule_id}/deactivate", response_model=MatrixRuleResponse)
async def deactivate_matrix_rule(
    rule_id: int,
    resolver: AuthorizationMatrixResolver = Depends(get_matrix_resolver)
):
    return MatrixRuleResponse.from_model(resolver.deactivate_rule(rule_id))
