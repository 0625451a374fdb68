# autorizaciones/api/deps.py

from fastapi import Depends
from sqlalchemy.orm import Session

from autorizaciones.core.database import get_db
from autorizaciones.services.matrix_resolver import AuthorizationMatrixResolver
from autorizaciones.services.workflow_engine import WorkflowStateMachine
from autorizaciones.services.approval_ledger import ApprovalLedger
from autorizaciones.services.escalation_service import EscalationScheduler
from autorizaciones.services.metrics import MetricsAggregator
from autorizaciones.services.delegation_service import DelegationService
from autorizaciones.services.notification_service import NotificationService


def get_matrix_resolver(db: Session = Depends(get_db)) -> AuthorizationMatrixResolver:
    """Dependency para obtener el resolvedor de la matriz"""
    return AuthorizationMatrixResolver(db)


def get_workflow_engine(db: Session = Depends(get_db)) -> WorkflowStateMachine:
    return WorkflowStateMachine(db)


def get_approval_ledger(db: Session = Depends(get_db)) -> ApprovalLedger:
    return ApprovalLedger(db)


def get_escalation_scheduler(db: Session = Depends(get_db)) -> EscalationScheduler:
    return EscalationScheduler(db)


def get_metrics_aggregator(db: Session = Depends(get_db)) -> MetricsAggregator:
    return MetricsAggregator(db)


def get_delegation_service(db: Session = Depends(get_db)) -> DelegationService:
    return DelegationService(db)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)
