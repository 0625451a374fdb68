"""
Fixtures compartidas: base SQLite en memoria por prueba, matriz sembrada y
un conjunto de aprobadores con distintos niveles.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autorizaciones.models import Base, Usuario
from autorizaciones.models.enums import NivelAprobacion, TipoWorkflow, TipoPaso
from autorizaciones.schemas.authorization import WorkflowCreate, StepCreate
from autorizaciones.services.workflow_engine import WorkflowStateMachine
from autorizaciones.services.approval_ledger import ApprovalLedger
from autorizaciones.utils.init_db import init_matrix

T0 = datetime(2025, 3, 3, 8, 0, 0)

# clave, nombre, título, nivel
APROBADORES = [
    ("yoshimitsu", "Yoshimitsu Calderón", "Project Manager", None),
    ("ana", "Ana Cecilia Campos", "Directora de Desarrollo", NivelAprobacion.DIRECTOR),
    ("juan", "Juan Núñez", "Socio Director", NivelAprobacion.DIRECTOR),
    ("javier", "Javier Gómez", "Investment Manager", NivelAprobacion.EJECUTIVO),
    ("solicitante", "Laura Méndez", "Analista de Compras", None),
    ("supervisor", "Carlos Ríos", "Supervisor de Obra", NivelAprobacion.SUPERVISOR),
    ("gerente", "María Pérez", "Gerente de Proyecto", NivelAprobacion.GERENTE),
    ("director", "Pedro Sánchez", "Director de Operaciones", NivelAprobacion.DIRECTOR),
    ("ejecutivo", "Sofía Herrera", "Directora General", NivelAprobacion.EJECUTIVO),
]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    init_matrix(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def usuarios(db):
    creados = {}
    for clave, nombre, titulo, nivel in APROBADORES:
        usuario = Usuario(
            nombre=nombre,
            email=f"{clave}@erp.test",
            titulo=titulo,
            nivel_aprobacion=nivel,
            is_active=True
        )
        db.add(usuario)
        creados[clave] = usuario
    db.commit()
    return creados


@pytest.fixture
def workflow_engine(db):
    return WorkflowStateMachine(db)


@pytest.fixture
def ledger(db):
    return ApprovalLedger(db)


@pytest.fixture
def crear_workflow(workflow_engine, usuarios):
    """Factory: crea un workflow con la cadena por defecto o con pasos explícitos"""
    def _crear(
        tipo=TipoWorkflow.PAGO,
        monto="30000",
        solicitante="solicitante",
        pasos=None,
        now=T0,
        titulo="Pago a contratista"
    ):
        data = WorkflowCreate(
            title=titulo,
            workflow_type=tipo,
            amount=Decimal(monto),
            requested_by=usuarios[solicitante].id_usuario,
            steps=pasos
        )
        return workflow_engine.create_workflow(data, now=now)
    return _crear


@pytest.fixture
def capital_call(crear_workflow, usuarios):
    """Cadena nominal de cuatro pasos (elabora + tres autorizaciones), secuencial"""
    pasos = [
        StepCreate(step_type=TipoPaso.ELABORA, user_id=usuarios["yoshimitsu"].id_usuario),
        StepCreate(step_type=TipoPaso.AUTORIZA, user_id=usuarios["ana"].id_usuario),
        StepCreate(step_type=TipoPaso.AUTORIZA, user_id=usuarios["juan"].id_usuario),
        StepCreate(step_type=TipoPaso.AUTORIZA, user_id=usuarios["javier"].id_usuario),
    ]
    return crear_workflow(
        tipo=TipoWorkflow.CAPITAL_CALL,
        monto="750000",
        solicitante="yoshimitsu",
        pasos=pasos,
        titulo="Capital Call Q3"
    )
