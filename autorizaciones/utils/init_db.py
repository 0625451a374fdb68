# autorizaciones/utils/init_db.py

from decimal import Decimal
from sqlalchemy.orm import Session
from autorizaciones.core.database import engine
from autorizaciones.models import Base, MatrizAutorizacion, Usuario
from autorizaciones.models.enums import TipoWorkflow, NivelAprobacion

# (tipo, monto mínimo, monto máximo, nivel, horas de escalamiento, secuencial)
MATRIZ_INICIAL = [
    (TipoWorkflow.PAGO, "0", "25000", NivelAprobacion.SUPERVISOR, 12, False),
    (TipoWorkflow.PAGO, "25001", "100000", NivelAprobacion.GERENTE, 24, False),
    (TipoWorkflow.PAGO, "100001", "500000", NivelAprobacion.DIRECTOR, 48, True),
    (TipoWorkflow.PAGO, "500001", None, NivelAprobacion.EJECUTIVO, 72, True),
    (TipoWorkflow.CONTRATACION, "0", "100000", NivelAprobacion.GERENTE, 48, False),
    (TipoWorkflow.CONTRATACION, "100001", "500000", NivelAprobacion.DIRECTOR, 72, True),
    (TipoWorkflow.CONTRATACION, "500001", None, NivelAprobacion.EJECUTIVO, 168, True),
    (TipoWorkflow.ORDEN_CAMBIO, "0", "50000", NivelAprobacion.GERENTE, 24, False),
    (TipoWorkflow.ORDEN_CAMBIO, "50001", "250000", NivelAprobacion.DIRECTOR, 72, True),
    (TipoWorkflow.ORDEN_CAMBIO, "250001", None, NivelAprobacion.EJECUTIVO, 168, True),
    (TipoWorkflow.LIBERACION_CREDITO, "0", "100000", NivelAprobacion.DIRECTOR, 24, False),
    (TipoWorkflow.LIBERACION_CREDITO, "100001", None, NivelAprobacion.EJECUTIVO, 48, True),
    (TipoWorkflow.CAPITAL_CALL, "0", "500000", NivelAprobacion.DIRECTOR, 72, True),
    (TipoWorkflow.CAPITAL_CALL, "500001", None, NivelAprobacion.EJECUTIVO, 168, True),
]

USUARIOS_INICIALES = [
    {"nombre": "Supervisor de Obra", "email": "supervisor@erp.local", "titulo": "Supervisor", "nivel_aprobacion": NivelAprobacion.SUPERVISOR},
    {"nombre": "Gerente de Proyecto", "email": "gerente@erp.local", "titulo": "Gerente", "nivel_aprobacion": NivelAprobacion.GERENTE},
    {"nombre": "Director Financiero", "email": "director@erp.local", "titulo": "Director", "nivel_aprobacion": NivelAprobacion.DIRECTOR},
    {"nombre": "Director General", "email": "ejecutivo@erp.local", "titulo": "Ejecutivo", "nivel_aprobacion": NivelAprobacion.EJECUTIVO},
]


def create_tables():
    """Crear todas las tablas en la base de datos"""
    Base.metadata.create_all(bind=engine)
    print("✅ Tablas creadas exitosamente")


def init_matrix(db: Session):
    """Crear los rangos de la matriz de autorización por tipo de workflow"""
    for tipo, minimo, maximo, nivel, horas, secuencial in MATRIZ_INICIAL:
        existing_rule = db.query(MatrizAutorizacion).filter(
            MatrizAutorizacion.tipo_workflow == tipo,
            MatrizAutorizacion.monto_minimo == Decimal(minimo)
        ).first()
        if not existing_rule:
            db.add(MatrizAutorizacion(
                tipo_workflow=tipo,
                monto_minimo=Decimal(minimo),
                monto_maximo=Decimal(maximo) if maximo is not None else None,
                nivel_requerido=nivel,
                horas_escalamiento=horas,
                requiere_secuencial=secuencial,
                es_activa=True
            ))

    db.commit()
    print("✅ Matriz de autorización creada exitosamente")


def init_users(db: Session):
    for user_data in USUARIOS_INICIALES:
        existing_user = db.query(Usuario).filter(Usuario.email == user_data["email"]).first()
        if not existing_user:
            db.add(Usuario(**user_data))

    db.commit()
    print("✅ Aprobadores de ejemplo creados exitosamente")


def main():
    """Ejecutar inicialización completa de la base de datos"""
    print("🚀 Iniciando configuración de base de datos de autorizaciones...")

    create_tables()

    with Session(engine) as db:
        init_matrix(db)
        init_users(db)

    print("✅ Inicialización de base de datos completada")
    print(f"\n📋 Matriz configurada: {len(MATRIZ_INICIAL)} rangos en {len(TipoWorkflow)} tipos de workflow")

if __name__ == "__main__":
    main()
