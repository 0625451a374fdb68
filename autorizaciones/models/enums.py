from enum import Enum


class TipoWorkflow(str, Enum):
    PAGO = "pago"
    CONTRATACION = "contratacion"
    ORDEN_CAMBIO = "orden_cambio"
    LIBERACION_CREDITO = "liberacion_credito"
    CAPITAL_CALL = "capital_call"


class NivelAprobacion(str, Enum):
    SUPERVISOR = "supervisor"
    GERENTE = "gerente"
    DIRECTOR = "director"
    EJECUTIVO = "ejecutivo"

    @property
    def rank(self) -> int:
        return _NIVEL_RANK[self]

    @classmethod
    def hasta(cls, nivel: "NivelAprobacion") -> list:
        """Niveles de la jerarquía desde supervisor hasta `nivel` inclusive"""
        return [n for n in cls if n.rank <= nivel.rank]


_NIVEL_RANK = {
    NivelAprobacion.SUPERVISOR: 1,
    NivelAprobacion.GERENTE: 2,
    NivelAprobacion.DIRECTOR: 3,
    NivelAprobacion.EJECUTIVO: 4,
}


class EstadoWorkflow(str, Enum):
    PENDIENTE = "pendiente"
    APROBADO = "aprobado"
    RECHAZADO = "rechazado"
    ESCALADO = "escalado"

    @property
    def es_terminal(self) -> bool:
        return self in (EstadoWorkflow.APROBADO, EstadoWorkflow.RECHAZADO)


ESTADOS_ABIERTOS = (EstadoWorkflow.PENDIENTE, EstadoWorkflow.ESCALADO)


class EstadoPaso(str, Enum):
    PENDIENTE = "pendiente"
    FIRMADO = "firmado"


class TipoPaso(str, Enum):
    ELABORA = "elabora"
    AUTORIZA = "autoriza"


class AccionAprobacion(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVERSE = "reverse"


class TipoEscalamiento(str, Enum):
    REMINDER = "reminder"
    ESCALATION = "escalation"
    FINAL_ESCALATION = "final_escalation"

    @property
    def multiplicador(self) -> int:
        """Múltiplo de las horas de escalamiento de la regla que dispara el evento"""
        return _ESCALAMIENTO_MULTIPLICADOR[self]


_ESCALAMIENTO_MULTIPLICADOR = {
    TipoEscalamiento.REMINDER: 1,
    TipoEscalamiento.ESCALATION: 2,
    TipoEscalamiento.FINAL_ESCALATION: 3,
}


class PrioridadNotificacion(str, Enum):
    MEDIA = "medium"
    ALTA = "high"
    CRITICA = "critical"
