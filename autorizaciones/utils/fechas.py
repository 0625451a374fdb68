from datetime import datetime, timezone


def utc_now() -> datetime:
    """Fecha/hora actual en UTC, sin tzinfo (formato de almacenamiento)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def horas_entre(inicio: datetime, fin: datetime) -> float:
    return (fin - inicio).total_seconds() / 3600


def a_utc_naive(valor: datetime) -> datetime:
    """Normaliza un datetime (con o sin zona) al formato de almacenamiento"""
    if valor.tzinfo is None:
        return valor
    return valor.astimezone(timezone.utc).replace(tzinfo=None)
