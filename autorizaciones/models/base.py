# autorizaciones/models/base.py

from datetime import datetime
from enum import Enum as PyEnum
from typing import Type
from sqlalchemy import DateTime, Enum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..utils.fechas import utc_now


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)


def enum_column(enum_cls: Type[PyEnum]) -> Enum:
    """Columna enum almacenada como texto con el valor del miembro"""
    return Enum(
        enum_cls,
        native_enum=False,
        length=30,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )
