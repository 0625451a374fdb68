# autorizaciones/models/user.py

from sqlalchemy import Integer, String, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional
from .base import Base, TimestampMixin, enum_column
from .enums import NivelAprobacion


class Usuario(Base, TimestampMixin):
    """Aprobador del ERP. La autenticación vive fuera de este servicio."""
    __tablename__ = "usuarios"

    id_usuario: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    nombre: Mapped[str] = mapped_column(String(150), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    titulo: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    nivel_aprobacion: Mapped[Optional[NivelAprobacion]] = mapped_column(enum_column(NivelAprobacion), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def puede_autorizar_nivel(self, nivel: NivelAprobacion) -> bool:
        return self.nivel_aprobacion is not None and self.nivel_aprobacion.rank >= nivel.rank
