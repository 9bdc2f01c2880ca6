"""
Modelo base de SQLAlchemy con campos comunes.

Todos los modelos del proyecto heredan de BaseModel,
que incluye id, created_at y updated_at.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB en PostgreSQL, JSON genérico en el resto (SQLite en tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Clase base de SQLAlchemy. Todas las tablas heredan de aquí."""
    pass


class BaseModel(Base):
    """
    Modelo abstracto con campos comunes a todas las tablas.

    - id: clave primaria autoincremental
    - created_at: fecha de creación
    - updated_at: fecha de última actualización

    Las fechas se calculan en Python además de en el servidor, así el
    objeto no queda expirado tras un flush y se puede serializar
    sin volver a consultar la BD.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
