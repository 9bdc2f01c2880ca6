"""
Modelo de clientes (contactos / leads del CRM).

Cada cliente guarda tres referencias a usuarios: quién lo creó,
a quién está asignado y, opcionalmente, quién lo refirió.
Son referencias, no propiedad: el usuario no "posee" la fila.
"""

import enum

from sqlalchemy import Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, JSONType
from app.models.user import User


class ClientSource(str, enum.Enum):
    """De dónde vino el contacto."""
    LANDING = "LANDING"
    REFERIDO = "REFERIDO"
    DERIVADO = "DERIVADO"
    STAND = "STAND"
    CONVENIO = "CONVENIO"
    URNA = "URNA"
    EMBAJADOR = "EMBAJADOR"
    ANUNCIO = "ANUNCIO"
    GOOGLE_CONTACTS = "GOOGLE_CONTACTS"
    OTRO = "OTRO"


class ClientStatus(str, enum.Enum):
    ACTIVO = "ACTIVO"
    INACTIVO = "INACTIVO"


# Etapa que recibe un cliente cuando uno de sus deals se gana
CLIENT_WON_STAGE = "Cliente"


class Client(BaseModel):
    """Contacto comercial."""

    __tablename__ = "clients"

    # --- Datos de contacto ---
    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    apellido: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    telefono: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    empresa: Mapped[str | None] = mapped_column(String(150), nullable=True)
    cargo: Mapped[str | None] = mapped_column(String(100), nullable=True)
    direccion: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- Clasificación ---
    source: Mapped[ClientSource] = mapped_column(
        Enum(ClientSource, name="client_source"), default=ClientSource.OTRO, nullable=False
    )
    estado: Mapped[ClientStatus] = mapped_column(
        Enum(ClientStatus, name="client_status"), default=ClientStatus.ACTIVO, nullable=False
    )
    etapa: Mapped[str | None] = mapped_column(String(30), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    # --- Notas ---
    notas: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_fields: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # --- Referencias a usuarios ---
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    referred_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])
    assigned_to: Mapped[User | None] = relationship(foreign_keys=[assigned_to_id])
    referred_by: Mapped[User | None] = relationship(foreign_keys=[referred_by_id])

    __table_args__ = (
        Index("ix_clients_estado_source", "estado", "source"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.nombre} {self.apellido}"

    def __repr__(self) -> str:
        return f"<Client {self.full_name} ({self.telefono})>"
