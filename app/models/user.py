"""Usuarios del CRM y sus roles."""

import enum

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class UserRole(str, enum.Enum):
    """Roles del sistema. Los dos primeros son privilegiados."""
    SUPER_ADMIN = "SUPER_ADMIN"
    DISTRIBUIDOR = "DISTRIBUIDOR"
    EMPRENDEDOR = "EMPRENDEDOR"
    ASISTENTE = "ASISTENTE"


PRIVILEGED_ROLES = (UserRole.SUPER_ADMIN, UserRole.DISTRIBUIDOR)


class User(BaseModel):
    """
    Usuario del CRM.

    sub_role solo tiene sentido para ASISTENTE (p. ej. COMERCIAL).
    Nunca se borra si es dueño de registros: se desactiva.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    firstname: Mapped[str] = mapped_column(String(100), nullable=False)
    lastname: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"), default=UserRole.EMPRENDEDOR, nullable=False
    )
    sub_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}"

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"
