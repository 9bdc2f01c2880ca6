"""
Schemas de usuarios y autenticación.

El hash de la contraseña nunca sale en ninguna respuesta.
"""

from datetime import datetime

from pydantic import EmailStr, Field, field_validator

from app.models.user import PRIVILEGED_ROLES, UserRole
from app.schemas.common import CamelModel, Pagination

# ============================================
# Entrada
# ============================================


class UserBase(CamelModel):
    email: EmailStr = Field(..., examples=["ana@crm.com"])
    firstname: str = Field(..., min_length=2, max_length=50, examples=["Ana"])
    lastname: str = Field(..., min_length=2, max_length=50, examples=["González"])
    phone: str | None = Field(None, max_length=50, examples=["+54911234570"])

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normaliza el email a minúsculas para evitar duplicados."""
        return v.lower().strip()

    @field_validator("firstname", "lastname")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return " ".join(v.split())


class UserCreate(UserBase):
    """Alta de usuario por un administrador: cualquier rol."""
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.EMPRENDEDOR
    sub_role: str | None = Field(None, max_length=50, examples=["COMERCIAL"])


class RegisterRequest(UserCreate):
    """Auto-registro: no se puede elegir un rol privilegiado."""

    @field_validator("role")
    @classmethod
    def no_privileged_roles(cls, v: UserRole) -> UserRole:
        if v in PRIVILEGED_ROLES:
            raise ValueError("El auto-registro solo permite los roles EMPRENDEDOR o ASISTENTE")
        return v


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower().strip()


class ProfileUpdate(CamelModel):
    """Lo que un usuario puede cambiar de su propio perfil."""
    firstname: str | None = Field(None, min_length=2, max_length=50)
    lastname: str | None = Field(None, min_length=2, max_length=50)
    phone: str | None = Field(None, max_length=50)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class PasswordReset(CamelModel):
    new_password: str = Field(..., min_length=6, max_length=128)


class UserUpdate(CamelModel):
    """Edición de usuario. role, subRole e isActive solo para admins."""
    email: EmailStr | None = None
    firstname: str | None = Field(None, min_length=2, max_length=50)
    lastname: str | None = Field(None, min_length=2, max_length=50)
    phone: str | None = Field(None, max_length=50)
    role: UserRole | None = None
    sub_role: str | None = Field(None, max_length=50)
    is_active: bool | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str | None) -> str | None:
        return v.lower().strip() if v is not None else v


# ============================================
# Salida
# ============================================


class UserResponse(CamelModel):
    id: int
    email: str
    firstname: str
    lastname: str
    role: UserRole
    sub_role: str | None
    phone: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AuthResponse(CamelModel):
    message: str
    user: UserResponse
    token: str


class ProfileResponse(CamelModel):
    user: UserResponse


class VerifyResponse(CamelModel):
    valid: bool
    user: UserResponse


class UserListResponse(CamelModel):
    users: list[UserResponse]
    pagination: Pagination


class UserStats(CamelModel):
    total: int
    active: int
    inactive: int
    by_role: dict[str, int]
