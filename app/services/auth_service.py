"""
Servicio de identidad y sesión.

authenticate() se ejecuta en cada request: vuelve a leer el usuario de la
BD, así una desactivación tiene efecto en la siguiente petición.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AuthenticationError, ConflictError, ValidationError
from app.models.user import PRIVILEGED_ROLES, User
from app.schemas.user import ChangePasswordRequest, ProfileUpdate, RegisterRequest
from app.security import create_access_token, decode_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Proyección mínima del usuario autenticado (sin hash de contraseña)."""

    id: int
    email: str
    firstname: str
    lastname: str
    role: str
    sub_role: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}"

    @property
    def is_privileged(self) -> bool:
        return self.role in {role.value for role in PRIVILEGED_ROLES}

    @classmethod
    def from_user(cls, user: User) -> "CurrentUser":
        return cls(
            id=user.id,
            email=user.email,
            firstname=user.firstname,
            lastname=user.lastname,
            role=user.role.value,
            sub_role=user.sub_role,
        )


class AuthService:
    """Login, registro y gestión del propio perfil."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------
    # Autenticación
    # ------------------------------------------

    async def authenticate(self, token: str) -> CurrentUser:
        """Token -> usuario activo. Lanza AuthenticationError en cualquier fallo."""
        user_id = decode_access_token(token)
        user = await self.db.get(User, user_id)
        if user is None:
            raise AuthenticationError("Usuario no encontrado")
        if not user.is_active:
            raise AuthenticationError("Usuario desactivado")
        return CurrentUser.from_user(user)

    async def login(self, email: str, password: str) -> tuple[User, str]:
        user = await self._get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Login fallido para %s", email)
            raise AuthenticationError("Credenciales inválidas")
        if not user.is_active:
            raise AuthenticationError("Usuario inactivo. Contacta al administrador.")

        logger.info("Login correcto: %s (%s)", user.email, user.role.value)
        return user, create_access_token(user.id)

    async def register(self, data: RegisterRequest) -> tuple[User, str]:
        if await self._get_by_email(data.email):
            raise ConflictError(
                "Ya existe un usuario con este email",
                existing={"email": data.email},
                key="existingUser",
            )

        user = User(
            email=data.email,
            password_hash=hash_password(data.password),
            firstname=data.firstname,
            lastname=data.lastname,
            role=data.role,
            sub_role=data.sub_role,
            phone=data.phone,
        )
        self.db.add(user)
        await self.db.flush()

        logger.info("Usuario registrado: %s (%s)", user.email, user.role.value)
        return user, create_access_token(user.id)

    # ------------------------------------------
    # Perfil propio
    # ------------------------------------------

    async def get_profile(self, current: CurrentUser) -> User:
        user = await self.db.get(User, current.id)
        if user is None:
            raise AuthenticationError("Usuario no encontrado")
        return user

    async def update_profile(self, current: CurrentUser, data: ProfileUpdate) -> User:
        user = await self.get_profile(current)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field in ("firstname", "lastname") and value is None:
                continue
            setattr(user, field, value)
        await self.db.flush()
        return user

    async def change_password(self, current: CurrentUser, data: ChangePasswordRequest) -> None:
        user = await self.get_profile(current)
        if not verify_password(data.current_password, user.password_hash):
            raise ValidationError.for_field("currentPassword", "Contraseña actual incorrecta")
        user.password_hash = hash_password(data.new_password)
        await self.db.flush()
        logger.info("Contraseña cambiada: %s", user.email)

    # ------------------------------------------
    # Helpers privados
    # ------------------------------------------

    async def _get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()
