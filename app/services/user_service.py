"""
Servicio de administración de usuarios.

Un usuario que es dueño o autor de registros no se borra: se desactiva.
"""

import logging

from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AuthorizationError, ConflictError, DependencyError, NotFoundError, ValidationError
from app.models.client import Client
from app.models.pipeline import PipelineHistory, PipelineItem
from app.models.sale import Sale
from app.models.task import Task
from app.models.user import PRIVILEGED_ROLES, User, UserRole
from app.schemas.user import PasswordReset, UserCreate, UserUpdate
from app.security import hash_password
from app.services.auth_service import CurrentUser
from app.services.query_builder import (
    ListParams,
    Page,
    SortSpec,
    apply_sort,
    build_query,
    count_where,
    group_counts,
    normalize_search,
    paginate,
    search_condition,
)

logger = logging.getLogger(__name__)

USER_SORT = SortSpec(
    columns={
        "createdAt": User.created_at,
        "updatedAt": User.updated_at,
        "firstname": User.firstname,
        "lastname": User.lastname,
        "email": User.email,
    },
    default="createdAt",
    tiebreaker=User.id,
)

ADMIN_ONLY_FIELDS = ("role", "sub_role", "is_active")


async def ensure_user_exists(db: AsyncSession, user_id: int, field: str = "assignedToId") -> User:
    """Valida una referencia a usuario recibida en un payload."""
    user = await db.get(User, user_id)
    if user is None:
        raise ValidationError.for_field(field, "El usuario indicado no existe", user_id)
    return user


class UserService:
    """Operaciones de negocio sobre usuarios."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------
    # Leer
    # ------------------------------------------

    async def list_users(
        self,
        params: ListParams,
        search: str | None = None,
        role: UserRole | None = None,
        is_active: bool | None = None,
    ) -> Page:
        term = normalize_search(search)
        stmt = build_query(
            User,
            filters=[
                User.role == role if role else None,
                User.is_active == is_active if is_active is not None else None,
            ],
            search=search_condition([User.firstname, User.lastname, User.email], term) if term else None,
        )
        stmt = apply_sort(stmt, params, USER_SORT)
        return await paginate(self.db, stmt, params)

    async def get_user(self, current: CurrentUser, user_id: int) -> User:
        """El propio usuario o un rol privilegiado."""
        if current.id != user_id and not current.is_privileged:
            raise AuthorizationError("Solo puedes ver tu propio perfil", user_role=current.role)
        return await self._get_or_404(user_id)

    async def stats(self) -> dict:
        total = await count_where(self.db, User)
        active = await count_where(self.db, User, User.is_active.is_(True))
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "by_role": await group_counts(self.db, User.role),
        }

    # ------------------------------------------
    # Crear / actualizar
    # ------------------------------------------

    async def create_user(self, current: CurrentUser, data: UserCreate) -> User:
        self._check_role_grant(current, data.role)
        await self._ensure_email_free(data.email)

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
        logger.info("Usuario %s creado por %s", user.email, current.email)
        return user

    async def update_user(self, current: CurrentUser, user_id: int, data: UserUpdate) -> User:
        if current.id != user_id and not current.is_privileged:
            raise AuthorizationError("Solo puedes editar tu propio perfil", user_role=current.role)
        user = await self._get_or_404(user_id)

        updates = data.model_dump(exclude_unset=True)
        if not current.is_privileged and any(field in updates for field in ADMIN_ONLY_FIELDS):
            raise AuthorizationError(
                "Solo un administrador puede cambiar rol o estado",
                required_roles=[role.value for role in PRIVILEGED_ROLES],
                user_role=current.role,
            )
        if updates.get("role") is not None:
            self._check_role_grant(current, updates["role"])
        if updates.get("email") and updates["email"] != user.email:
            await self._ensure_email_free(updates["email"])

        for field, value in updates.items():
            if value is None and field in ("email", "firstname", "lastname", "role", "is_active"):
                continue
            setattr(user, field, value)
        await self.db.flush()
        logger.info("Usuario %s actualizado (campos: %s)", user_id, list(updates.keys()))
        return user

    async def reset_password(self, user_id: int, data: PasswordReset) -> None:
        user = await self._get_or_404(user_id)
        user.password_hash = hash_password(data.new_password)
        await self.db.flush()
        logger.info("Contraseña restablecida para usuario %s", user_id)

    async def set_active(self, current: CurrentUser, user_id: int, active: bool) -> User:
        if current.id == user_id and not active:
            raise ValidationError.for_field("id", "No puedes desactivar tu propio usuario", user_id)
        user = await self._get_or_404(user_id)
        user.is_active = active
        await self.db.flush()
        logger.info("Usuario %s %s", user_id, "activado" if active else "desactivado")
        return user

    # ------------------------------------------
    # Eliminar
    # ------------------------------------------

    async def delete_user(self, current: CurrentUser, user_id: int) -> None:
        """Solo usuarios huérfanos. Si tiene registros, hay que desactivarlo."""
        if current.id == user_id:
            raise ValidationError.for_field("id", "No puedes eliminar tu propio usuario", user_id)
        user = await self._get_or_404(user_id)

        related = {
            "clients": await count_where(self.db, Client, self._owned_by(Client, user_id, "referred_by_id")),
            "pipelineItems": await count_where(self.db, PipelineItem, self._owned_by(PipelineItem, user_id)),
            "tasks": await count_where(self.db, Task, self._owned_by(Task, user_id)),
            "history": await count_where(self.db, PipelineHistory, PipelineHistory.changed_by_id == user_id),
            "sales": await count_where(self.db, Sale, Sale.user_id == user_id),
        }
        if any(related.values()):
            raise DependencyError(
                "El usuario tiene registros asociados. Desactívalo en lugar de eliminarlo.",
                related_records=related,
            )

        await self.db.delete(user)
        await self.db.flush()
        logger.info("Usuario %s eliminado por %s", user_id, current.email)

    # ------------------------------------------
    # Helpers privados
    # ------------------------------------------

    @staticmethod
    def _owned_by(model, user_id: int, *extra_columns: str) -> ColumnElement[bool]:
        columns = ("created_by_id", "assigned_to_id", *extra_columns)
        return or_(*(getattr(model, column) == user_id for column in columns))

    @staticmethod
    def _check_role_grant(current: CurrentUser, role: UserRole) -> None:
        if role == UserRole.SUPER_ADMIN and current.role != UserRole.SUPER_ADMIN.value:
            raise AuthorizationError(
                "Solo un SUPER_ADMIN puede otorgar el rol SUPER_ADMIN",
                required_roles=[UserRole.SUPER_ADMIN.value],
                user_role=current.role,
            )

    async def _ensure_email_free(self, email: str) -> None:
        result = await self.db.execute(select(func.count(User.id)).where(User.email == email))
        if result.scalar_one():
            raise ConflictError(
                "Ya existe un usuario con este email", existing={"email": email}, key="existingUser"
            )

    async def _get_or_404(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("Usuario no encontrado")
        return user
