"""
Motor de políticas de acceso.

Una clase de política por rol. Todas exponen el mismo par:

- visibility_filter(resource): predicado SQL con las filas visibles
  (None = sin restricción)
- can_access(resource, record): la misma regla evaluada sobre un registro

Las dos se derivan de OWNER_COLUMNS, de modo que un listado y un detalle
no pueden divergir. Los controladores nunca preguntan por el rol.
"""

import enum
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import ColumnElement, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AuthorizationError, NotFoundError
from app.models.client import Client
from app.models.pipeline import PipelineItem
from app.models.task import Task
from app.models.user import PRIVILEGED_ROLES, UserRole
from app.services.auth_service import CurrentUser

logger = logging.getLogger(__name__)

BULK_FORBIDDEN_MESSAGE = "Solo administradores y distribuidores pueden realizar operaciones masivas"


class ResourceKind(str, enum.Enum):
    CLIENT = "client"
    PIPELINE_ITEM = "pipeline_item"
    TASK = "task"


RESOURCE_MODELS: dict[ResourceKind, Any] = {
    ResourceKind.CLIENT: Client,
    ResourceKind.PIPELINE_ITEM: PipelineItem,
    ResourceKind.TASK: Task,
}

# Columnas que hacen a un usuario "dueño" de una fila
OWNER_COLUMNS: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.CLIENT: ("created_by_id", "assigned_to_id", "referred_by_id"),
    ResourceKind.PIPELINE_ITEM: ("assigned_to_id", "created_by_id"),
    ResourceKind.TASK: ("assigned_to_id", "created_by_id"),
}

NOT_FOUND_MESSAGES: dict[ResourceKind, str] = {
    ResourceKind.CLIENT: "Cliente no encontrado",
    ResourceKind.PIPELINE_ITEM: "Item del pipeline no encontrado",
    ResourceKind.TASK: "Tarea no encontrada",
}

PRIVILEGED_ROLE_NAMES = [role.value for role in PRIVILEGED_ROLES]


class AccessPolicy:
    """Política base. Las subclases deciden la visibilidad."""

    privileged: bool = False

    def __init__(self, user: CurrentUser) -> None:
        self.user = user

    def visibility_filter(self, resource: ResourceKind) -> ColumnElement[bool] | None:
        raise NotImplementedError

    def can_access(self, resource: ResourceKind, record: Any) -> bool:
        raise NotImplementedError

    # ------------------------------------------
    # Comprobaciones que lanzan excepción
    # ------------------------------------------

    def ensure_access(self, resource: ResourceKind, record: Any) -> None:
        if not self.can_access(resource, record):
            logger.info(
                "Acceso denegado: usuario %s (%s) sobre %s %s",
                self.user.id, self.user.role, resource.value, getattr(record, "id", None),
            )
            raise AuthorizationError(
                "No tienes permisos para acceder a este recurso",
                user_role=self.user.role,
            )

    def ensure_privileged(self, message: str = BULK_FORBIDDEN_MESSAGE) -> None:
        if not self.privileged:
            raise AuthorizationError(
                message,
                required_roles=PRIVILEGED_ROLE_NAMES,
                user_role=self.user.role,
            )

    async def ensure_batch_access(
        self, db: AsyncSession, resource: ResourceKind, ids: Iterable[int]
    ) -> None:
        """
        Todos los ids deben existir y ser accesibles, o no se toca ninguno.

        Compara el conjunto pedido con el conjunto accesible (diferencia de
        conjuntos), nunca aplica parcialmente.
        """
        model = RESOURCE_MODELS[resource]
        requested = set(ids)

        result = await db.execute(select(model.id).where(model.id.in_(requested)))
        missing = requested - set(result.scalars().all())
        if missing:
            raise NotFoundError(
                f"{NOT_FOUND_MESSAGES[resource]}: {', '.join(str(i) for i in sorted(missing))}"
            )

        predicate = self.visibility_filter(resource)
        if predicate is None:
            return
        result = await db.execute(select(model.id).where(model.id.in_(requested), predicate))
        if requested - set(result.scalars().all()):
            raise AuthorizationError(
                "No tienes permisos sobre todos los registros seleccionados",
                user_role=self.user.role,
            )


class UnrestrictedPolicy(AccessPolicy):
    privileged = True

    def visibility_filter(self, resource: ResourceKind) -> ColumnElement[bool] | None:
        return None

    def can_access(self, resource: ResourceKind, record: Any) -> bool:
        return True


class OwnershipPolicy(AccessPolicy):
    """Solo las filas donde el usuario es creador, asignado (o referidor)."""

    def visibility_filter(self, resource: ResourceKind) -> ColumnElement[bool] | None:
        model = RESOURCE_MODELS[resource]
        return or_(*(getattr(model, column) == self.user.id for column in OWNER_COLUMNS[resource]))

    def can_access(self, resource: ResourceKind, record: Any) -> bool:
        return any(getattr(record, column) == self.user.id for column in OWNER_COLUMNS[resource])


class SuperAdminPolicy(UnrestrictedPolicy):
    pass


class DistribuidorPolicy(UnrestrictedPolicy):
    """
    Sin restricción por ahora.

    organization_scope() es el punto de extensión para limitar al
    distribuidor a su organización cuando exista ese modelo.
    """

    def organization_scope(self, resource: ResourceKind) -> ColumnElement[bool] | None:
        return None

    def visibility_filter(self, resource: ResourceKind) -> ColumnElement[bool] | None:
        return self.organization_scope(resource)


class EmprendedorPolicy(OwnershipPolicy):
    pass


class AsistentePolicy(OwnershipPolicy):
    pass


_POLICIES: dict[str, type[AccessPolicy]] = {
    UserRole.SUPER_ADMIN.value: SuperAdminPolicy,
    UserRole.DISTRIBUIDOR.value: DistribuidorPolicy,
    UserRole.EMPRENDEDOR.value: EmprendedorPolicy,
    UserRole.ASISTENTE.value: AsistentePolicy,
}


def policy_for(user: CurrentUser) -> AccessPolicy:
    """Política del rol del usuario. Un rol desconocido cae en la más restrictiva."""
    policy_class = _POLICIES.get(user.role)
    if policy_class is None:
        logger.warning("Rol desconocido '%s' para usuario %s: se aplica política restrictiva", user.role, user.id)
        policy_class = EmprendedorPolicy
    return policy_class(user)
