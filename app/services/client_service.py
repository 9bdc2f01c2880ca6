"""
Servicio de clientes: toda la lógica de negocio.

Los endpoints llaman a este servicio, nunca tocan la BD directamente.
La visibilidad de cada fila la decide la política de acceso del usuario.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.errors import ConflictError, DependencyError, NotFoundError
from app.models.base import utcnow
from app.models.client import Client, ClientSource, ClientStatus
from app.models.pipeline import PipelineItem
from app.models.sale import Sale
from app.models.task import Task
from app.schemas.client import ClientBulkUpdate, ClientCreate, ClientUpdate
from app.services.access_policy import ResourceKind, policy_for
from app.services.auth_service import CurrentUser
from app.services.query_builder import (
    ListParams,
    Page,
    SortSpec,
    apply_sort,
    build_query,
    count_where,
    counts_by_user,
    group_counts,
    normalize_search,
    paginate,
    search_condition,
    tags_any,
)
from app.services.user_service import ensure_user_exists

logger = logging.getLogger(__name__)

CLIENT = ResourceKind.CLIENT
CLIENT_OPTIONS = (selectinload(Client.created_by), selectinload(Client.assigned_to))
SEARCH_FIELDS = (Client.nombre, Client.apellido, Client.email, Client.telefono, Client.empresa)
REQUIRED_FIELDS = ("nombre", "apellido", "telefono", "source", "estado", "tags")
RECENT_DAYS = 7

CLIENT_SORT = SortSpec(
    columns={
        "updatedAt": Client.updated_at,
        "createdAt": Client.created_at,
        "nombre": Client.nombre,
        "apellido": Client.apellido,
        "empresa": Client.empresa,
        "etapa": Client.etapa,
        "estado": Client.estado,
        "source": Client.source,
    },
    tiebreaker=Client.id,
)


@dataclass
class ClientFilters:
    search: str | None = None
    source: ClientSource | None = None
    estado: ClientStatus | None = None
    etapa: str | None = None
    assigned_to_id: int | None = None
    tags: list[str] = field(default_factory=list)


def client_reference(client: Client) -> dict:
    """Referencia corta que se devuelve en conflictos y duplicados."""
    return {
        "id": client.id,
        "nombre": client.nombre,
        "apellido": client.apellido,
        "telefono": client.telefono,
        "email": client.email,
    }


class ClientService:
    """Operaciones de negocio sobre clientes."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------
    # Leer
    # ------------------------------------------

    async def list_clients(self, user: CurrentUser, params: ListParams, filters: ClientFilters) -> Page:
        stmt = apply_sort(self._filtered(user, filters), params, CLIENT_SORT)
        return await paginate(self.db, stmt, params, options=CLIENT_OPTIONS)

    async def search_clients(
        self,
        user: CurrentUser,
        q: str | None,
        limit: int = 10,
        estado: ClientStatus | None = None,
        source: ClientSource | None = None,
    ) -> list[Client]:
        term = normalize_search(q or "", field_name="q")
        stmt = build_query(
            Client,
            visibility=policy_for(user).visibility_filter(CLIENT),
            filters=[
                Client.estado == estado if estado else None,
                Client.source == source if source else None,
            ],
            search=search_condition(SEARCH_FIELDS, term),
        )
        stmt = stmt.options(*CLIENT_OPTIONS).order_by(Client.nombre.asc(), Client.id.asc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_client(self, user: CurrentUser, client_id: int) -> Client:
        """404 si no existe, 403 si existe pero el usuario no lo ve."""
        client = await self._load(client_id)
        if client is None:
            raise NotFoundError("Cliente no encontrado")
        policy_for(user).ensure_access(CLIENT, client)
        return client

    async def clients_for_user(self, user: CurrentUser, target_user_id: int, params: ListParams) -> Page:
        """Clientes de otro usuario. Solo roles privilegiados."""
        policy_for(user).ensure_privileged("No tienes permisos para ver los clientes de otro usuario")
        await ensure_user_exists(self.db, target_user_id, field="userId")
        stmt = build_query(
            Client,
            filters=[or_(Client.assigned_to_id == target_user_id, Client.created_by_id == target_user_id)],
        )
        stmt = apply_sort(stmt, params, CLIENT_SORT)
        return await paginate(self.db, stmt, params, options=CLIENT_OPTIONS)

    async def recent_clients(self, user: CurrentUser, limit: int = 10) -> list[Client]:
        stmt = build_query(Client, visibility=policy_for(user).visibility_filter(CLIENT))
        stmt = stmt.options(*CLIENT_OPTIONS).order_by(Client.created_at.desc(), Client.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def export_rows(self, user: CurrentUser, filters: ClientFilters) -> list[Client]:
        """Todos los clientes visibles con los filtros del listado, sin paginar."""
        stmt = self._filtered(user, filters)
        stmt = stmt.options(*CLIENT_OPTIONS).order_by(Client.created_at.desc(), Client.id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------
    # Estadísticas
    # ------------------------------------------

    async def stats(self, user: CurrentUser, period_days: int = 30) -> dict:
        policy = policy_for(user)
        visible = policy.visibility_filter(CLIENT)
        now = utcnow()

        total = await count_where(self.db, Client, visible)
        active = await count_where(self.db, Client, visible, Client.estado == ClientStatus.ACTIVO)
        stats = {
            "total": total,
            "active": active,
            "inactive": total - active,
            "recent": await count_where(
                self.db, Client, visible, Client.created_at >= now - timedelta(days=RECENT_DAYS)
            ),
            "period": period_days,
            "new_in_period": await count_where(
                self.db, Client, visible, Client.created_at >= now - timedelta(days=period_days)
            ),
            "by_source": await group_counts(self.db, Client.source, visible),
            "by_etapa": await group_counts(self.db, Client.etapa, visible),
            "by_estado": await group_counts(self.db, Client.estado, visible),
            "by_user": None,
        }
        if policy.privileged:
            stats["by_user"] = await counts_by_user(self.db, Client.assigned_to_id, visible)
        return stats

    async def my_summary(self, user: CurrentUser) -> dict:
        policy = policy_for(user)
        visible = policy.visibility_filter(CLIENT)
        total = await count_where(self.db, Client, visible)
        active = await count_where(self.db, Client, visible, Client.estado == ClientStatus.ACTIVO)
        recent_since = utcnow() - timedelta(days=RECENT_DAYS)
        return {
            "summary": {
                "total": total,
                "active": active,
                "inactive": total - active,
                "recent": await count_where(self.db, Client, visible, Client.created_at >= recent_since),
            },
            "distribution": {
                "by_source": await group_counts(self.db, Client.source, visible),
                "by_etapa": await group_counts(self.db, Client.etapa, visible),
            },
            "user_info": {
                "name": user.full_name,
                "role": user.role,
                "can_view_all": policy.privileged,
            },
        }

    # ------------------------------------------
    # Crear
    # ------------------------------------------

    async def create_client(self, user: CurrentUser, data: ClientCreate) -> Client:
        """
        Crea un cliente.

        1. Rechaza si el teléfono o el email ya existen (en cualquier dueño)
        2. Fuerza createdById = usuario actual
        3. assignedToId = usuario actual si no viene
        """
        existing = await self.find_collision(data.telefono, data.email)
        if existing:
            raise ConflictError(
                "Ya existe un cliente con este teléfono o email",
                existing={"id": existing.id, "nombre": existing.nombre, "apellido": existing.apellido},
            )
        if data.assigned_to_id is not None:
            await ensure_user_exists(self.db, data.assigned_to_id)
        if data.referred_by_id is not None:
            await ensure_user_exists(self.db, data.referred_by_id, field="referredById")

        client = Client(
            **data.model_dump(exclude={"assigned_to_id"}),
            created_by_id=user.id,
            assigned_to_id=data.assigned_to_id or user.id,
        )
        self.db.add(client)
        await self.db.flush()

        logger.info("Cliente creado: %s (%s) por usuario %s", client.full_name, client.telefono, user.id)
        return await self._load(client.id)

    async def duplicate_client(self, user: CurrentUser, client_id: int) -> Client:
        """Copia con "(Copia)" y teléfono/email únicos, asignada a quien duplica."""
        source = await self.get_client(user, client_id)
        stamp = int(time.time() * 1000)

        copy = Client(
            nombre=f"{source.nombre} (Copia)",
            apellido=source.apellido,
            email=f"copia_{stamp}_{source.email}" if source.email else None,
            telefono=f"{source.telefono}_copia_{stamp}",
            empresa=source.empresa,
            cargo=source.cargo,
            direccion=source.direccion,
            source=source.source,
            estado=source.estado,
            etapa=source.etapa,
            tags=list(source.tags or []),
            notas=source.notas,
            custom_fields=dict(source.custom_fields) if source.custom_fields else None,
            created_by_id=user.id,
            assigned_to_id=user.id,
        )
        self.db.add(copy)
        await self.db.flush()
        logger.info("Cliente %s duplicado como %s", client_id, copy.id)
        return await self._load(copy.id)

    # ------------------------------------------
    # Actualizar
    # ------------------------------------------

    async def update_client(self, user: CurrentUser, client_id: int, data: ClientUpdate) -> Client:
        client = await self.get_client(user, client_id)
        updates = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if not (value is None and key in REQUIRED_FIELDS)
        }

        new_phone = updates.get("telefono")
        new_email = updates.get("email")
        if (new_phone and new_phone != client.telefono) or (new_email and new_email != client.email):
            existing = await self.find_collision(new_phone, new_email, exclude_id=client.id)
            if existing:
                raise ConflictError(
                    "Ya existe otro cliente con este teléfono o email",
                    existing={"id": existing.id, "nombre": existing.nombre, "apellido": existing.apellido},
                )
        if updates.get("assigned_to_id") is not None:
            await ensure_user_exists(self.db, updates["assigned_to_id"])
        if updates.get("referred_by_id") is not None:
            await ensure_user_exists(self.db, updates["referred_by_id"], field="referredById")

        for key, value in updates.items():
            setattr(client, key, value)
        await self.db.flush()

        logger.info("Cliente actualizado: %s (campos: %s)", client_id, list(updates.keys()))
        return await self._load(client.id)

    async def bulk_update(self, user: CurrentUser, data: ClientBulkUpdate) -> int:
        """Solo privilegiados y solo si todos los ids pasan la política."""
        policy = policy_for(user)
        policy.ensure_privileged()
        await policy.ensure_batch_access(self.db, CLIENT, data.client_ids)

        updates = {k: v for k, v in data.updates.model_dump(exclude_unset=True).items() if v is not None}
        if updates.get("assigned_to_id") is not None:
            await ensure_user_exists(self.db, updates["assigned_to_id"])
        if not updates:
            return 0

        result = await self.db.execute(select(Client).where(Client.id.in_(data.client_ids)))
        clients = list(result.scalars().all())
        for client in clients:
            for key, value in updates.items():
                setattr(client, key, value)
        await self.db.flush()

        logger.info("Actualización masiva de %s clientes por %s", len(clients), user.id)
        return len(clients)

    # ------------------------------------------
    # Eliminar
    # ------------------------------------------

    async def delete_client(self, user: CurrentUser, client_id: int) -> None:
        """Borrado real, bloqueado mientras haya ventas, tareas o deals que lo usen."""
        client = await self.get_client(user, client_id)
        related = {
            "sales": await count_where(self.db, Sale, Sale.client_id == client_id),
            "tasks": await count_where(self.db, Task, Task.client_id == client_id),
            "pipelineItems": await count_where(self.db, PipelineItem, PipelineItem.client_id == client_id),
        }
        if any(related.values()):
            raise DependencyError(
                "No se puede eliminar el cliente porque tiene registros relacionados",
                related_records=related,
            )

        await self.db.delete(client)
        await self.db.flush()
        logger.info("Cliente eliminado: %s por usuario %s", client_id, user.id)

    # ------------------------------------------
    # Duplicados
    # ------------------------------------------

    async def find_collision(
        self,
        telefono: str | None,
        email: str | None,
        *,
        scope=None,
        exclude_id: int | None = None,
    ) -> Client | None:
        """Primer cliente con el mismo teléfono o email, opcionalmente dentro de un scope."""
        keys = []
        if telefono:
            keys.append(Client.telefono == telefono)
        if email:
            keys.append(Client.email == email.lower())
        if not keys:
            return None

        stmt = select(Client).where(or_(*keys))
        if scope is not None:
            stmt = stmt.where(scope)
        if exclude_id is not None:
            stmt = stmt.where(Client.id != exclude_id)
        result = await self.db.execute(stmt.order_by(Client.id).limit(1))
        return result.scalar_one_or_none()

    async def check_duplicates(self, user: CurrentUser, contacts: list[dict]) -> dict:
        """
        Previsualiza qué contactos chocarían al importar.

        Mismo alcance que la importación: un usuario no privilegiado solo
        choca con sus propios clientes.
        """
        scope = policy_for(user).visibility_filter(CLIENT)
        duplicates = []
        for contact in contacts:
            telefono = str(contact.get("telefono") or "").strip() or None
            email = str(contact.get("email") or "").strip() or None
            if not telefono and not email:
                continue
            existing = await self.find_collision(telefono, email, scope=scope)
            if existing:
                duplicates.append(
                    {
                        "data": {
                            "nombre": contact.get("nombre"),
                            "apellido": contact.get("apellido"),
                            "telefono": telefono,
                            "email": email,
                        },
                        "existing": client_reference(existing),
                    }
                )
        return {
            "total_checked": len(contacts),
            "duplicates_found": len(duplicates),
            "duplicates": duplicates,
            "can_proceed": len(duplicates) < len(contacts),
        }

    # ------------------------------------------
    # Helpers privados
    # ------------------------------------------

    def _filtered(self, user: CurrentUser, filters: ClientFilters) -> Select:
        """Visibilidad + filtros + búsqueda, compartido por listado y exportación."""
        policy = policy_for(user)
        term = normalize_search(filters.search)

        conditions = [
            Client.source == filters.source if filters.source else None,
            Client.estado == filters.estado if filters.estado else None,
            Client.etapa == filters.etapa if filters.etapa else None,
            tags_any(Client.tags, filters.tags),
        ]
        # Filtrar por otro usuario solo tiene sentido para quien ve todo
        if filters.assigned_to_id is not None and policy.privileged:
            conditions.append(Client.assigned_to_id == filters.assigned_to_id)

        return build_query(
            Client,
            visibility=policy.visibility_filter(CLIENT),
            filters=conditions,
            search=search_condition(SEARCH_FIELDS, term) if term else None,
        )

    async def _load(self, client_id: int) -> Client | None:
        """Relee el cliente con sus relaciones (refresca lo que ya esté en sesión)."""
        query = (
            select(Client)
            .options(*CLIENT_OPTIONS)
            .where(Client.id == client_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
