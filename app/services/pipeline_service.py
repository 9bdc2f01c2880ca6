"""
Servicio del pipeline de ventas.

Cada mutación de un deal pasa por aquí y deja su entrada en el historial:
CREATED, UPDATED (solo si algo cambia), STATUS_CHANGED (siempre),
BULK_UPDATED y DELETED.

Cuando un deal pasa a un estado ganado, la etapa del cliente se promueve
a "Cliente". Esa promoción es un efecto derivado: si falla, el cambio de
estado sigue siendo válido y solo queda un warning.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import String, cast, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.errors import NotFoundError, ValidationError
from app.models.client import CLIENT_WON_STAGE, Client
from app.models.pipeline import (
    WON_STATUSES,
    HistoryAction,
    PipelineHistory,
    PipelineItem,
    PipelineStatus,
    Priority,
)
from app.schemas.pipeline import PipelineBulkUpdate, PipelineItemCreate, PipelineItemUpdate
from app.services.access_policy import ResourceKind, policy_for
from app.services.auth_service import CurrentUser
from app.services.history import HistoryLedger, diff_changes, snapshot
from app.services.query_builder import (
    ListParams,
    Page,
    SortSpec,
    apply_sort,
    build_query,
    group_counts,
    group_counts_and_sums,
    normalize_search,
    paginate,
    search_condition,
)
from app.services.user_service import ensure_user_exists

logger = logging.getLogger(__name__)

ITEM = ResourceKind.PIPELINE_ITEM
ITEM_OPTIONS = (selectinload(PipelineItem.client), selectinload(PipelineItem.assigned_to))

# Campos que se guardan en los snapshots de creación y borrado
CREATED_FIELDS = ("status", "priority", "products", "value", "assigned_to_id")
DELETED_FIELDS = ("status", "priority", "products", "value")
NOTES_MAX_LENGTH = 1000
COPY_SUFFIX = " (Copia)"

ITEM_SORT = SortSpec(
    columns={
        "updatedAt": PipelineItem.updated_at,
        "createdAt": PipelineItem.created_at,
        "lastContact": PipelineItem.last_contact,
        "status": PipelineItem.status,
        "priority": PipelineItem.priority,
        "value": PipelineItem.value,
        "demoDate": PipelineItem.demo_date,
    },
    tiebreaker=PipelineItem.id,
)

# Transiciones permitidas: hoy cualquier estado lleva a cualquier otro.
# validate_transition() es el único sitio donde endurecer esta regla.
ALLOWED_TRANSITIONS: dict[PipelineStatus, frozenset[PipelineStatus]] = {
    status: frozenset(PipelineStatus) for status in PipelineStatus
}


def validate_transition(current: PipelineStatus, new: PipelineStatus) -> None:
    if new not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise ValidationError.for_field(
            "status", f"Transición no permitida: {current.value} -> {new.value}", new.value
        )


def _item_search(term: str):
    return search_condition(
        (
            Client.nombre,
            Client.apellido,
            Client.email,
            Client.telefono,
            Client.empresa,
            PipelineItem.notes,
            cast(PipelineItem.products, String),
        ),
        term,
    )


async def mark_client_won(db: AsyncSession, client_id: int) -> None:
    """Etapa "Cliente" para el cliente del deal."""
    client = await db.get(Client, client_id)
    if client is not None:
        client.etapa = CLIENT_WON_STAGE


async def promote_client_on_win(db: AsyncSession, item: PipelineItem) -> None:
    """
    Promoción del cliente cuando el deal se gana.

    Va en su propio SAVEPOINT y nunca hace fallar el request: el cambio de
    estado ya es válido aunque la promoción no se pueda aplicar.
    """
    if item.status not in WON_STATUSES:
        return
    try:
        async with db.begin_nested():
            await mark_client_won(db, item.client_id)
    except Exception:
        logger.warning(
            "No se pudo promover el cliente %s tras ganar el deal %s",
            item.client_id, item.id,
            exc_info=True,
        )


@dataclass
class PipelineFilters:
    search: str | None = None
    status: PipelineStatus | None = None
    priority: Priority | None = None
    client_id: int | None = None
    assigned_to_id: int | None = None


class PipelineService:
    """Operaciones de negocio sobre deals."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.history = HistoryLedger(db)

    # ------------------------------------------
    # Leer
    # ------------------------------------------

    async def list_items(self, user: CurrentUser, params: ListParams, filters: PipelineFilters) -> Page:
        policy = policy_for(user)
        term = normalize_search(filters.search)
        conditions = [
                PipelineItem.status == filters.status if filters.status else None,
                PipelineItem.priority == filters.priority if filters.priority else None,
                PipelineItem.client_id == filters.client_id if filters.client_id else None,
        ]
        # Filtrar por otro usuario solo tiene efecto para roles que ven todo
        if filters.assigned_to_id is not None and policy.privileged:
            conditions.append(PipelineItem.assigned_to_id == filters.assigned_to_id)

        stmt = build_query(
            PipelineItem,
            visibility=policy.visibility_filter(ITEM),
            filters=conditions,
            search=_item_search(term) if term else None,
            joins=[PipelineItem.client],
        )
        stmt = apply_sort(stmt, params, ITEM_SORT)
        return await paginate(self.db, stmt, params, options=ITEM_OPTIONS)

    async def search_items(self, user: CurrentUser, q: str | None, limit: int = 20) -> list[PipelineItem]:
        term = normalize_search(q or "", field_name="q")
        stmt = build_query(
            PipelineItem,
            visibility=policy_for(user).visibility_filter(ITEM),
            search=_item_search(term),
            joins=[PipelineItem.client],
        )
        stmt = stmt.options(*ITEM_OPTIONS).order_by(PipelineItem.updated_at.desc(), PipelineItem.id.desc())
        result = await self.db.execute(stmt.limit(limit))
        return list(result.scalars().all())

    async def kanban(self, user: CurrentUser) -> dict[str, list[PipelineItem]]:
        """Items agrupados por estado. Todos los estados aparecen, aunque vacíos."""
        stmt = build_query(PipelineItem, visibility=policy_for(user).visibility_filter(ITEM))
        stmt = stmt.options(*ITEM_OPTIONS).order_by(PipelineItem.updated_at.desc(), PipelineItem.id.desc())
        result = await self.db.execute(stmt)

        columns: dict[str, list[PipelineItem]] = {status.value: [] for status in PipelineStatus}
        for item in result.scalars().all():
            columns[item.status.value].append(item)
        return columns

    async def get_item(self, user: CurrentUser, item_id: int) -> PipelineItem:
        item = await self._load(item_id)
        if item is None:
            raise NotFoundError("Item del pipeline no encontrado")
        policy_for(user).ensure_access(ITEM, item)
        return item

    async def get_history(self, user: CurrentUser, item_id: int) -> list[PipelineHistory]:
        await self.get_item(user, item_id)
        return await self.history.list_for_item(item_id)

    async def stats(self, user: CurrentUser) -> dict:
        visible = policy_for(user).visibility_filter(ITEM)

        by_status = await group_counts_and_sums(self.db, PipelineItem.status, PipelineItem.value, visible)
        total = sum(count for count, _ in by_status.values())
        converted = sum(by_status.get(status.value, (0, 0))[0] for status in WON_STATUSES)
        total_value = sum((Decimal(str(value)) for _, value in by_status.values()), Decimal("0"))

        stmt = select(func.count(distinct(PipelineItem.client_id)))
        if visible is not None:
            stmt = stmt.where(visible)
        unique_clients = (await self.db.execute(stmt)).scalar_one()

        return {
            "total": total,
            "converted": converted,
            "conversion_rate": round(converted / total * 100, 2) if total else 0.0,
            "total_value": total_value,
            "unique_clients": unique_clients,
            "by_status": {
                status.value: {
                    "count": by_status.get(status.value, (0, 0))[0],
                    "value": Decimal(str(by_status.get(status.value, (0, 0))[1])),
                }
                for status in PipelineStatus
            },
            "by_priority": await group_counts(self.db, PipelineItem.priority, visible),
        }

    # ------------------------------------------
    # Crear
    # ------------------------------------------

    async def create_item(self, user: CurrentUser, data: PipelineItemCreate) -> PipelineItem:
        """
        Crea un deal sobre un cliente existente y accesible.

        404 si el cliente no existe, 403 si el usuario no lo ve.
        """
        policy = policy_for(user)
        client = await self.db.get(Client, data.client_id)
        if client is None:
            raise NotFoundError("Cliente no encontrado")
        policy.ensure_access(ResourceKind.CLIENT, client)
        if data.assigned_to_id is not None:
            await ensure_user_exists(self.db, data.assigned_to_id)

        values = data.model_dump(exclude={"assigned_to_id", "last_contact"})
        item = PipelineItem(
            **values,
            assigned_to_id=data.assigned_to_id or user.id,
            created_by_id=user.id,
        )
        if data.last_contact is not None:
            item.last_contact = data.last_contact
        self.db.add(item)
        await self.db.flush()

        await self.history.record(
            item.id,
            HistoryAction.CREATED,
            old_data=None,
            new_data=snapshot(item, CREATED_FIELDS),
            changed_by_id=user.id,
        )
        await promote_client_on_win(self.db, item)
        logger.info("Deal %s creado para cliente %s por usuario %s", item.id, client.id, user.id)
        return await self._load(item.id)

    async def duplicate_item(self, user: CurrentUser, item_id: int) -> PipelineItem:
        """Copia en NUEVO (nunca hereda un estado en curso)."""
        source = await self.get_item(user, item_id)
        notes = f"{source.notes or ''}{COPY_SUFFIX}".strip()[:NOTES_MAX_LENGTH]

        copy = PipelineItem(
            client_id=source.client_id,
            products=list(source.products or []),
            value=source.value,
            priority=source.priority,
            status=PipelineStatus.NUEVO,
            payment_plan=source.payment_plan,
            notes=notes,
            tags=list(source.tags or []),
            assigned_to_id=user.id,
            created_by_id=user.id,
        )
        self.db.add(copy)
        await self.db.flush()

        await self.history.record(
            copy.id,
            HistoryAction.CREATED,
            old_data=None,
            new_data={**snapshot(copy, CREATED_FIELDS), "duplicatedFrom": source.id},
            changed_by_id=user.id,
        )
        logger.info("Deal %s duplicado como %s", item_id, copy.id)
        return await self._load(copy.id)

    # ------------------------------------------
    # Actualizar
    # ------------------------------------------

    async def update_item(self, user: CurrentUser, item_id: int, data: PipelineItemUpdate) -> PipelineItem:
        """Edición genérica: diff campo a campo; sin cambios reales no hay historial."""
        item = await self.get_item(user, item_id)
        updates = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if not (value is None and key in ("products", "priority", "status", "last_contact", "tags"))
        }
        if "status" in updates:
            validate_transition(item.status, updates["status"])
        if updates.get("assigned_to_id") is not None:
            await ensure_user_exists(self.db, updates["assigned_to_id"])

        changes = diff_changes(item, updates)
        if not changes:
            return item

        old_status = item.status
        for key, value in updates.items():
            setattr(item, key, value)
        await self.db.flush()

        action = HistoryAction.UPDATED
        if set(changes) == {"assignedToId"}:
            action = HistoryAction.ASSIGNED
        await self.history.record(
            item.id,
            action,
            old_data={name: change["from"] for name, change in changes.items()},
            new_data={name: change["to"] for name, change in changes.items()},
            changed_by_id=user.id,
        )
        if item.status != old_status:
            await promote_client_on_win(self.db, item)

        logger.info("Deal %s actualizado (campos: %s)", item_id, list(changes))
        return await self._load(item.id)

    async def change_status(self, user: CurrentUser, item_id: int, status: PipelineStatus) -> PipelineItem:
        """
        Cambio de estado dedicado.

        Siempre escribe STATUS_CHANGED, aunque el estado no cambie.
        """
        item = await self.get_item(user, item_id)
        validate_transition(item.status, status)

        old_status = item.status
        item.status = status
        await self.db.flush()

        await self.history.record(
            item.id,
            HistoryAction.STATUS_CHANGED,
            old_data={"status": old_status.value},
            new_data={"status": status.value},
            changed_by_id=user.id,
        )
        await promote_client_on_win(self.db, item)

        logger.info("Deal %s: %s -> %s", item_id, old_status.value, status.value)
        return await self._load(item.id)

    async def bulk_update(self, user: CurrentUser, data: PipelineBulkUpdate) -> int:
        """Solo privilegiados; todos los ids deben pasar la política antes de tocar nada."""
        policy = policy_for(user)
        policy.ensure_privileged()
        await policy.ensure_batch_access(self.db, ITEM, data.item_ids)

        updates = {k: v for k, v in data.updates.model_dump(exclude_unset=True).items() if v is not None}
        if updates.get("assigned_to_id") is not None:
            await ensure_user_exists(self.db, updates["assigned_to_id"])

        result = await self.db.execute(select(PipelineItem).where(PipelineItem.id.in_(data.item_ids)))
        updated = 0
        for item in result.scalars().all():
            changes = diff_changes(item, updates)
            if not changes:
                continue
            old_status = item.status
            for key, value in updates.items():
                setattr(item, key, value)
            await self.db.flush()
            await self.history.record(
                item.id,
                HistoryAction.BULK_UPDATED,
                old_data={name: change["from"] for name, change in changes.items()},
                new_data={name: change["to"] for name, change in changes.items()},
                changed_by_id=user.id,
            )
            if item.status != old_status:
                await promote_client_on_win(self.db, item)
            updated += 1

        logger.info("Actualización masiva del pipeline: %s items por usuario %s", updated, user.id)
        return updated

    # ------------------------------------------
    # Eliminar
    # ------------------------------------------

    async def delete_item(self, user: CurrentUser, item_id: int) -> None:
        """Deja la entrada DELETED con un snapshot y después borra el deal."""
        item = await self.get_item(user, item_id)
        old_data = snapshot(item, DELETED_FIELDS)
        old_data["clientName"] = item.client.full_name if item.client else None

        await self.history.record(
            item.id,
            HistoryAction.DELETED,
            old_data=old_data,
            new_data=None,
            changed_by_id=user.id,
        )
        await self.db.delete(item)
        await self.db.flush()
        logger.info("Deal %s eliminado por usuario %s", item_id, user.id)

    # ------------------------------------------
    # Helpers privados
    # ------------------------------------------

    async def _load(self, item_id: int) -> PipelineItem | None:
        query = (
            select(PipelineItem)
            .options(*ITEM_OPTIONS)
            .where(PipelineItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

