"""
Servicio de tareas.

Vencida = abierta (PENDING / IN_PROGRESS) con fecha límite pasada.
Todas las fechas se comparan en UTC.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.errors import NotFoundError
from app.models.base import utcnow
from app.models.client import Client
from app.models.pipeline import Priority
from app.models.task import OPEN_TASK_STATUSES, Task, TaskStatus, TaskType
from app.schemas.task import TaskBulkAssign, TaskBulkUpdate, TaskCreate, TaskUpdate
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
)
from app.services.user_service import ensure_user_exists

logger = logging.getLogger(__name__)

TASK = ResourceKind.TASK
TASK_OPTIONS = (selectinload(Task.client), selectinload(Task.assigned_to))
SEARCH_FIELDS = (Task.title, Task.description, Client.nombre, Client.apellido)
REQUIRED_FIELDS = ("title", "type", "priority", "status", "due_date", "reminder_enabled")
COPY_SUFFIX = " (Copia)"
TITLE_MAX_LENGTH = 100

TASK_SORT = SortSpec(
    columns={
        "dueDate": Task.due_date,
        "createdAt": Task.created_at,
        "updatedAt": Task.updated_at,
        "priority": Task.priority,
        "status": Task.status,
        "title": Task.title,
    },
    default="dueDate",
    default_order="asc",
    tiebreaker=Task.id,
)


def _is_open():
    return Task.status.in_(OPEN_TASK_STATUSES)


def _day_start(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass
class TaskFilters:
    search: str | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    type: TaskType | None = None
    client_id: int | None = None
    assigned_to_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    overdue: bool = False


class TaskService:
    """Operaciones de negocio sobre tareas."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------
    # Leer
    # ------------------------------------------

    async def list_tasks(self, user: CurrentUser, params: ListParams, filters: TaskFilters) -> Page:
        policy = policy_for(user)
        term = normalize_search(filters.search)

        conditions = [
            Task.status == filters.status if filters.status else None,
            Task.priority == filters.priority if filters.priority else None,
            Task.type == filters.type if filters.type else None,
            Task.client_id == filters.client_id if filters.client_id else None,
            Task.due_date >= filters.date_from if filters.date_from else None,
            Task.due_date <= filters.date_to if filters.date_to else None,
        ]
        if filters.overdue:
            conditions += [_is_open(), Task.due_date < utcnow()]
        if filters.assigned_to_id is not None and policy.privileged:
            conditions.append(Task.assigned_to_id == filters.assigned_to_id)

        stmt = build_query(
            Task,
            visibility=policy.visibility_filter(TASK),
            filters=conditions,
            search=search_condition(SEARCH_FIELDS, term) if term else None,
            outer_joins=[Task.client],
        )
        stmt = apply_sort(stmt, params, TASK_SORT)
        return await paginate(self.db, stmt, params, options=TASK_OPTIONS)

    async def my_tasks(self, user: CurrentUser, params: ListParams, status: TaskStatus | None = None) -> Page:
        """Tareas asignadas al usuario, sin importar su rol."""
        stmt = build_query(
            Task,
            filters=[
                Task.assigned_to_id == user.id,
                Task.status == status if status else None,
            ],
        )
        stmt = apply_sort(stmt, params, TASK_SORT)
        return await paginate(self.db, stmt, params, options=TASK_OPTIONS)

    async def search_tasks(self, user: CurrentUser, q: str | None, limit: int = 20) -> list[Task]:
        term = normalize_search(q or "", field_name="q")
        stmt = build_query(
            Task,
            visibility=policy_for(user).visibility_filter(TASK),
            search=search_condition(SEARCH_FIELDS, term),
            outer_joins=[Task.client],
        )
        return await self._fetch(stmt.order_by(Task.due_date.asc(), Task.id.asc()).limit(limit))

    async def overdue_tasks(self, user: CurrentUser) -> list[Task]:
        """Abiertas y vencidas, la más reciente primero."""
        stmt = build_query(
            Task,
            visibility=policy_for(user).visibility_filter(TASK),
            filters=[_is_open(), Task.due_date < utcnow()],
        )
        return await self._fetch(stmt.order_by(Task.due_date.desc(), Task.id.desc()))

    async def upcoming_tasks(self, user: CurrentUser, days: int = 3) -> list[Task]:
        now = utcnow()
        stmt = build_query(
            Task,
            visibility=policy_for(user).visibility_filter(TASK),
            filters=[_is_open(), Task.due_date >= now, Task.due_date <= now + timedelta(days=days)],
        )
        return await self._fetch(stmt.order_by(Task.due_date.asc(), Task.id.asc()))

    async def get_task(self, user: CurrentUser, task_id: int) -> Task:
        task = await self._load(task_id)
        if task is None:
            raise NotFoundError("Tarea no encontrada")
        policy_for(user).ensure_access(TASK, task)
        return task

    async def stats(self, user: CurrentUser) -> dict:
        policy = policy_for(user)
        visible = policy.visibility_filter(TASK)
        now = utcnow()
        today = _day_start(now)

        by_status = await group_counts(self.db, Task.status, visible)
        stats = {
            "total": sum(by_status.values()),
            "pending": by_status.get(TaskStatus.PENDING.value, 0),
            "in_progress": by_status.get(TaskStatus.IN_PROGRESS.value, 0),
            "completed": by_status.get(TaskStatus.COMPLETED.value, 0),
            "cancelled": by_status.get(TaskStatus.CANCELLED.value, 0),
            "overdue": await count_where(self.db, Task, visible, _is_open(), Task.due_date < now),
            "today": await count_where(
                self.db, Task, visible, Task.due_date >= today, Task.due_date < today + timedelta(days=1)
            ),
            "this_week": await count_where(
                self.db, Task, visible, Task.due_date >= today, Task.due_date < today + timedelta(days=7)
            ),
            "by_type": await group_counts(self.db, Task.type, visible),
            "by_priority": await group_counts(self.db, Task.priority, visible),
            "by_status": by_status,
            "by_user": None,
        }
        if policy.privileged:
            stats["by_user"] = await counts_by_user(self.db, Task.assigned_to_id, visible)
        return stats

    # ------------------------------------------
    # Crear
    # ------------------------------------------

    async def create_task(self, user: CurrentUser, data: TaskCreate) -> Task:
        """Si se liga a un cliente, ese cliente tiene que existir y ser visible."""
        if data.client_id is not None:
            await self._ensure_client(user, data.client_id)
        if data.assigned_to_id is not None:
            await ensure_user_exists(self.db, data.assigned_to_id)

        task = Task(
            **data.model_dump(exclude={"assigned_to_id"}),
            assigned_to_id=data.assigned_to_id or user.id,
            created_by_id=user.id,
        )
        if task.status == TaskStatus.COMPLETED:
            task.completed_at = utcnow()
        self.db.add(task)
        await self.db.flush()

        logger.info("Tarea %s creada por usuario %s", task.id, user.id)
        return await self._load(task.id)

    async def duplicate_task(self, user: CurrentUser, task_id: int) -> Task:
        """
        Copia para el día siguiente.

        La copia arranca en PENDING, sin recordatorio y sin vínculo con el
        calendario externo.
        """
        source = await self.get_task(user, task_id)
        title = f"{source.title}{COPY_SUFFIX}"[:TITLE_MAX_LENGTH]

        copy = Task(
            title=title,
            description=source.description,
            type=source.type,
            priority=source.priority,
            status=TaskStatus.PENDING,
            due_date=source.due_date + timedelta(days=1),
            reminder_enabled=False,
            reminder_minutes=None,
            client_id=source.client_id,
            assigned_to_id=user.id,
            created_by_id=user.id,
        )
        self.db.add(copy)
        await self.db.flush()

        logger.info("Tarea %s duplicada como %s", task_id, copy.id)
        return await self._load(copy.id)

    # ------------------------------------------
    # Actualizar
    # ------------------------------------------

    async def update_task(self, user: CurrentUser, task_id: int, data: TaskUpdate) -> Task:
        task = await self.get_task(user, task_id)
        updates = data.model_dump(exclude_unset=True)
        for name in REQUIRED_FIELDS:
            if name in updates and updates[name] is None:
                del updates[name]

        if updates.get("client_id") is not None and updates["client_id"] != task.client_id:
            await self._ensure_client(user, updates["client_id"])
        if updates.get("assigned_to_id") is not None:
            await ensure_user_exists(self.db, updates["assigned_to_id"])

        status = updates.pop("status", None)
        for key, value in updates.items():
            setattr(task, key, value)
        if status is not None:
            self._apply_status(task, status)
        await self.db.flush()

        logger.info("Tarea %s actualizada (campos: %s)", task_id, list(data.model_fields_set))
        return await self._load(task.id)

    async def change_status(self, user: CurrentUser, task_id: int, status: TaskStatus) -> Task:
        task = await self.get_task(user, task_id)
        old_status = task.status
        self._apply_status(task, status)
        await self.db.flush()

        logger.info("Tarea %s: %s -> %s", task_id, old_status.value, status.value)
        return await self._load(task.id)

    async def set_priority(self, user: CurrentUser, task_id: int, priority: Priority) -> Task:
        task = await self.get_task(user, task_id)
        task.priority = priority
        await self.db.flush()

        logger.info("Tarea %s: prioridad %s", task_id, priority.value)
        return await self._load(task.id)

    async def set_reminder(self, user: CurrentUser, task_id: int, minutes: int) -> Task:
        task = await self.get_task(user, task_id)
        task.reminder_enabled = True
        task.reminder_minutes = minutes
        await self.db.flush()
        return await self._load(task.id)

    async def clear_reminder(self, user: CurrentUser, task_id: int) -> Task:
        task = await self.get_task(user, task_id)
        task.reminder_enabled = False
        task.reminder_minutes = None
        await self.db.flush()
        return await self._load(task.id)

    # ------------------------------------------
    # Eliminar
    # ------------------------------------------

    async def delete_task(self, user: CurrentUser, task_id: int) -> None:
        task = await self.get_task(user, task_id)
        await self.db.delete(task)
        await self.db.flush()
        logger.info("Tarea %s eliminada por usuario %s", task_id, user.id)

    # ------------------------------------------
    # Operaciones masivas
    # ------------------------------------------
    # Solo privilegiados y solo si todos los ids pasan la política.

    async def bulk_update(self, user: CurrentUser, data: TaskBulkUpdate) -> int:
        await self._ensure_bulk(user, data.task_ids)
        updates = {k: v for k, v in data.updates.model_dump(exclude_unset=True).items() if v is not None}
        if not updates:
            return 0

        status = updates.pop("status", None)
        tasks = await self._by_ids(data.task_ids)
        for task in tasks:
            for key, value in updates.items():
                setattr(task, key, value)
            if status is not None:
                self._apply_status(task, status)
        await self.db.flush()

        logger.info("Actualización masiva de %s tareas por usuario %s", len(tasks), user.id)
        return len(tasks)

    async def bulk_complete(self, user: CurrentUser, task_ids: list[int]) -> int:
        await self._ensure_bulk(user, task_ids)
        tasks = [task for task in await self._by_ids(task_ids) if task.status != TaskStatus.COMPLETED]
        for task in tasks:
            self._apply_status(task, TaskStatus.COMPLETED)
        await self.db.flush()

        logger.info("%s tareas completadas en bloque por usuario %s", len(tasks), user.id)
        return len(tasks)

    async def bulk_assign(self, user: CurrentUser, data: TaskBulkAssign) -> int:
        await self._ensure_bulk(user, data.task_ids)
        await ensure_user_exists(self.db, data.assigned_to_id)

        tasks = await self._by_ids(data.task_ids)
        for task in tasks:
            task.assigned_to_id = data.assigned_to_id
        await self.db.flush()

        logger.info("%s tareas reasignadas a %s", len(tasks), data.assigned_to_id)
        return len(tasks)

    async def bulk_delete(self, user: CurrentUser, task_ids: list[int]) -> int:
        await self._ensure_bulk(user, task_ids)
        result = await self.db.execute(delete(Task).where(Task.id.in_(task_ids)))
        logger.info("%s tareas eliminadas en bloque por usuario %s", result.rowcount, user.id)
        return result.rowcount

    # ------------------------------------------
    # Helpers privados
    # ------------------------------------------

    @staticmethod
    def _apply_status(task: Task, status: TaskStatus) -> None:
        """completed_at acompaña siempre al estado COMPLETED."""
        if status == TaskStatus.COMPLETED and task.status != TaskStatus.COMPLETED:
            task.completed_at = utcnow()
        elif status != TaskStatus.COMPLETED:
            task.completed_at = None
        task.status = status

    async def _ensure_bulk(self, user: CurrentUser, task_ids: list[int]) -> None:
        policy = policy_for(user)
        policy.ensure_privileged()
        await policy.ensure_batch_access(self.db, TASK, task_ids)

    async def _ensure_client(self, user: CurrentUser, client_id: int) -> Client:
        client = await self.db.get(Client, client_id)
        if client is None:
            raise NotFoundError("Cliente no encontrado")
        policy_for(user).ensure_access(ResourceKind.CLIENT, client)
        return client

    async def _by_ids(self, task_ids: list[int]) -> list[Task]:
        result = await self.db.execute(select(Task).where(Task.id.in_(task_ids)))
        return list(result.scalars().all())

    async def _fetch(self, stmt) -> list[Task]:
        result = await self.db.execute(stmt.options(*TASK_OPTIONS))
        return list(result.scalars().all())

    async def _load(self, task_id: int) -> Task | None:
        query = (
            select(Task)
            .options(*TASK_OPTIONS)
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
