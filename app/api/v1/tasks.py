"""
Endpoints de tareas.

Las operaciones masivas son solo para roles privilegiados; el resto
respeta la visibilidad del usuario.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user, log_user_action
from app.database import get_db
from app.models.pipeline import Priority
from app.models.task import TaskStatus, TaskType
from app.schemas.common import BulkResult, MessageResponse, to_utc
from app.schemas.task import (
    ReminderRequest,
    TaskBulkAssign,
    TaskBulkUpdate,
    TaskCollection,
    TaskCreate,
    TaskIds,
    TaskListResponse,
    TaskResponse,
    TaskPriorityChange,
    TaskStats,
    TaskStatusChange,
    TaskUpdate,
)
from app.services.auth_service import CurrentUser
from app.services.query_builder import DEFAULT_LIMIT, MAX_LIMIT, ListParams
from app.services.task_service import TaskFilters, TaskService

router = APIRouter()


async def get_task_service(db: AsyncSession = Depends(get_db)) -> TaskService:
    return TaskService(db)


def _list_params(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: str | None = Query(None, alias="sortOrder"),
) -> ListParams:
    return ListParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)


def _page_response(result) -> TaskListResponse:
    return TaskListResponse(
        tasks=[TaskResponse.model_validate(t) for t in result.items],
        pagination=result.pagination(),
    )


def _collection(tasks) -> TaskCollection:
    return TaskCollection(tasks=[TaskResponse.model_validate(t) for t in tasks], count=len(tasks))


# --- Listados y consultas ---


@router.get("", response_model=TaskListResponse, summary="Listar tareas visibles")
async def list_tasks(
    params: ListParams = Depends(_list_params),
    search: str | None = Query(None, description="Título, descripción o nombre del cliente"),
    status_filter: TaskStatus | None = Query(None, alias="status"),
    priority: Priority | None = Query(None),
    task_type: TaskType | None = Query(None, alias="type"),
    client_id: int | None = Query(None, alias="clientId"),
    assigned_to: int | None = Query(None, alias="assignedTo"),
    date_from: datetime | None = Query(None, alias="dateFrom"),
    date_to: datetime | None = Query(None, alias="dateTo"),
    overdue: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskListResponse:
    """Por defecto ordenadas por fecha límite ascendente."""
    filters = TaskFilters(
        search=search,
        status=status_filter,
        priority=priority,
        type=task_type,
        client_id=client_id,
        assigned_to_id=assigned_to,
        date_from=to_utc(date_from),
        date_to=to_utc(date_to),
        overdue=overdue,
    )
    return _page_response(await service.list_tasks(user, params, filters))


@router.get("/my-tasks", response_model=TaskListResponse, summary="Tareas asignadas a mí")
async def my_tasks(
    params: ListParams = Depends(_list_params),
    status_filter: TaskStatus | None = Query(None, alias="status"),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskListResponse:
    return _page_response(await service.my_tasks(user, params, status=status_filter))


@router.get("/stats", response_model=TaskStats, summary="Estadísticas de tareas")
async def task_stats(
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskStats:
    return TaskStats(**await service.stats(user))


@router.get("/search", response_model=TaskCollection, summary="Búsqueda rápida de tareas")
async def search_tasks(
    q: str = Query("", description="Mínimo 2 caracteres"),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskCollection:
    return _collection(await service.search_tasks(user, q, limit=limit))


@router.get("/overdue", response_model=TaskCollection, summary="Tareas vencidas")
async def overdue_tasks(
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskCollection:
    return _collection(await service.overdue_tasks(user))


@router.get("/upcoming", response_model=TaskCollection, summary="Tareas de los próximos días")
async def upcoming_tasks(
    days: int = Query(3, ge=1, le=90),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskCollection:
    return _collection(await service.upcoming_tasks(user, days=days))


# --- Operaciones masivas ---


@router.post(
    "/bulk-update",
    response_model=BulkResult,
    summary="Actualización masiva de tareas",
    dependencies=[Depends(log_user_action("BULK_UPDATE_TASKS"))],
)
async def bulk_update(
    data: TaskBulkUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> BulkResult:
    updated = await service.bulk_update(user, data)
    return BulkResult(message=f"{updated} tareas actualizadas", updated=updated)


@router.post("/bulk-complete", response_model=BulkResult, summary="Completar tareas en bloque")
async def bulk_complete(
    data: TaskIds,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> BulkResult:
    updated = await service.bulk_complete(user, data.task_ids)
    return BulkResult(message=f"{updated} tareas completadas", updated=updated)


@router.post("/bulk-assign", response_model=BulkResult, summary="Reasignar tareas en bloque")
async def bulk_assign(
    data: TaskBulkAssign,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> BulkResult:
    updated = await service.bulk_assign(user, data)
    return BulkResult(message=f"{updated} tareas reasignadas", updated=updated)


@router.delete(
    "/bulk-delete",
    response_model=BulkResult,
    summary="Eliminar tareas en bloque",
    dependencies=[Depends(log_user_action("BULK_DELETE_TASKS"))],
)
async def bulk_delete(
    data: TaskIds,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> BulkResult:
    deleted = await service.bulk_delete(user, data.task_ids)
    return BulkResult(message=f"{deleted} tareas eliminadas", updated=deleted)


# --- CRUD ---


@router.post(
    "",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Crear una tarea",
    dependencies=[Depends(log_user_action("CREATE_TASK"))],
)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.create_task(user, data))


@router.get("/{task_id}", response_model=TaskResponse, summary="Obtener una tarea")
async def get_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.get_task(user, task_id))


@router.put("/{task_id}", response_model=TaskResponse, summary="Actualizar una tarea")
async def update_task(
    task_id: int,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.update_task(user, task_id, data))


@router.patch("/{task_id}/status", response_model=TaskResponse, summary="Cambiar el estado de una tarea")
async def change_status(
    task_id: int,
    data: TaskStatusChange,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.change_status(user, task_id, data.status))


@router.patch("/{task_id}/complete", response_model=TaskResponse, summary="Marcar una tarea como completada")
async def complete_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.change_status(user, task_id, TaskStatus.COMPLETED))


@router.patch("/{task_id}/start", response_model=TaskResponse, summary="Marcar una tarea como en progreso")
async def start_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.change_status(user, task_id, TaskStatus.IN_PROGRESS))


@router.patch("/{task_id}/cancel", response_model=TaskResponse, summary="Cancelar una tarea")
async def cancel_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.change_status(user, task_id, TaskStatus.CANCELLED))


@router.put("/{task_id}/priority", response_model=TaskResponse, summary="Cambiar la prioridad de una tarea")
async def change_priority(
    task_id: int,
    data: TaskPriorityChange,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.set_priority(user, task_id, data.priority))


@router.post("/{task_id}/reminder", response_model=TaskResponse, summary="Activar recordatorio")
async def set_reminder(
    task_id: int,
    data: ReminderRequest,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.set_reminder(user, task_id, data.reminder_minutes))


@router.delete("/{task_id}/reminder", response_model=TaskResponse, summary="Quitar recordatorio")
async def clear_reminder(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.clear_reminder(user, task_id))


@router.delete(
    "/{task_id}",
    response_model=MessageResponse,
    summary="Eliminar una tarea",
    dependencies=[Depends(log_user_action("DELETE_TASK"))],
)
async def delete_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> MessageResponse:
    await service.delete_task(user, task_id)
    return MessageResponse(message="Tarea eliminada exitosamente")


@router.post(
    "/{task_id}/duplicate",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicar una tarea",
)
async def duplicate_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    """Copia para el día siguiente, en PENDING y sin recordatorio."""
    return TaskResponse.model_validate(await service.duplicate_task(user, task_id))
