"""Endpoints del pipeline de ventas."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user, log_user_action
from app.database import get_db
from app.models.pipeline import PipelineStatus, Priority
from app.schemas.common import BulkResult, MessageResponse
from app.schemas.pipeline import (
    HistoryEntryResponse,
    PipelineBulkUpdate,
    PipelineItemCreate,
    PipelineItemDetail,
    PipelineItemResponse,
    PipelineItemUpdate,
    PipelineListResponse,
    PipelineStats,
    StatusChange,
)
from app.services.auth_service import CurrentUser
from app.services.pipeline_service import PipelineFilters, PipelineService
from app.services.query_builder import DEFAULT_LIMIT, MAX_LIMIT, ListParams

router = APIRouter()


async def get_pipeline_service(db: AsyncSession = Depends(get_db)) -> PipelineService:
    return PipelineService(db)


@router.get("", response_model=PipelineListResponse, summary="Listar deals visibles")
async def list_items(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: str | None = Query(None, alias="sortOrder"),
    search: str | None = Query(None, description="Cliente, notas o productos"),
    status_filter: PipelineStatus | None = Query(None, alias="status"),
    priority: Priority | None = Query(None),
    client_id: int | None = Query(None, alias="clientId"),
    assigned_to: int | None = Query(None, alias="assignedTo"),
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineListResponse:
    params = ListParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
    filters = PipelineFilters(
        search=search,
        status=status_filter,
        priority=priority,
        client_id=client_id,
        assigned_to_id=assigned_to,
    )
    result = await service.list_items(user, params, filters)
    return PipelineListResponse(
        items=[PipelineItemResponse.model_validate(i) for i in result.items],
        pagination=result.pagination(),
    )


@router.get("/kanban", response_model=dict[str, list[PipelineItemResponse]], summary="Vista kanban")
async def kanban(
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> dict[str, list[PipelineItemResponse]]:
    """Un bloque por estado; los 12 estados aparecen siempre."""
    columns = await service.kanban(user)
    return {
        key: [PipelineItemResponse.model_validate(i) for i in items]
        for key, items in columns.items()
    }


@router.get("/stats", response_model=PipelineStats, summary="Estadísticas del pipeline")
async def pipeline_stats(
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineStats:
    return PipelineStats.model_validate(await service.stats(user))


@router.get("/search", response_model=list[PipelineItemResponse], summary="Búsqueda rápida de deals")
async def search_items(
    q: str = Query("", description="Mínimo 2 caracteres"),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> list[PipelineItemResponse]:
    items = await service.search_items(user, q, limit=limit)
    return [PipelineItemResponse.model_validate(i) for i in items]


@router.post("/bulk-update", response_model=BulkResult, summary="Actualización masiva de deals")
async def bulk_update(
    data: PipelineBulkUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> BulkResult:
    updated = await service.bulk_update(user, data)
    return BulkResult(message=f"{updated} items actualizados", updated=updated)


@router.post(
    "",
    response_model=PipelineItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Crear un deal",
    dependencies=[Depends(log_user_action("CREATE_PIPELINE_ITEM"))],
)
async def create_item(
    data: PipelineItemCreate,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineItemResponse:
    item = await service.create_item(user, data)
    return PipelineItemResponse.model_validate(item)


@router.get("/{item_id}", response_model=PipelineItemDetail, summary="Obtener un deal con su historial")
async def get_item(
    item_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineItemDetail:
    item = await service.get_item(user, item_id)
    history = await service.history.list_for_item(item_id)
    detail = PipelineItemDetail.model_validate(item)
    detail.history = [HistoryEntryResponse.model_validate(h) for h in history]
    return detail


@router.get(
    "/{item_id}/history",
    response_model=list[HistoryEntryResponse],
    summary="Historial de un deal",
)
async def get_history(
    item_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> list[HistoryEntryResponse]:
    """Más reciente primero."""
    history = await service.get_history(user, item_id)
    return [HistoryEntryResponse.model_validate(h) for h in history]


@router.put(
    "/{item_id}",
    response_model=PipelineItemResponse,
    summary="Actualizar un deal",
    dependencies=[Depends(log_user_action("UPDATE_PIPELINE_ITEM"))],
)
async def update_item(
    item_id: int,
    data: PipelineItemUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineItemResponse:
    item = await service.update_item(user, item_id, data)
    return PipelineItemResponse.model_validate(item)


@router.patch(
    "/{item_id}/status",
    response_model=PipelineItemResponse,
    summary="Cambiar el estado de un deal",
    dependencies=[Depends(log_user_action("CHANGE_PIPELINE_STATUS"))],
)
async def change_status(
    item_id: int,
    data: StatusChange,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineItemResponse:
    """Pasar a VENTA_NUEVA o VENTA_AGREGADO promueve al cliente a "Cliente"."""
    item = await service.change_status(user, item_id, data.status)
    return PipelineItemResponse.model_validate(item)


@router.delete(
    "/{item_id}",
    response_model=MessageResponse,
    summary="Eliminar un deal",
    dependencies=[Depends(log_user_action("DELETE_PIPELINE_ITEM"))],
)
async def delete_item(
    item_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> MessageResponse:
    await service.delete_item(user, item_id)
    return MessageResponse(message="Item eliminado exitosamente")


@router.post(
    "/{item_id}/duplicate",
    response_model=PipelineItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicar un deal",
)
async def duplicate_item(
    item_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineItemResponse:
    item = await service.duplicate_item(user, item_id)
    return PipelineItemResponse.model_validate(item)
