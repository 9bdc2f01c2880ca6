"""
Endpoints de clientes.

Cada endpoint recibe HTTP, delega al servicio, y devuelve HTTP.
Las rutas fijas (/search, /stats, /export...) van antes de /{client_id}.
"""

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user, log_user_action, rate_limit
from app.database import get_db
from app.models.client import ClientSource, ClientStatus
from app.schemas.client import (
    ClientBulkUpdate,
    ClientCreate,
    ClientListResponse,
    ClientResponse,
    ClientStats,
    ClientUpdate,
    ContactsImportRequest,
    DuplicateCheckResult,
    ImportResult,
    MyClientsSummary,
    RecentClientsResponse,
)
from app.schemas.common import BulkResult, MessageResponse
from app.services import excel
from app.services.auth_service import CurrentUser
from app.services.client_service import ClientFilters, ClientService
from app.services.import_service import ImportService
from app.services.query_builder import DEFAULT_LIMIT, MAX_LIMIT, ListParams, parse_csv

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


async def get_client_service(db: AsyncSession = Depends(get_db)) -> ClientService:
    return ClientService(db)


async def get_import_service(db: AsyncSession = Depends(get_db)) -> ImportService:
    return ImportService(db)


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _client_filters(
    search: str | None = Query(None, description="Nombre, apellido, email, teléfono o empresa"),
    source: ClientSource | None = Query(None),
    estado: ClientStatus | None = Query(None),
    etapa: str | None = Query(None),
    assigned_to: int | None = Query(None, alias="assignedTo"),
    tags: str | None = Query(None, description="Tags separados por comas"),
) -> ClientFilters:
    return ClientFilters(
        search=search,
        source=source,
        estado=estado,
        etapa=etapa,
        assigned_to_id=assigned_to,
        tags=parse_csv(tags),
    )


def _list_params(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: str | None = Query(None, alias="sortOrder"),
) -> ListParams:
    return ListParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)


# --- Listados y consultas ---


@router.get("", response_model=ClientListResponse, summary="Listar clientes visibles")
async def list_clients(
    params: ListParams = Depends(_list_params),
    filters: ClientFilters = Depends(_client_filters),
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientListResponse:
    """assignedTo solo filtra para roles que ven todos los clientes."""
    result = await service.list_clients(user, params, filters)
    return ClientListResponse(
        clients=[ClientResponse.model_validate(c) for c in result.items],
        pagination=result.pagination(),
    )


@router.get("/search", response_model=RecentClientsResponse, summary="Búsqueda rápida de clientes")
async def search_clients(
    q: str = Query("", description="Mínimo 2 caracteres"),
    limit: int = Query(10, ge=1, le=50),
    estado: ClientStatus | None = Query(None),
    source: ClientSource | None = Query(None),
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> RecentClientsResponse:
    clients = await service.search_clients(user, q, limit=limit, estado=estado, source=source)
    return RecentClientsResponse(
        clients=[ClientResponse.model_validate(c) for c in clients],
        count=len(clients),
    )


@router.get("/stats", response_model=ClientStats, summary="Estadísticas de clientes")
async def client_stats(
    period: int = Query(30, ge=1, le=365, description="Días para 'nuevos en el periodo'"),
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientStats:
    return ClientStats(**await service.stats(user, period_days=period))


@router.get("/my/summary", response_model=MyClientsSummary, summary="Resumen de mis clientes")
async def my_summary(
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> MyClientsSummary:
    return MyClientsSummary.model_validate(await service.my_summary(user))


@router.get("/my/recent", response_model=RecentClientsResponse, summary="Mis clientes más recientes")
async def my_recent(
    limit: int = Query(10, ge=1, le=50),
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> RecentClientsResponse:
    clients = await service.recent_clients(user, limit=limit)
    return RecentClientsResponse(
        clients=[ClientResponse.model_validate(c) for c in clients],
        count=len(clients),
    )


@router.get("/export", summary="Exportar clientes a Excel")
async def export_clients(
    filters: ClientFilters = Depends(_client_filters),
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> Response:
    clients = await service.export_rows(user, filters)
    return _xlsx_response(excel.clients_to_xlsx(clients), "clientes.xlsx")


@router.get("/import-template", summary="Plantilla Excel de importación")
async def import_template(user: CurrentUser = Depends(get_current_user)) -> Response:
    return _xlsx_response(excel.import_template_xlsx(), "plantilla_clientes.xlsx")


@router.get("/user/{user_id}", response_model=ClientListResponse, summary="Clientes de un usuario")
async def clients_for_user(
    user_id: int,
    params: ListParams = Depends(_list_params),
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientListResponse:
    result = await service.clients_for_user(user, user_id, params)
    return ClientListResponse(
        clients=[ClientResponse.model_validate(c) for c in result.items],
        pagination=result.pagination(),
    )


# --- Importación y duplicados ---


@router.post(
    "/check-duplicates",
    response_model=DuplicateCheckResult,
    summary="Previsualizar duplicados antes de importar",
)
async def check_duplicates(
    data: ContactsImportRequest,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> DuplicateCheckResult:
    return DuplicateCheckResult.model_validate(await service.check_duplicates(user, data.contacts))


@router.post(
    "/import",
    response_model=ImportResult,
    summary="Importar clientes desde Excel",
    dependencies=[
        Depends(rate_limit("clients:import", 10, 3600)),
        Depends(log_user_action("IMPORT_CLIENTS")),
    ],
)
async def import_clients(
    file: UploadFile = File(..., description="Archivo .xlsx o .xls"),
    user: CurrentUser = Depends(get_current_user),
    service: ImportService = Depends(get_import_service),
) -> ImportResult:
    """Cada fila acaba en creados, duplicados o errores. Nunca en dos."""
    content = await file.read()
    excel.validate_upload(file.filename, content)
    rows = excel.parse_clients_workbook(content)
    return ImportResult.model_validate(await service.reconcile(rows, user))


@router.post(
    "/import-contacts",
    response_model=ImportResult,
    summary="Importar contactos (JSON)",
    dependencies=[
        Depends(rate_limit("clients:import", 10, 3600)),
        Depends(log_user_action("IMPORT_CONTACTS")),
    ],
)
async def import_contacts(
    data: ContactsImportRequest,
    user: CurrentUser = Depends(get_current_user),
    service: ImportService = Depends(get_import_service),
) -> ImportResult:
    rows = enumerate(data.contacts, start=1)
    return ImportResult.model_validate(await service.reconcile(rows, user))


@router.post("/bulk-update", response_model=BulkResult, summary="Actualización masiva de clientes")
async def bulk_update(
    data: ClientBulkUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> BulkResult:
    updated = await service.bulk_update(user, data)
    return BulkResult(message=f"{updated} clientes actualizados", updated=updated)


# --- CRUD ---


@router.post(
    "",
    response_model=ClientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Crear un cliente",
    dependencies=[Depends(log_user_action("CREATE_CLIENT"))],
)
async def create_client(
    data: ClientCreate,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientResponse:
    """Teléfono o email ya usados por cualquier cliente -> 400 con existingClient."""
    client = await service.create_client(user, data)
    return ClientResponse.model_validate(client)


@router.get("/{client_id}", response_model=ClientResponse, summary="Obtener un cliente")
async def get_client(
    client_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientResponse:
    client = await service.get_client(user, client_id)
    return ClientResponse.model_validate(client)


@router.put(
    "/{client_id}",
    response_model=ClientResponse,
    summary="Actualizar un cliente",
    dependencies=[Depends(log_user_action("UPDATE_CLIENT"))],
)
async def update_client(
    client_id: int,
    data: ClientUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientResponse:
    client = await service.update_client(user, client_id, data)
    return ClientResponse.model_validate(client)


@router.delete(
    "/{client_id}",
    response_model=MessageResponse,
    summary="Eliminar un cliente",
    dependencies=[Depends(log_user_action("DELETE_CLIENT"))],
)
async def delete_client(
    client_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> MessageResponse:
    await service.delete_client(user, client_id)
    return MessageResponse(message="Cliente eliminado exitosamente")


@router.post(
    "/{client_id}/duplicate",
    response_model=ClientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicar un cliente",
)
async def duplicate_client(
    client_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
) -> ClientResponse:
    client = await service.duplicate_client(user, client_id)
    return ClientResponse.model_validate(client)
