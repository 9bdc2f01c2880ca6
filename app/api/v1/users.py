"""Endpoints de administración de usuarios."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user, log_user_action, require_roles
from app.database import get_db
from app.models.user import PRIVILEGED_ROLES, UserRole
from app.schemas.common import MessageResponse
from app.schemas.user import (
    PasswordReset,
    ProfileResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserStats,
    UserUpdate,
)
from app.services.auth_service import CurrentUser
from app.services.query_builder import DEFAULT_LIMIT, MAX_LIMIT, ListParams
from app.services.user_service import UserService

router = APIRouter()

require_privileged = require_roles(*PRIVILEGED_ROLES)


async def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


@router.get("", response_model=UserListResponse, summary="Listar usuarios")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    search: str | None = Query(None, description="Nombre, apellido o email"),
    role: UserRole | None = Query(None),
    is_active: bool | None = Query(None, alias="isActive"),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: str | None = Query(None, alias="sortOrder"),
    current: CurrentUser = Depends(require_privileged),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    params = ListParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
    result = await service.list_users(params, search=search, role=role, is_active=is_active)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in result.items],
        pagination=result.pagination(),
    )


@router.get("/stats", response_model=UserStats, summary="Estadísticas de usuarios")
async def user_stats(
    current: CurrentUser = Depends(require_privileged),
    service: UserService = Depends(get_user_service),
) -> UserStats:
    return UserStats(**await service.stats())


@router.get("/{user_id}", response_model=ProfileResponse, summary="Obtener un usuario")
async def get_user(
    user_id: int,
    current: CurrentUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> ProfileResponse:
    """El propio usuario o cualquier usuario si el rol es privilegiado."""
    user = await service.get_user(current, user_id)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.post(
    "",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Crear un usuario",
    dependencies=[Depends(log_user_action("CREATE_USER"))],
)
async def create_user(
    data: UserCreate,
    current: CurrentUser = Depends(require_privileged),
    service: UserService = Depends(get_user_service),
) -> ProfileResponse:
    user = await service.create_user(current, data)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.put(
    "/{user_id}",
    response_model=ProfileResponse,
    summary="Actualizar un usuario",
    dependencies=[Depends(log_user_action("UPDATE_USER"))],
)
async def update_user(
    user_id: int,
    data: UserUpdate,
    current: CurrentUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> ProfileResponse:
    """Rol, subrol y estado solo los cambia un rol privilegiado."""
    user = await service.update_user(current, user_id, data)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.put(
    "/{user_id}/password",
    response_model=MessageResponse,
    summary="Restablecer la contraseña de un usuario",
    dependencies=[Depends(log_user_action("RESET_PASSWORD"))],
)
async def reset_password(
    user_id: int,
    data: PasswordReset,
    current: CurrentUser = Depends(require_privileged),
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    await service.reset_password(user_id, data)
    return MessageResponse(message="Contraseña actualizada exitosamente")


@router.put("/{user_id}/activate", response_model=ProfileResponse, summary="Activar un usuario")
async def activate_user(
    user_id: int,
    current: CurrentUser = Depends(require_privileged),
    service: UserService = Depends(get_user_service),
) -> ProfileResponse:
    user = await service.set_active(current, user_id, True)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.put("/{user_id}/deactivate", response_model=ProfileResponse, summary="Desactivar un usuario")
async def deactivate_user(
    user_id: int,
    current: CurrentUser = Depends(require_privileged),
    service: UserService = Depends(get_user_service),
) -> ProfileResponse:
    user = await service.set_active(current, user_id, False)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.delete(
    "/{user_id}",
    response_model=MessageResponse,
    summary="Eliminar un usuario",
    dependencies=[Depends(log_user_action("DELETE_USER"))],
)
async def delete_user(
    user_id: int,
    current: CurrentUser = Depends(require_roles(UserRole.SUPER_ADMIN)),
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    """Solo usuarios sin registros asociados; si tiene, 400 con relatedRecords."""
    await service.delete_user(current, user_id)
    return MessageResponse(message="Usuario eliminado exitosamente")
