"""
Endpoints de autenticación y perfil propio.

El token es stateless: logout solo confirma, el cliente descarta el token.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user, rate_limit_by_ip
from app.database import get_db
from app.schemas.common import MessageResponse
from app.schemas.user import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    ProfileResponse,
    ProfileUpdate,
    RegisterRequest,
    UserResponse,
    VerifyResponse,
)
from app.services.auth_service import AuthService, CurrentUser

router = APIRouter()


async def get_auth_service(db: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(db)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Registro de un usuario nuevo",
    dependencies=[Depends(rate_limit_by_ip("auth:register", 10, 3600))],
)
async def register(
    data: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Crea la cuenta y devuelve un token listo para usar. Email repetido -> 400."""
    user, token = await service.register(data)
    return AuthResponse(
        message="Usuario registrado exitosamente",
        user=UserResponse.model_validate(user),
        token=token,
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Iniciar sesión",
    dependencies=[Depends(rate_limit_by_ip("auth:login", 20, 900))],
)
async def login(
    data: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    user, token = await service.login(data.email, data.password)
    return AuthResponse(
        message="Login exitoso",
        user=UserResponse.model_validate(user),
        token=token,
    )


@router.get("/profile", response_model=ProfileResponse, summary="Perfil del usuario autenticado")
async def get_profile(
    current: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> ProfileResponse:
    user = await service.get_profile(current)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.put("/profile", response_model=ProfileResponse, summary="Actualizar el propio perfil")
async def update_profile(
    data: ProfileUpdate,
    current: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> ProfileResponse:
    """Solo nombre, apellido y teléfono. Rol y email no se tocan desde aquí."""
    user = await service.update_profile(current, data)
    return ProfileResponse(user=UserResponse.model_validate(user))


@router.put("/change-password", response_model=MessageResponse, summary="Cambiar la propia contraseña")
async def change_password(
    data: ChangePasswordRequest,
    current: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await service.change_password(current, data)
    return MessageResponse(message="Contraseña actualizada exitosamente")


@router.get("/verify", response_model=VerifyResponse, summary="Verificar un token")
async def verify(
    current: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> VerifyResponse:
    user = await service.get_profile(current)
    return VerifyResponse(valid=True, user=UserResponse.model_validate(user))


@router.post("/logout", response_model=MessageResponse, summary="Cerrar sesión")
async def logout(current: CurrentUser = Depends(get_current_user)) -> MessageResponse:
    return MessageResponse(message="Sesión cerrada exitosamente")
