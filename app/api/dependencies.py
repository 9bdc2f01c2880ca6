"""
Dependencias comunes de los endpoints.

Autenticación por Bearer JWT, control de rol, rate limit y log de
acciones de usuario.

Uso en un endpoint:
    @router.post("", dependencies=[Depends(log_user_action("CREATE_CLIENT"))])
    async def create_client(
        data: ClientCreate,
        user: CurrentUser = Depends(get_current_user),
    ):
        ...
"""

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.errors import AuthenticationError, AuthorizationError, RateLimitError
from app.models.base import utcnow
from app.models.user import UserRole
from app.services.auth_service import AuthService, CurrentUser

logger = logging.getLogger(__name__)
action_logger = logging.getLogger("app.user_actions")

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Valida el header Authorization: Bearer <token>. Si falla, 401."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Token de acceso requerido")
    return await AuthService(db).authenticate(credentials.credentials)


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[CurrentUser]]:
    """403 con requiredRoles y userRole si el usuario no tiene uno de los roles."""
    allowed = [role.value for role in roles]

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            logger.info("Rol %s rechazado (requiere %s) para usuario %s", user.role, allowed, user.id)
            raise AuthorizationError(required_roles=allowed, user_role=user.role)
        return user

    return dependency


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _check_limit(request: Request, key: str, limit: int, window: int) -> None:
    if not get_settings().RATE_LIMIT_ENABLED:
        return
    retry_after = await request.app.state.rate_limiter.hit(key, limit, window)
    if retry_after:
        logger.warning("Rate limit superado: %s", key)
        raise RateLimitError(retry_after)


def rate_limit(scope: str, limit: int, window: int) -> Callable[..., Awaitable[None]]:
    """Límite por usuario autenticado (key = scope:user_id)."""

    async def dependency(request: Request, user: CurrentUser = Depends(get_current_user)) -> None:
        await _check_limit(request, f"{scope}:{user.id}", limit, window)

    return dependency


def rate_limit_by_ip(scope: str, limit: int, window: int) -> Callable[..., Awaitable[None]]:
    """Límite para endpoints públicos (login, registro)."""

    async def dependency(request: Request) -> None:
        await _check_limit(request, f"{scope}:{_client_ip(request)}", limit, window)

    return dependency


def log_user_action(action: str) -> Callable[..., Awaitable[None]]:
    """Deja constancia de quién hace qué: fecha, acción, usuario, rol e IP."""

    async def dependency(request: Request, user: CurrentUser = Depends(get_current_user)) -> None:
        action_logger.info(
            "[%s] %s - Usuario: %s (%s) - IP: %s",
            utcnow().isoformat(), action, user.full_name, user.role, _client_ip(request),
        )

    return dependency
