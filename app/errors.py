"""
Excepciones de negocio y handlers HTTP.

Los servicios lanzan estas excepciones; los handlers registrados en la app
las convierten siempre en el mismo sobre JSON: {error, details?, ...}.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import get_settings

logger = logging.getLogger(__name__)

INVALID_INPUT_MESSAGE = "Datos de entrada inválidos"


class CRMError(Exception):
    """Base de todos los errores de negocio con su código HTTP."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Error interno del servidor"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Any = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.details = details
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return body


class AuthenticationError(CRMError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "No autenticado"


class AuthorizationError(CRMError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "No tienes permisos suficientes para realizar esta acción"

    def __init__(
        self,
        message: str | None = None,
        *,
        required_roles: list[str] | None = None,
        user_role: str | None = None,
    ) -> None:
        extra: dict[str, Any] = {}
        if required_roles is not None:
            extra["requiredRoles"] = required_roles
        if user_role is not None:
            extra["userRole"] = user_role
        super().__init__(message, extra=extra)


class NotFoundError(CRMError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Recurso no encontrado"


class ValidationError(CRMError):
    """Error de validación de campos: details es [{field, message, value}]."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = INVALID_INPUT_MESSAGE

    @classmethod
    def for_field(cls, field: str, message: str, value: Any = None) -> "ValidationError":
        return cls(message, details=[{"field": field, "message": message, "value": value}])


class ConflictError(CRMError):
    """Clave única duplicada. Devuelve el registro con el que choca."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Ya existe un registro con esos datos"

    def __init__(self, message: str | None = None, *, existing: dict[str, Any], key: str = "existingClient") -> None:
        super().__init__(message, extra={key: existing})


class DependencyError(CRMError):
    """Borrado bloqueado porque hay registros que dependen de este."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "No se puede eliminar: existen registros relacionados"

    def __init__(self, message: str | None = None, *, related_records: dict[str, int]) -> None:
        super().__init__(message, extra={"relatedRecords": related_records})


class RateLimitError(CRMError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Demasiadas solicitudes. Intenta de nuevo más tarde."

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(extra={"retryAfter": retry_after})


# ------------------------------------------
# Handlers
# ------------------------------------------


def _field_name(loc: tuple[Any, ...]) -> str:
    """('body', 'tags', 0) -> 'tags.0'. Quita el origen del parámetro."""
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


async def crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Enumera todos los campos inválidos en una sola respuesta 400."""
    details = [
        {
            "field": _field_name(tuple(error.get("loc", ()))),
            "message": error.get("msg", ""),
            "value": error.get("input"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_jsonable({"error": INVALID_INPUT_MESSAGE, "details": details}),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Error en la solicitud"
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        message = "Ruta no encontrada"
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Error no controlado en %s %s", request.method, request.url.path)
    body: dict[str, Any] = {"error": "Error interno del servidor"}
    if get_settings().is_development:
        body["details"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def _jsonable(value: Any) -> Any:
    """Los valores de entrada pueden no ser serializables (bytes, objetos)."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CRMError, crm_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
