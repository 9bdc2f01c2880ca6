"""
Piezas comunes de los schemas.

La API habla camelCase (createdById, sortBy...) y el código Python
snake_case. CamelModel hace la traducción en los dos sentidos.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base de todos los schemas: alias camelCase y lectura desde ORM."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def to_utc(value: datetime | None) -> datetime | None:
    """Normaliza fechas a UTC. Las fechas sin zona se asumen UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clean_tags(tags: list[str] | None, max_length: int = 20) -> list[str] | None:
    """Quita espacios y vacíos, elimina duplicados manteniendo el orden."""
    if tags is None:
        return None
    cleaned: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > max_length:
            raise ValueError(f"Cada tag debe tener máximo {max_length} caracteres")
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class UserSummary(CamelModel):
    """Proyección mínima de un usuario para anidar en otros recursos."""
    id: int
    firstname: str
    lastname: str
    email: str


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    pages: int


class MessageResponse(CamelModel):
    message: str


class BulkResult(CamelModel):
    message: str
    updated: int = 0


def unique_ids(ids: list[int]) -> list[int]:
    """Quita ids repetidos manteniendo el orden."""
    return list(dict.fromkeys(ids))


class UserCount(CamelModel):
    """Conteo por usuario asignado, con el nombre ya resuelto."""
    user_id: int | None
    name: str
    count: int
