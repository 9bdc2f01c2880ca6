"""
Constructor de consultas de listados.

Une en una sola SELECT:
  (visibilidad) AND (filtros) AND (búsqueda)

La búsqueda es un OR entre campos, pero siempre va en su propio
paréntesis: nunca se mezcla con el OR de propiedad de la política,
porque eso ampliaría la visibilidad.
"""

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from math import ceil
from typing import Any, Generic, TypeVar

from sqlalchemy import ColumnElement, Select, String, asc, cast, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ValidationError
from app.models.user import User

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50
MAX_LIMIT = 200
MIN_SEARCH_LENGTH = 2
SEARCH_TOO_SHORT = f"El término de búsqueda debe tener al menos {MIN_SEARCH_LENGTH} caracteres"


@dataclass
class ListParams:
    """Paginación y orden pedidos por el cliente HTTP."""

    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: str | None = None
    sort_order: str | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict[str, int]:
        return {"total": self.total, "page": self.page, "limit": self.limit, "pages": self.pages}


@dataclass
class SortSpec:
    """Campos por los que se puede ordenar un recurso (nombre en la API -> columna)."""

    columns: dict[str, Any]
    default: str = "updatedAt"
    default_order: str = "desc"
    tiebreaker: Any = None
    aliases: dict[str, str] = field(default_factory=dict)


# ------------------------------------------
# Búsqueda y filtros
# ------------------------------------------


def normalize_search(term: str | None, field_name: str = "search") -> str | None:
    """None = sin búsqueda. Cualquier texto de menos de 2 caracteres -> 400."""
    if term is None:
        return None
    term = term.strip()
    if len(term) < MIN_SEARCH_LENGTH:
        raise ValidationError(
            SEARCH_TOO_SHORT,
            details=[{"field": field_name, "message": SEARCH_TOO_SHORT, "value": term}],
        )
    return term


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_condition(columns: Sequence[Any], term: str) -> ColumnElement[bool]:
    """ILIKE '%term%' contra cada columna, unidos con OR."""
    pattern = f"%{_escape_like(term)}%"
    return or_(*(column.ilike(pattern, escape="\\") for column in columns))


def tags_any(column: Any, tags: Iterable[str]) -> ColumnElement[bool] | None:
    """
    Al menos uno de los tags está en la columna JSON.

    Compara contra el texto JSON del array ('"vip"' dentro de '["vip", "b"]'),
    que funciona igual en PostgreSQL y en SQLite.
    """
    conditions = [
        cast(column, String).contains(json.dumps(tag, ensure_ascii=False), autoescape=True)
        for tag in tags
        if tag
    ]
    if not conditions:
        return None
    return or_(*conditions)


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


# ------------------------------------------
# Construcción y ejecución
# ------------------------------------------


def build_query(
    model: Any,
    *,
    visibility: ColumnElement[bool] | None = None,
    filters: Iterable[ColumnElement[bool] | None] = (),
    search: ColumnElement[bool] | None = None,
    joins: Iterable[Any] = (),
    outer_joins: Iterable[Any] = (),
) -> Select:
    """Cada .where() se combina con AND; search llega ya agrupado."""
    stmt = select(model)
    for target in joins:
        stmt = stmt.join(target)
    for target in outer_joins:
        stmt = stmt.outerjoin(target)
    if visibility is not None:
        stmt = stmt.where(visibility)
    for condition in filters:
        if condition is not None:
            stmt = stmt.where(condition)
    if search is not None:
        stmt = stmt.where(search)
    return stmt


def apply_sort(stmt: Select, params: ListParams, spec: SortSpec) -> Select:
    """Orden por un campo permitido + desempate estable por id."""
    key = params.sort_by or spec.default
    key = spec.aliases.get(key, key)
    column = spec.columns.get(key)
    if column is None:
        allowed = ", ".join(sorted(spec.columns))
        raise ValidationError.for_field("sortBy", f"Campo de orden no válido. Permitidos: {allowed}", params.sort_by)

    order = (params.sort_order or spec.default_order).lower()
    if order not in ("asc", "desc"):
        raise ValidationError.for_field("sortOrder", "sortOrder debe ser 'asc' o 'desc'", params.sort_order)
    direction = asc if order == "asc" else desc

    stmt = stmt.order_by(direction(column))
    if spec.tiebreaker is not None:
        stmt = stmt.order_by(direction(spec.tiebreaker))
    return stmt


async def paginate(
    db: AsyncSession,
    stmt: Select,
    params: ListParams,
    options: Sequence[Any] = (),
) -> Page:
    """Cuenta el total sobre la misma consulta y devuelve una página."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    page_stmt = stmt.offset(params.offset).limit(params.limit)
    if options:
        page_stmt = page_stmt.options(*options)
    result = await db.execute(page_stmt)
    return Page(items=list(result.scalars().all()), total=total, page=params.page, limit=params.limit)


async def count_where(db: AsyncSession, model: Any, *conditions: ColumnElement[bool] | None) -> int:
    stmt = select(func.count(model.id))
    for condition in conditions:
        if condition is not None:
            stmt = stmt.where(condition)
    return (await db.execute(stmt)).scalar_one()


# ------------------------------------------
# Agregaciones para estadísticas
# ------------------------------------------


def group_key(key: Any) -> str:
    if key is None:
        return "SIN_DEFINIR"
    return getattr(key, "value", str(key))


async def group_counts(
    db: AsyncSession, column: Any, *conditions: ColumnElement[bool] | None
) -> dict[str, int]:
    """{valor: cantidad} agrupando por una columna."""
    stmt = select(column, func.count()).group_by(column)
    for condition in conditions:
        if condition is not None:
            stmt = stmt.where(condition)
    result = await db.execute(stmt)
    return {group_key(key): count for key, count in result.all()}


async def group_counts_and_sums(
    db: AsyncSession, column: Any, sum_column: Any, *conditions: ColumnElement[bool] | None
) -> dict[str, tuple[int, Any]]:
    """{valor: (cantidad, suma)}. La suma de un grupo sin valores es 0."""
    stmt = select(column, func.count(), func.coalesce(func.sum(sum_column), 0)).group_by(column)
    for condition in conditions:
        if condition is not None:
            stmt = stmt.where(condition)
    result = await db.execute(stmt)
    return {group_key(key): (count, total) for key, count, total in result.all()}


async def counts_by_user(
    db: AsyncSession, user_column: Any, *conditions: ColumnElement[bool] | None
) -> list[dict[str, Any]]:
    """
    Conteo por usuario con nombre resuelto.

    Dos pasadas: agrupar por id y luego resolver los nombres de esos ids.
    """
    stmt = select(user_column, func.count()).group_by(user_column)
    for condition in conditions:
        if condition is not None:
            stmt = stmt.where(condition)
    rows = (await db.execute(stmt)).all()

    names = await resolve_user_names(db, [user_id for user_id, _ in rows if user_id is not None])
    breakdown = [
        {
            "user_id": user_id,
            "name": names.get(user_id, "Sin asignar") if user_id is not None else "Sin asignar",
            "count": count,
        }
        for user_id, count in rows
    ]
    breakdown.sort(key=lambda entry: entry["count"], reverse=True)
    return breakdown


async def resolve_user_names(db: AsyncSession, user_ids: Iterable[int]) -> dict[int, str]:
    ids = set(user_ids)
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.firstname, User.lastname).where(User.id.in_(ids)))
    return {user_id: f"{firstname} {lastname}" for user_id, firstname, lastname in result.all()}
