"""
Libro de historial del pipeline.

Cada mutación de un deal deja una entrada append-only. Escribir el
historial es best-effort: si falla, la mutación principal sigue adelante
y el fallo queda como warning en el log. La inserción va dentro de un
SAVEPOINT para que un error no arrastre la transacción del request.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.pipeline import HistoryAction, PipelineHistory

logger = logging.getLogger(__name__)


def snapshot_value(value: Any) -> Any:
    """Convierte un valor de columna en algo serializable y comparable."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [snapshot_value(v) for v in value]
    if isinstance(value, dict):
        return {k: snapshot_value(v) for k, v in value.items()}
    return value


def snapshot(record: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    """{campoCamel: valor} de los campos indicados del registro."""
    return {to_camel(name): snapshot_value(getattr(record, name)) for name in fields}


def diff_changes(record: Any, updates: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """
    Diff campo a campo: {campo: {from, to}} solo de lo que cambia de verdad.

    Un update que deja todo igual devuelve {} y no genera entrada.
    """
    changes: dict[str, dict[str, Any]] = {}
    for name, new_value in updates.items():
        old = snapshot_value(getattr(record, name))
        new = snapshot_value(new_value)
        if old != new:
            changes[to_camel(name)] = {"from": old, "to": new}
    return changes


class HistoryLedger:
    """Escritura y lectura del historial de un deal."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def record(
        self,
        pipeline_item_id: int,
        action: HistoryAction,
        *,
        old_data: dict[str, Any] | None,
        new_data: dict[str, Any] | None,
        changed_by_id: int | None,
    ) -> PipelineHistory | None:
        """Añade una entrada. Nunca lanza: devuelve None si no se pudo escribir."""
        # Los cambios pendientes del deal se vuelcan fuera del savepoint:
        # un fallo ahí sí es un fallo de la mutación principal.
        await self.db.flush()
        try:
            async with self.db.begin_nested():
                entry = PipelineHistory(
                    pipeline_item_id=pipeline_item_id,
                    action=action,
                    old_data=old_data,
                    new_data=new_data,
                    changed_by_id=changed_by_id,
                )
                self.db.add(entry)
        except Exception:
            logger.warning(
                "No se pudo registrar %s en el historial del item %s",
                action.value, pipeline_item_id,
                exc_info=True,
            )
            return None
        return entry

    async def list_for_item(self, pipeline_item_id: int) -> list[PipelineHistory]:
        """Historial más reciente primero."""
        query = (
            select(PipelineHistory)
            .options(selectinload(PipelineHistory.changed_by))
            .where(PipelineHistory.pipeline_item_id == pipeline_item_id)
            .order_by(PipelineHistory.created_at.desc(), PipelineHistory.id.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
