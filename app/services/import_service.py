"""
Importación de contactos con deduplicación.

Reglas:
- Las filas se procesan una a una, en orden. La detección de duplicados
  de la fila N tiene que ver lo creado en las filas anteriores, por eso el
  bucle no se paraleliza.
- Duplicado = mismo teléfono o mismo email. Para roles no privilegiados
  solo se busca entre los clientes que el importador puede ver.
- Todo lo creado queda con createdById = assignedToId = importador.
- Cada fila acaba en exactamente uno de: creados, duplicados, errores.
"""

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.client import Client
from app.schemas.client import ClientCreate
from app.services.access_policy import ResourceKind, policy_for
from app.services.auth_service import CurrentUser
from app.services.client_service import ClientService, client_reference

logger = logging.getLogger(__name__)

MANDATORY_FIELDS = ("nombre", "apellido", "telefono")

# Campos del contacto que se aceptan; el resto se ignora
IMPORTABLE_FIELDS = (
    "nombre", "apellido", "email", "telefono", "empresa", "cargo",
    "source", "estado", "etapa", "direccion", "tags", "notas",
)


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ()))
    return f"{field}: {error.get('msg', 'valor inválido')}" if field else error.get("msg", "valor inválido")


def _clean_row(raw: dict[str, Any]) -> dict[str, Any]:
    row = {}
    for name in IMPORTABLE_FIELDS:
        value = raw.get(name)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                value = None
        if value is not None:
            row[name] = value
    if isinstance(row.get("tags"), str):
        row["tags"] = [tag.strip() for tag in row["tags"].split(",") if tag.strip()]
    if isinstance(row.get("telefono"), (int, float)):
        row["telefono"] = str(row["telefono"])
    return row


class ImportService:
    """Reconciliación de lotes de contactos contra los clientes existentes."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.clients = ClientService(db)

    async def reconcile(
        self, candidates: Iterable[tuple[int, dict[str, Any]]], owner: CurrentUser
    ) -> dict[str, Any]:
        """
        Procesa (número_de_fila, datos) en orden y reparte cada fila
        en created / duplicates / errors.
        """
        scope = policy_for(owner).visibility_filter(ResourceKind.CLIENT)
        created: list[Client] = []
        duplicates: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        total = 0

        for row_number, raw in candidates:
            total += 1
            row = _clean_row(raw)

            missing = [name for name in MANDATORY_FIELDS if not row.get(name)]
            if missing:
                errors.append({
                    "row": row_number,
                    "error": f"Faltan campos obligatorios: {', '.join(missing)}",
                    "data": row,
                })
                continue

            try:
                data = ClientCreate.model_validate(row)
            except PydanticValidationError as exc:
                errors.append({"row": row_number, "error": _first_error(exc), "data": row})
                continue

            existing = await self.clients.find_collision(data.telefono, data.email, scope=scope)
            if existing:
                duplicates.append({"data": row, "existing": client_reference(existing)})
                continue

            client = Client(
                **data.model_dump(exclude={"assigned_to_id", "referred_by_id"}),
                created_by_id=owner.id,
                assigned_to_id=owner.id,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(client)
            except SQLAlchemyError as exc:
                logger.warning("Fila %s no importada: %s", row_number, exc)
                errors.append({"row": row_number, "error": "Error guardando el contacto", "data": row})
                continue
            created.append(client)

        logger.info(
            "Importación de %s por usuario %s: %s creados, %s duplicados, %s errores",
            total, owner.id, len(created), len(duplicates), len(errors),
        )
        return {
            "message": f"Importación completada: {len(created)} clientes creados",
            "summary": {
                "total": total,
                "created": len(created),
                "duplicates": len(duplicates),
                "errors": len(errors),
            },
            "created_clients": [client_reference(client) for client in created],
            "duplicates": duplicates,
            "errors": errors,
        }
