"""
Lectura y escritura de Excel para clientes (pandas + openpyxl).

Solo formato: no sabe nada de permisos ni de duplicados.
"""

import io
import logging
from typing import Any

import pandas as pd

from app.errors import ValidationError
from app.models.client import Client, ClientSource, ClientStatus

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
ALLOWED_EXTENSIONS = (".xlsx", ".xls")

# Orden de columnas de la plantilla de importación
IMPORT_COLUMNS = [
    "nombre", "apellido", "email", "telefono", "empresa", "cargo",
    "source", "estado", "etapa", "direccion", "tags",
]
REQUIRED_COLUMNS = ("nombre", "apellido", "telefono")

EXPORT_COLUMNS = [
    ("ID", "id"),
    ("Nombre", "nombre"),
    ("Apellido", "apellido"),
    ("Email", "email"),
    ("Teléfono", "telefono"),
    ("Empresa", "empresa"),
    ("Cargo", "cargo"),
    ("Dirección", "direccion"),
    ("Fuente", "source"),
    ("Estado", "estado"),
    ("Etapa", "etapa"),
    ("Tags", "tags"),
    ("Notas", "notas"),
    ("Asignado a", "assigned_to"),
    ("Creado por", "created_by"),
    ("Fecha de creación", "created_at"),
]

TEMPLATE_EXAMPLES = [
    {
        "nombre": "Juan", "apellido": "Pérez", "email": "juan.perez@email.com",
        "telefono": "+54911234567", "empresa": "Empresa SA", "cargo": "Gerente",
        "source": ClientSource.LANDING.value, "estado": ClientStatus.ACTIVO.value,
        "etapa": "Prospecto", "direccion": "Av. Corrientes 1234", "tags": "vip,interesado",
    },
    {
        "nombre": "María", "apellido": "García", "email": "",
        "telefono": "+54911234568", "empresa": "", "cargo": "",
        "source": ClientSource.REFERIDO.value, "estado": ClientStatus.ACTIVO.value,
        "etapa": "", "direccion": "", "tags": "",
    },
]


def validate_upload(filename: str | None, content: bytes) -> None:
    if not filename or not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise ValidationError.for_field("file", "Solo se permiten archivos Excel (.xlsx, .xls)", filename)
    if not content:
        raise ValidationError.for_field("file", "El archivo está vacío", filename)
    if len(content) > MAX_FILE_SIZE:
        raise ValidationError.for_field("file", "El archivo es demasiado grande. Máximo 10MB permitido.", filename)


def _cell(value: Any) -> str | None:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def parse_clients_workbook(content: bytes) -> list[tuple[int, dict[str, Any]]]:
    """
    Lee la primera hoja y devuelve [(fila_excel, datos), ...].

    La fila 1 es la cabecera, así que la primera fila de datos es la 2.
    Las filas completamente vacías se saltan.
    """
    try:
        df = pd.read_excel(io.BytesIO(content), dtype=str)
    except Exception as exc:
        logger.info("Excel ilegible: %s", exc)
        raise ValidationError.for_field("file", "No se pudo leer el archivo Excel")

    df.columns = [str(column).strip().lower() for column in df.columns]
    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ValidationError.for_field(
            "file", f"Faltan columnas obligatorias: {', '.join(missing)}", list(df.columns)
        )

    rows: list[tuple[int, dict[str, Any]]] = []
    for index, record in enumerate(df.to_dict(orient="records")):
        data = {column: _cell(record.get(column)) for column in IMPORT_COLUMNS}
        if not any(data.values()):
            continue
        rows.append((index + 2, {k: v for k, v in data.items() if v is not None}))
    return rows


def _export_value(client: Client, attribute: str) -> Any:
    value = getattr(client, attribute)
    if attribute in ("assigned_to", "created_by"):
        return value.full_name if value is not None else ""
    if attribute == "tags":
        return ", ".join(value or [])
    if attribute == "created_at":
        return value.strftime("%Y-%m-%d %H:%M")
    return getattr(value, "value", value)


def _to_xlsx(sheets: dict[str, pd.DataFrame]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


def clients_to_xlsx(clients: list[Client]) -> bytes:
    """Exporta clientes (con assigned_to y created_by cargados) a xlsx."""
    records = [
        {header: _export_value(client, attribute) for header, attribute in EXPORT_COLUMNS}
        for client in clients
    ]
    frame = pd.DataFrame(records, columns=[header for header, _ in EXPORT_COLUMNS])
    return _to_xlsx({"Clientes": frame})


def import_template_xlsx() -> bytes:
    """Plantilla con las columnas de importación, ejemplos y una hoja de instrucciones."""
    examples = pd.DataFrame(TEMPLATE_EXAMPLES, columns=IMPORT_COLUMNS)
    instructions = pd.DataFrame(
        {
            "Columna": IMPORT_COLUMNS,
            "Obligatoria": ["Sí" if column in REQUIRED_COLUMNS else "No" for column in IMPORT_COLUMNS],
            "Descripción": [
                "Nombre del contacto",
                "Apellido del contacto",
                "Email (opcional, se usa para detectar duplicados)",
                "Teléfono (se usa para detectar duplicados)",
                "Empresa",
                "Cargo",
                f"Fuente: {', '.join(source.value for source in ClientSource)} (por defecto OTRO)",
                f"Estado: {', '.join(status.value for status in ClientStatus)} (por defecto ACTIVO)",
                "Etapa comercial (texto libre)",
                "Dirección",
                "Tags separados por comas",
            ],
        }
    )
    return _to_xlsx({"Clientes": examples, "Instrucciones": instructions})
