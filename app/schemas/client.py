"""
Schemas Pydantic para clientes.

Los nombres de campo del negocio se mantienen en castellano
(nombre, apellido, telefono...) igual que en las columnas.
"""

from datetime import datetime
from typing import Any

from pydantic import EmailStr, Field, field_validator

from app.models.client import ClientSource, ClientStatus
from app.schemas.common import CamelModel, Pagination, UserCount, UserSummary, clean_tags, unique_ids

# ============================================
# Entrada
# ============================================


class ClientBase(CamelModel):
    nombre: str = Field(..., min_length=2, max_length=50, examples=["Juan"])
    apellido: str = Field(..., min_length=2, max_length=50, examples=["Pérez"])
    email: EmailStr | None = Field(None, examples=["juan@correo.com"])
    telefono: str = Field(..., min_length=1, max_length=30, examples=["+54911234567"])
    empresa: str | None = Field(None, max_length=100)
    cargo: str | None = Field(None, max_length=100)
    direccion: str | None = Field(None, max_length=255)
    source: ClientSource = ClientSource.OTRO
    estado: ClientStatus = ClientStatus.ACTIVO
    etapa: str | None = Field(None, max_length=30, examples=["Prospecto"])
    tags: list[str] = Field(default_factory=list, max_length=50)
    notas: str | None = Field(None, max_length=1000)
    custom_fields: dict[str, Any] | None = None

    @field_validator("email", mode="before")
    @classmethod
    def empty_email_is_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("nombre", "apellido", "telefono")
    @classmethod
    def strip_spaces(cls, v: str) -> str:
        return " ".join(v.split())

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str]) -> list[str]:
        return clean_tags(v) or []


class ClientCreate(ClientBase):
    """Alta de cliente. Si no viene assignedToId se asigna al creador."""
    assigned_to_id: int | None = None
    referred_by_id: int | None = None


class ClientUpdate(CamelModel):
    """Campos actualizables de un cliente. Todos opcionales."""
    nombre: str | None = Field(None, min_length=2, max_length=50)
    apellido: str | None = Field(None, min_length=2, max_length=50)
    email: EmailStr | None = None
    telefono: str | None = Field(None, min_length=1, max_length=30)
    empresa: str | None = Field(None, max_length=100)
    cargo: str | None = Field(None, max_length=100)
    direccion: str | None = Field(None, max_length=255)
    source: ClientSource | None = None
    estado: ClientStatus | None = None
    etapa: str | None = Field(None, max_length=30)
    tags: list[str] | None = Field(None, max_length=50)
    notas: str | None = Field(None, max_length=1000)
    custom_fields: dict[str, Any] | None = None
    assigned_to_id: int | None = None
    referred_by_id: int | None = None

    @field_validator("email", mode="before")
    @classmethod
    def empty_email_is_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str] | None:
        return clean_tags(v)


class ClientBulkFields(CamelModel):
    estado: ClientStatus | None = None
    etapa: str | None = Field(None, max_length=30)
    source: ClientSource | None = None
    assigned_to_id: int | None = None


class ClientBulkUpdate(CamelModel):
    client_ids: list[int] = Field(..., min_length=1, max_length=500)
    updates: ClientBulkFields

    @field_validator("client_ids")
    @classmethod
    def dedupe(cls, v: list[int]) -> list[int]:
        return unique_ids(v)


class ContactsImportRequest(CamelModel):
    """Importación de contactos ya parseados (p. ej. desde Google Contacts)."""
    contacts: list[dict[str, Any]] = Field(..., min_length=1, max_length=1000)


# ============================================
# Salida
# ============================================


class ClientResponse(CamelModel):
    id: int
    nombre: str
    apellido: str
    email: str | None
    telefono: str
    empresa: str | None
    cargo: str | None
    direccion: str | None
    source: ClientSource
    estado: ClientStatus
    etapa: str | None
    tags: list[str]
    notas: str | None
    custom_fields: dict[str, Any] | None
    created_by_id: int
    assigned_to_id: int | None
    referred_by_id: int | None
    created_at: datetime
    updated_at: datetime

    created_by: UserSummary | None = None
    assigned_to: UserSummary | None = None


class ClientSummary(CamelModel):
    """Referencia corta a un cliente (duplicados, resultados de importación)."""
    id: int
    nombre: str
    apellido: str
    telefono: str
    email: str | None = None


class ClientListResponse(CamelModel):
    clients: list[ClientResponse]
    pagination: Pagination


class RecentClientsResponse(CamelModel):
    clients: list[ClientResponse]
    count: int


class ClientStats(CamelModel):
    total: int
    active: int
    inactive: int
    recent: int
    period: int
    new_in_period: int
    by_source: dict[str, int]
    by_etapa: dict[str, int]
    by_estado: dict[str, int]
    by_user: list[UserCount] | None = None


class ClientCounts(CamelModel):
    total: int
    active: int
    inactive: int
    recent: int


class ClientDistribution(CamelModel):
    by_source: dict[str, int]
    by_etapa: dict[str, int]


class UserInfo(CamelModel):
    name: str
    role: str
    can_view_all: bool


class MyClientsSummary(CamelModel):
    summary: ClientCounts
    distribution: ClientDistribution
    user_info: UserInfo


class DuplicateEntry(CamelModel):
    data: dict[str, Any]
    existing: ClientSummary


class ImportErrorEntry(CamelModel):
    row: int
    error: str
    data: dict[str, Any]


class ImportSummary(CamelModel):
    total: int
    created: int
    duplicates: int
    errors: int


class ImportResult(CamelModel):
    message: str
    summary: ImportSummary
    created_clients: list[ClientSummary]
    duplicates: list[DuplicateEntry]
    errors: list[ImportErrorEntry]


class DuplicateCheckResult(CamelModel):
    total_checked: int
    duplicates_found: int
    duplicates: list[DuplicateEntry]
    can_proceed: bool
