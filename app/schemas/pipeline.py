"""
Schemas del pipeline de ventas y su historial.

value es decimal: acepta número o texto numérico y se devuelve como texto
para no perder precisión.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from app.models.pipeline import HistoryAction, PipelineStatus, Priority
from app.schemas.common import CamelModel, Pagination, UserSummary, clean_tags, to_utc, unique_ids

DATE_FIELDS = ("last_contact", "demo_date", "delivery_date")

# ============================================
# Entrada
# ============================================


class PipelineItemCreate(CamelModel):
    client_id: int
    products: list[str] = Field(..., max_length=50, examples=[["Plan Premium"]])
    value: Decimal | None = Field(None, ge=0, max_digits=14, decimal_places=2, examples=["1500.00"])
    priority: Priority = Priority.MEDIA
    status: PipelineStatus = PipelineStatus.NUEVO
    last_contact: datetime | None = None
    demo_date: datetime | None = None
    delivery_date: datetime | None = None
    payment_plan: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=1000)
    tags: list[str] = Field(default_factory=list, max_length=50)
    assigned_to_id: int | None = None

    @field_validator(*DATE_FIELDS)
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return to_utc(v)

    @field_validator("products")
    @classmethod
    def strip_products(cls, v: list[str]) -> list[str]:
        return [p.strip() for p in v if p.strip()]

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str]) -> list[str]:
        return clean_tags(v) or []


class PipelineItemUpdate(CamelModel):
    """Edición genérica. clientId no es editable: si llega se ignora."""
    products: list[str] | None = Field(None, max_length=50)
    value: Decimal | None = Field(None, ge=0, max_digits=14, decimal_places=2)
    priority: Priority | None = None
    status: PipelineStatus | None = None
    last_contact: datetime | None = None
    demo_date: datetime | None = None
    delivery_date: datetime | None = None
    payment_plan: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=1000)
    tags: list[str] | None = Field(None, max_length=50)
    assigned_to_id: int | None = None

    @field_validator(*DATE_FIELDS)
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return to_utc(v)

    @field_validator("products")
    @classmethod
    def strip_products(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        return [p.strip() for p in v if p.strip()]

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str] | None:
        return clean_tags(v)


class StatusChange(CamelModel):
    status: PipelineStatus


class PipelineBulkFields(CamelModel):
    status: PipelineStatus | None = None
    priority: Priority | None = None
    assigned_to_id: int | None = None


class PipelineBulkUpdate(CamelModel):
    item_ids: list[int] = Field(..., min_length=1, max_length=500)
    updates: PipelineBulkFields

    @field_validator("item_ids")
    @classmethod
    def dedupe(cls, v: list[int]) -> list[int]:
        return unique_ids(v)


# ============================================
# Salida
# ============================================


class PipelineClient(CamelModel):
    id: int
    nombre: str
    apellido: str
    telefono: str
    email: str | None
    empresa: str | None
    etapa: str | None


class PipelineItemResponse(CamelModel):
    id: int
    client_id: int
    products: list[str]
    value: Decimal | None
    priority: Priority
    status: PipelineStatus
    last_contact: datetime
    demo_date: datetime | None
    delivery_date: datetime | None
    payment_plan: str | None
    notes: str | None
    tags: list[str]
    assigned_to_id: int | None
    created_by_id: int
    created_at: datetime
    updated_at: datetime

    client: PipelineClient | None = None
    assigned_to: UserSummary | None = None


class HistoryEntryResponse(CamelModel):
    id: int
    pipeline_item_id: int
    action: HistoryAction
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    changed_by_id: int | None
    created_at: datetime

    changed_by: UserSummary | None = None


class PipelineItemDetail(PipelineItemResponse):
    history: list[HistoryEntryResponse] = []


class PipelineListResponse(CamelModel):
    items: list[PipelineItemResponse]
    pagination: Pagination


class StatusBucket(CamelModel):
    count: int
    value: Decimal


class PipelineStats(CamelModel):
    total: int
    converted: int
    conversion_rate: float
    total_value: Decimal
    unique_clients: int
    by_status: dict[str, StatusBucket]
    by_priority: dict[str, int]
