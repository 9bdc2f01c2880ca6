"""
Modelos del pipeline de ventas: deals e historial.

El historial es un libro de registro append-only. Sus snapshots
(old_data / new_data) son JSON libre porque los campos que interesan
cambian según la acción.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, BaseModel, JSONType, utcnow
from app.models.client import Client
from app.models.user import User


class PipelineStatus(str, enum.Enum):
    """Estados de un deal. Vocabulario abierto: no es un DAG estricto."""
    NUEVO = "NUEVO"
    CONTACTADO = "CONTACTADO"
    CITA_AGENDADA = "CITA_AGENDADA"
    SIN_RESPUESTA = "SIN_RESPUESTA"
    REPROGRAMAR = "REPROGRAMAR"
    NO_VENTA = "NO_VENTA"
    IRRELEVANTE = "IRRELEVANTE"
    NO_QUIERE_SPV = "NO_QUIERE_SPV"
    NO_QUIERE_DEMO = "NO_QUIERE_DEMO"
    VENTA_AGREGADO = "VENTA_AGREGADO"
    VENTA_NUEVA = "VENTA_NUEVA"
    VENTA_CAIDA = "VENTA_CAIDA"


# Estados ganados: promueven la etapa del cliente
WON_STATUSES = frozenset({PipelineStatus.VENTA_NUEVA, PipelineStatus.VENTA_AGREGADO})


class Priority(str, enum.Enum):
    ALTA = "ALTA"
    MEDIA = "MEDIA"
    BAJA = "BAJA"


# Un solo tipo compartido por deals y tareas (un único CREATE TYPE en PostgreSQL)
PriorityType = Enum(Priority, name="priority")


class HistoryAction(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNED = "ASSIGNED"
    BULK_UPDATED = "BULK_UPDATED"
    DELETED = "DELETED"


class PipelineItem(BaseModel):
    """Deal / oportunidad ligada a exactamente un cliente."""

    __tablename__ = "pipeline_items"

    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    products: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    priority: Mapped[Priority] = mapped_column(
        PriorityType, default=Priority.MEDIA, nullable=False
    )
    status: Mapped[PipelineStatus] = mapped_column(
        Enum(PipelineStatus, name="pipeline_status"), default=PipelineStatus.NUEVO, nullable=False
    )

    # --- Seguimiento ---
    last_contact: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    demo_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_plan: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    # --- Referencias ---
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    client: Mapped[Client] = relationship()
    assigned_to: Mapped[User | None] = relationship(foreign_keys=[assigned_to_id])
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])

    __table_args__ = (
        Index("ix_pipeline_items_status_priority", "status", "priority"),
    )

    def __repr__(self) -> str:
        return f"<PipelineItem {self.id} {self.status.value} (cliente {self.client_id})>"


class PipelineHistory(Base):
    """
    Entrada del historial de un deal.

    pipeline_item_id no tiene FK: el historial sobrevive al borrado del
    deal (la entrada DELETED tiene que seguir existiendo).
    """

    __tablename__ = "pipeline_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    pipeline_item_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[HistoryAction] = mapped_column(Enum(HistoryAction, name="history_action"), nullable=False)
    old_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    new_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    changed_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    changed_by: Mapped[User | None] = relationship()

    def __repr__(self) -> str:
        return f"<PipelineHistory {self.action.value} item {self.pipeline_item_id}>"
