"""Tareas comerciales (llamadas, reuniones, seguimientos...)."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel
from app.models.client import Client
from app.models.pipeline import Priority, PriorityType
from app.models.user import User


class TaskType(str, enum.Enum):
    LLAMADA = "LLAMADA"
    EMAIL = "EMAIL"
    REUNION = "REUNION"
    SEGUIMIENTO = "SEGUIMIENTO"
    DOCUMENTO = "DOCUMENTO"


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Estados que cuentan como "abiertos" para vencidas / próximas
OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class Task(BaseModel):
    """Tarea con fecha límite, opcionalmente ligada a un cliente."""

    __tablename__ = "tasks"

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[TaskType] = mapped_column(
        Enum(TaskType, name="task_type"), default=TaskType.SEGUIMIENTO, nullable=False
    )
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status"), default=TaskStatus.PENDING, nullable=False
    )
    priority: Mapped[Priority] = mapped_column(
        PriorityType, default=Priority.MEDIA, nullable=False
    )
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Recordatorio ---
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_minutes: Mapped[int | None] = mapped_column(nullable=True)

    # --- Calendario externo (solo se guarda el vínculo) ---
    event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- Referencias ---
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"), nullable=True, index=True)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    client: Mapped[Client | None] = relationship()
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])
    assigned_to: Mapped[User | None] = relationship(foreign_keys=[assigned_to_id])

    __table_args__ = (
        Index("ix_tasks_status_due_date", "status", "due_date"),
    )

    def __repr__(self) -> str:
        return f"<Task {self.title} ({self.status.value})>"
