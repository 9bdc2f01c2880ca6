"""Schemas Pydantic para tareas."""

from datetime import datetime

from pydantic import Field, field_validator

from app.models.pipeline import Priority
from app.models.task import TaskStatus, TaskType
from app.schemas.common import CamelModel, Pagination, UserCount, UserSummary, to_utc, unique_ids

# ============================================
# Entrada
# ============================================


class TaskCreate(CamelModel):
    title: str = Field(..., min_length=3, max_length=100, examples=["Llamar para confirmar demo"])
    description: str | None = Field(None, max_length=500)
    type: TaskType = TaskType.SEGUIMIENTO
    priority: Priority = Priority.MEDIA
    status: TaskStatus = TaskStatus.PENDING
    due_date: datetime
    reminder_enabled: bool = False
    reminder_minutes: int | None = Field(None, ge=0, le=60 * 24 * 7)
    client_id: int | None = None
    assigned_to_id: int | None = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()


class TaskUpdate(CamelModel):
    title: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, max_length=500)
    type: TaskType | None = None
    priority: Priority | None = None
    status: TaskStatus | None = None
    due_date: datetime | None = None
    reminder_enabled: bool | None = None
    reminder_minutes: int | None = Field(None, ge=0, le=60 * 24 * 7)
    client_id: int | None = None
    assigned_to_id: int | None = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: datetime | None) -> datetime | None:
        return to_utc(v)


class TaskStatusChange(CamelModel):
    status: TaskStatus


class TaskPriorityChange(CamelModel):
    priority: Priority


class ReminderRequest(CamelModel):
    reminder_minutes: int = Field(30, ge=0, le=60 * 24 * 7)


class TaskBulkFields(CamelModel):
    status: TaskStatus | None = None
    priority: Priority | None = None
    type: TaskType | None = None
    due_date: datetime | None = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: datetime | None) -> datetime | None:
        return to_utc(v)


class TaskIds(CamelModel):
    task_ids: list[int] = Field(..., min_length=1, max_length=500)

    @field_validator("task_ids")
    @classmethod
    def dedupe(cls, v: list[int]) -> list[int]:
        return unique_ids(v)


class TaskBulkUpdate(TaskIds):
    updates: TaskBulkFields


class TaskBulkAssign(TaskIds):
    assigned_to_id: int


# ============================================
# Salida
# ============================================


class TaskClient(CamelModel):
    id: int
    nombre: str
    apellido: str
    telefono: str
    email: str | None


class TaskResponse(CamelModel):
    id: int
    title: str
    description: str | None
    type: TaskType
    status: TaskStatus
    priority: Priority
    due_date: datetime
    completed_at: datetime | None
    reminder_enabled: bool
    reminder_minutes: int | None
    event_id: str | None
    calendar_id: str | None
    client_id: int | None
    created_by_id: int
    assigned_to_id: int | None
    created_at: datetime
    updated_at: datetime

    client: TaskClient | None = None
    assigned_to: UserSummary | None = None


class TaskListResponse(CamelModel):
    tasks: list[TaskResponse]
    pagination: Pagination


class TaskCollection(CamelModel):
    """Listas sin paginar (vencidas, próximas, búsqueda)."""
    tasks: list[TaskResponse]
    count: int


class TaskStats(CamelModel):
    total: int
    pending: int
    in_progress: int
    completed: int
    cancelled: int
    overdue: int
    today: int
    this_week: int
    by_type: dict[str, int]
    by_priority: dict[str, int]
    by_status: dict[str, int]
    by_user: list[UserCount] | None = None
