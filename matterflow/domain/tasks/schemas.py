"""Task domain schemas - trigger context and materialization results"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..templates.sources import TriggerType
from .due_dates import ReferenceInstants


class TriggerContext(BaseModel):
    """The event that caused a materialization"""

    trigger_type: TriggerType
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    meeting_at: Optional[datetime] = None
    calendar_entry_id: Optional[int] = None
    meeting_location: Optional[str] = None
    uses_meeting_location: bool = False
    stage_name: Optional[str] = None

    def reference_instants(self, parent_completed_at: Optional[datetime] = None) -> ReferenceInstants:
        return ReferenceInstants(
            created_at=self.created_at,
            meeting_at=self.meeting_at,
            parent_completed_at=parent_completed_at,
        )


class MaterializedTaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: int
    matter_id: int
    stage_id: int
    task_number: int
    task_name: str
    due_date: Optional[date] = None
    assigned_user_id: Optional[int] = None
    assigned_user: Optional[str] = None
    calendar_entry_id: Optional[int] = None
    status: str


class TaskFailure(BaseModel):
    task_number: int
    task_title: str
    error: str
    error_code: Optional[str] = None


class MaterializationResult(BaseModel):
    """Outcome of generating or patching a stage's tasks"""

    tasks: list[MaterializedTaskResponse] = []
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failures: list[TaskFailure] = []

    @property
    def failed(self) -> int:
        return len(self.failures)

    def merge(self, other: "MaterializationResult") -> "MaterializationResult":
        return MaterializationResult(
            tasks=self.tasks + other.tasks,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            failures=self.failures + other.failures,
        )

    def failure_details(self) -> Optional[list[dict[str, Any]]]:
        return [f.model_dump() for f in self.failures] if self.failures else None
