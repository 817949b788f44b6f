"""Template domain schemas - normalized task template records"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class TemplateRecord(BaseModel):
    """One row of a stage's task checklist, independent of the table it came from"""

    model_config = ConfigDict(from_attributes=True)

    source: str
    stage_id: int
    stage_name: Optional[str] = None
    task_number: int
    task_title: str
    task_description: Optional[str] = None
    assignee: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date_value: int = 0
    due_date_time_relation: str = "days"
    due_date_relation: str = "after creation"
    calendar_event_id: Optional[int] = None

    @field_validator("due_date_value", mode="before")
    @classmethod
    def coerce_value(cls, v):
        if v is None or v == "":
            return 0
        return int(v)

    @field_validator("calendar_event_id", mode="before")
    @classmethod
    def blank_event_id(cls, v):
        return None if v == "" else v

    @field_validator("due_date_time_relation", mode="before")
    @classmethod
    def default_unit(cls, v):
        return (v or "days").strip().lower()

    @field_validator("due_date_relation", mode="before")
    @classmethod
    def default_relation(cls, v):
        return (v or "after creation").strip()

    @field_validator("assignee_id", mode="before")
    @classmethod
    def stringify_assignee_id(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class TemplateValidation(BaseModel):
    valid: bool
    errors: list[str] = []
