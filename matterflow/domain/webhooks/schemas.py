"""Webhook domain schemas - Clio webhook payloads and automation results"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..tasks.schemas import MaterializationResult, TaskFailure


class WebhookData(BaseModel):
    """The resource a Clio webhook refers to (only its id and timestamps are trusted)"""

    model_config = ConfigDict(extra="allow")

    id: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    deleted_at: Optional[str] = None
    matter_stage_updated_at: Optional[str] = None


class ClioWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[Union[int, str]] = None
    type: Optional[str] = None
    occurred_at: Optional[str] = None
    data: WebhookData

    @property
    def webhook_id(self) -> Optional[str]:
        return str(self.id) if self.id is not None else None

    def as_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class AutomationResult(BaseModel):
    """Response body for a processed webhook"""

    success: Optional[bool] = True
    action: str
    tasks_created: int = 0
    tasks_updated: int = 0
    cached: bool = False
    failures: list[TaskFailure] = []

    @classmethod
    def from_materialization(cls, result: MaterializationResult, action: str) -> "AutomationResult":
        return cls(
            success=not result.failures,
            action="partial_failure" if result.failures else action,
            tasks_created=result.created,
            tasks_updated=result.updated,
            failures=result.failures,
        )


class HealthResponse(BaseModel):
    status: str
    database: str
    test_mode: bool
