"""Assignee domain schemas"""

from typing import Any, Optional

from pydantic import BaseModel

from ...shared.error_codes import ErrorCode


class MatterContext(BaseModel):
    """The parts of a Clio matter that task generation depends on"""

    matter_id: int
    display_number: Optional[str] = None
    status: Optional[str] = None
    location: Optional[str] = None
    stage_id: Optional[int] = None
    stage_name: Optional[str] = None
    practice_area_id: Optional[int] = None
    practice_area_name: Optional[str] = None
    responsible_attorney_id: Optional[int] = None
    responsible_attorney_name: Optional[str] = None
    originating_attorney_id: Optional[int] = None
    originating_attorney_name: Optional[str] = None

    @classmethod
    def from_clio(cls, matter: dict[str, Any]) -> "MatterContext":
        stage = matter.get("matter_stage") or {}
        practice_area = matter.get("practice_area") or {}
        responsible = matter.get("responsible_attorney") or {}
        originating = matter.get("originating_attorney") or {}
        return cls(
            matter_id=matter["id"],
            display_number=matter.get("display_number"),
            status=matter.get("status"),
            location=matter.get("location"),
            stage_id=stage.get("id"),
            stage_name=stage.get("name"),
            practice_area_id=practice_area.get("id"),
            practice_area_name=practice_area.get("name"),
            responsible_attorney_id=responsible.get("id"),
            responsible_attorney_name=responsible.get("name"),
            originating_attorney_id=originating.get("id"),
            originating_attorney_name=originating.get("name"),
        )

    @property
    def attorney_id(self) -> Optional[int]:
        """Responsible attorney, falling back to the originating attorney"""
        return self.responsible_attorney_id or self.originating_attorney_id

    @property
    def attorney_name(self) -> Optional[str]:
        if self.responsible_attorney_id:
            return self.responsible_attorney_name
        return self.originating_attorney_name

    @property
    def is_closed(self) -> bool:
        return self.status == "Closed"


class AssigneeResolution(BaseModel):
    """Outcome of an assignee lookup - either a user or an error code"""

    id: Optional[int] = None
    name: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.id is not None

    @classmethod
    def user(cls, user_id: int, name: Optional[str]) -> "AssigneeResolution":
        return cls(id=int(user_id), name=name)

    @classmethod
    def unresolved(cls, error_code: ErrorCode, message: str) -> "AssigneeResolution":
        return cls(error_code=error_code, message=message)
