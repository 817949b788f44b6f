from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .database import Base


class TaskTemplateColumns:
    """Columns shared by the three task template tables"""

    id = Column(Integer, primary_key=True, index=True)
    stage_id = Column(BigInteger, nullable=False, index=True)
    stage_name = Column(String(255), nullable=True)
    task_number = Column(Integer, nullable=False)
    task_title = Column(String(500), nullable=False)
    task_description = Column(Text, nullable=True)
    # Assignment rule tag: VA, CSC, PARALEGAL, ATTORNEY, FUNDING_COOR, FUND_TABLE or a numeric user id
    assignee = Column(String(100), nullable=True)
    # Explicit numeric user id, or a lookup reference such as "location" / "attorney"
    assignee_id = Column(String(100), nullable=True)
    due_date_value = Column(Integer, default=0, nullable=True)
    due_date_time_relation = Column(String(50), default="days", nullable=True)  # days, hours, minutes
    due_date_relation = Column(String(255), nullable=True)  # e.g. "before meeting", "after task 3"
    created_at = Column(DateTime, server_default=func.now())


class NonMeetingTemplate(TaskTemplateColumns, Base):
    __tablename__ = "task_list_non_meeting"
    __table_args__ = (UniqueConstraint("stage_id", "task_number", name="uq_non_meeting_stage_task"),)


class ProbateTemplate(TaskTemplateColumns, Base):
    __tablename__ = "task_list_probate"
    __table_args__ = (UniqueConstraint("stage_id", "task_number", name="uq_probate_stage_task"),)


class MeetingTemplate(TaskTemplateColumns, Base):
    __tablename__ = "task_list_meeting"
    __table_args__ = (UniqueConstraint("stage_id", "task_number", name="uq_meeting_stage_task"),)

    calendar_event_id = Column(BigInteger, nullable=True, index=True)


class CalendarEventMapping(Base):
    """Maps a Clio calendar event type to the stage whose meeting templates it generates"""

    __tablename__ = "calendar_event_mappings"

    id = Column(Integer, primary_key=True, index=True)
    calendar_event_id = Column(BigInteger, unique=True, nullable=False, index=True)
    calendar_event_name = Column(String(255), nullable=True)
    stage_id = Column(BigInteger, nullable=False)
    stage_name = Column(String(255), nullable=True)
    # Signing meetings resolve CSC by the meeting location, never the matter location
    uses_meeting_location = Column(Boolean, default=False, nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class AssigneeReference(Base):
    __tablename__ = "assigned_user_reference"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False)
    name = Column(String(255), nullable=False)
    location = Column(JSON, default=list, nullable=True)  # e.g. ["Naples", "Bonita Springs"]
    attorney_id = Column(JSON, default=list, nullable=True)  # attorney ids this paralegal supports
    fund_table = Column(JSON, default=list, nullable=True)  # attorney ids for fund table tasks


class LocationKeyword(Base):
    __tablename__ = "location_keywords"

    id = Column(Integer, primary_key=True, index=True)
    keyword = Column(String(100), unique=True, nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class Task(Base):
    """A task materialized in Clio from a template"""

    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("matter_id", "stage_id", "task_number", name="uq_tasks_matter_stage_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(BigInteger, unique=True, nullable=False, index=True)  # Clio task id
    matter_id = Column(BigInteger, nullable=False, index=True)
    stage_id = Column(BigInteger, nullable=False)
    stage_name = Column(String(255), nullable=True)
    task_number = Column(Integer, nullable=False)
    task_name = Column(String(500), nullable=False)
    task_desc = Column(Text, nullable=True)
    assigned_user_id = Column(BigInteger, nullable=True)
    assigned_user = Column(String(255), nullable=True)
    due_date = Column(Date, nullable=True)  # NULL until the trigger event resolves it
    calendar_entry_id = Column(BigInteger, nullable=True, index=True)
    completed = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, completed, deleted
    completed_at = Column(DateTime, nullable=True)
    task_date_generated = Column(DateTime, server_default=func.now())
    due_date_generated = Column(DateTime, nullable=True)
    last_updated = Column(DateTime, server_default=func.now(), onupdate=func.now())


class MeetingBooking(Base):
    __tablename__ = "matters_meetings_booked"

    id = Column(Integer, primary_key=True, index=True)
    matter_id = Column(BigInteger, nullable=False, index=True)
    calendar_entry_id = Column(BigInteger, unique=True, nullable=False)
    calendar_event_id = Column(BigInteger, nullable=True)
    stage_id = Column(BigInteger, nullable=True)
    meeting_date = Column(DateTime, nullable=False)  # practice-local, naive
    location = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class MatterStageHistory(Base):
    __tablename__ = "matter_stage_history"

    id = Column(Integer, primary_key=True, index=True)
    matter_id = Column(BigInteger, nullable=False, index=True)
    matter_name = Column(String(255), nullable=True)
    stage_id = Column(BigInteger, nullable=False)
    stage_name = Column(String(255), nullable=True)
    practice_area_id = Column(BigInteger, nullable=True)
    changed_at = Column(DateTime, server_default=func.now(), nullable=False)


class WebhookEvent(Base):
    """Idempotency ledger - success is NULL while a delivery is processing"""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(255), unique=True, nullable=False, index=True)
    webhook_id = Column(String(100), nullable=True)
    event_type = Column(String(100), nullable=False)
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(BigInteger, nullable=True)
    success = Column(Boolean, nullable=True)
    action = Column(String(100), nullable=True)
    tasks_created = Column(Integer, default=0)
    tasks_updated = Column(Integer, default=0)
    processing_duration_ms = Column(Integer, nullable=True)
    failure_details = Column(JSON, nullable=True)
    webhook_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    processed_at = Column(DateTime, nullable=True)


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True, index=True)
    error_code = Column(String(100), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class EventTrace(Base):
    __tablename__ = "event_traces"

    id = Column(Integer, primary_key=True, index=True)
    trace_id = Column(String(64), unique=True, nullable=False, index=True)
    source = Column(String(50), nullable=False)  # e.g. clio
    trigger_name = Column(String(100), nullable=False)  # e.g. matter.updated
    resource_id = Column(BigInteger, nullable=True)
    status = Column(String(20), default="in_progress", nullable=False)
    result_action = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, server_default=func.now())
    ended_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)


class EventStep(Base):
    __tablename__ = "event_steps"

    id = Column(Integer, primary_key=True, index=True)
    trace_id = Column(String(64), nullable=False, index=True)
    layer_name = Column(String(50), nullable=False)  # webhook, processing, automation, service
    step_name = Column(String(100), nullable=False)
    status = Column(String(20), default="in_progress", nullable=False)
    step_metadata = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, server_default=func.now())
    ended_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)


class ClioToken(Base):
    __tablename__ = "clio_tokens"

    id = Column(Integer, primary_key=True, index=True)
    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
