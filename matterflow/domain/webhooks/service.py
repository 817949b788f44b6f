"""
Webhook automations - Business logic for Clio webhook deliveries

Every delivery runs through the same pipeline: validate the timestamp,
check the idempotency ledger, reserve the key (success = NULL while
processing), run the automation and record its outcome. Exceptions mark the
event failed and propagate so the route answers 500 and Clio retries.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.orm import Session

from ...config import ROLLBACK_WINDOW_MINUTES, TEST_MATTER_ID, TEST_MODE
from ...services.clio_service import ClioService, is_not_found
from ...services.error_logger import log_error
from ...services.event_tracker import EventTracker
from ...shared.error_codes import ErrorCode
from ..assignees.schemas import MatterContext
from ..tasks.due_dates import parse_clio_datetime, to_practice_local
from ..tasks.repository import MeetingRepository, StageHistoryRepository, TaskRepository
from ..tasks.schemas import TriggerContext
from ..tasks.service import TaskMaterializer
from ..templates.repository import TemplateRepository, validate_templates
from ..templates.sources import TriggerType, select_template_source
from .repository import WebhookEventRepository
from .schemas import AutomationResult, ClioWebhookPayload

logger = logging.getLogger(__name__)


class WebhookValidationError(ValueError):
    """Raised when a webhook payload lacks the fields needed to process it"""

    pass


class AutomationService:
    """Service layer for the Clio webhook automations"""

    def __init__(
        self,
        db: Session,
        clio: ClioService,
        tracker: Optional[EventTracker] = None,
        test_mode: bool = TEST_MODE,
        test_matter_id: int = TEST_MATTER_ID,
        rollback_window_minutes: int = ROLLBACK_WINDOW_MINUTES,
    ):
        self.db = db
        self.clio = clio
        self.tracker = tracker or EventTracker(db)
        self.test_mode = test_mode
        self.test_matter_id = test_matter_id
        self.rollback_window_minutes = rollback_window_minutes
        self.events = WebhookEventRepository()
        self.tasks = TaskRepository()
        self.materializer = TaskMaterializer(db, clio)

    # ========================================================================
    # PIPELINE
    # ========================================================================

    async def _run(
        self,
        payload: ClioWebhookPayload,
        event_type: str,
        resource_type: str,
        timestamp: Optional[str],
        automation: Callable[[Optional[str]], Awaitable[AutomationResult]],
    ) -> AutomationResult:
        resource_id = payload.data.id
        trace_id = self.tracker.start_trace("clio", event_type, resource_id)

        if not timestamp:
            message = f"Webhook missing required timestamp for {event_type} {resource_id}"
            logger.error(f"❌ {message}")
            log_error(
                self.db,
                ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
                message,
                {"resource_id": resource_id, "webhook_id": payload.webhook_id},
            )
            self.tracker.end_trace(trace_id, status="error", error_message=message)
            raise WebhookValidationError(message)

        key = self.events.generate_idempotency_key(event_type, resource_id, timestamp)
        step_id = self.tracker.start_step(trace_id, "processing", "idempotency_check", {"key": key})

        existing = self.events.get_by_key(self.db, key)
        if existing:
            if existing.success is None:
                logger.info(f"⏳ {key} still processing (concurrent delivery)")
                self.tracker.end_step(step_id, status="skipped", metadata={"reason": "still_processing"})
                self.tracker.end_trace(trace_id, status="skipped", result_action="still_processing")
                return AutomationResult(success=None, action="still_processing")

            logger.info(f"🔁 {key} already processed at {existing.processed_at}")
            self.tracker.end_step(step_id, status="skipped", metadata={"reason": "already_processed"})
            self.tracker.end_trace(trace_id, status="skipped", result_action=existing.action)
            return AutomationResult(
                success=existing.success,
                action=existing.action,
                tasks_created=existing.tasks_created or 0,
                tasks_updated=existing.tasks_updated or 0,
                cached=True,
            )

        event = self.events.reserve(
            self.db,
            key,
            event_type,
            resource_type,
            resource_id,
            webhook_id=payload.webhook_id,
            payload=payload.as_record(),
        )
        if event is None:
            self.tracker.end_step(step_id, status="skipped", metadata={"reason": "still_processing"})
            self.tracker.end_trace(trace_id, status="skipped", result_action="still_processing")
            return AutomationResult(success=None, action="still_processing")
        self.tracker.end_step(step_id)

        started = time.monotonic()
        try:
            result = await automation(trace_id)
        except Exception as e:
            self.events.complete(
                self.db, event, success=False, action="error", processing_duration_ms=_elapsed_ms(started)
            )
            self.tracker.end_trace(trace_id, status="error", result_action="error", error_message=str(e))
            raise

        self.events.complete(
            self.db,
            event,
            success=result.success,
            action=result.action,
            tasks_created=result.tasks_created,
            tasks_updated=result.tasks_updated,
            processing_duration_ms=_elapsed_ms(started),
            failure_details=[f.model_dump() for f in result.failures] or None,
        )
        self.tracker.end_trace(
            trace_id, status="success" if result.success else "error", result_action=result.action
        )
        logger.info(f"✅ {event_type} {resource_id} completed: {result.action}")
        return result

    def _skipped_by_test_mode(self, matter_id: Optional[int]) -> bool:
        if self.test_mode and matter_id != self.test_matter_id:
            logger.info(f"🧪 Matter {matter_id} skipped (test mode, only {self.test_matter_id} is processed)")
            return True
        return False

    async def _fetch_matter(self, trace_id: Optional[str], matter_id: int) -> MatterContext:
        step_id = self.tracker.start_step(trace_id, "automation", "fetch_matter", {"matter_id": matter_id})
        try:
            matter = MatterContext.from_clio(await self.clio.get_matter(matter_id))
        except httpx.HTTPError as e:
            self.tracker.end_step(step_id, status="error", error_message=str(e))
            raise
        self.tracker.end_step(
            step_id, metadata={"status": matter.status, "stage_id": matter.stage_id, "stage": matter.stage_name}
        )
        return matter

    # ========================================================================
    # MATTER STAGE CHANGE
    # ========================================================================

    async def handle_matter_updated(self, payload: ClioWebhookPayload) -> AutomationResult:
        data = payload.data
        timestamp = data.matter_stage_updated_at or data.updated_at
        return await self._run(
            payload,
            "matter.updated",
            "matter",
            timestamp,
            lambda trace_id: self._process_matter(trace_id, data.id),
        )

    async def _process_matter(self, trace_id: Optional[str], matter_id: int) -> AutomationResult:
        if self._skipped_by_test_mode(matter_id):
            return AutomationResult(action="skipped_test_mode")

        matter = await self._fetch_matter(trace_id, matter_id)

        if matter.is_closed:
            logger.info(f"⏭️ Matter {matter_id} is closed, skipping")
            return AutomationResult(action="skipped_closed_matter")

        if not matter.stage_id or not matter.stage_name:
            message = "Matter missing required stage information"
            logger.error(f"❌ Matter {matter_id}: {message}")
            log_error(self.db, ErrorCode.VALIDATION_MISSING_STAGE, message, {"matter_id": matter_id})
            return AutomationResult(success=False, action="missing_stage")

        previous = StageHistoryRepository.get_last_stage(self.db, matter_id)
        stage_changed = previous is None or previous.stage_id != matter.stage_id

        if stage_changed:
            logger.info(f"🔀 Matter {matter_id} moved to stage {matter.stage_name} ({matter.stage_id})")
            if previous is not None and self._within_rollback_window(previous.changed_at):
                deleted = await self.materializer.rollback_recent_tasks(
                    matter_id, previous.stage_id, self.rollback_window_minutes
                )
                logger.info(f"↩️ Matter {matter_id}: rollback removed {deleted} tasks from {previous.stage_name}")

            StageHistoryRepository.record_stage(
                self.db,
                matter_id=matter_id,
                matter_name=matter.display_number,
                stage_id=matter.stage_id,
                stage_name=matter.stage_name,
                practice_area_id=matter.practice_area_id,
                changed_at=datetime.utcnow(),
            )

        active_tasks = self.tasks.get_stage_tasks(self.db, matter_id, matter.stage_id)
        if any(task.calendar_entry_id is not None for task in active_tasks):
            logger.info(f"📅 Matter {matter_id}: calendar automation owns this stage's tasks, skipping")
            return AutomationResult(action="skipped_calendar_tasks_exist")

        source = select_template_source(TriggerType.STAGE_CHANGE, matter.practice_area_id)
        templates = TemplateRepository.get_stage_templates(self.db, source, matter.stage_id)
        if not templates:
            logger.info(f"ℹ️ Matter {matter_id}: no templates for stage {matter.stage_name}")
            return AutomationResult(action="no_templates")

        validation = validate_templates(templates)
        if not validation.valid:
            for error in validation.errors:
                code = ErrorCode.TEMPLATE_DUPLICATE if "Duplicate" in error else ErrorCode.TEMPLATE_MISSING
                log_error(
                    self.db,
                    code,
                    error,
                    {"matter_id": matter_id, "stage_id": matter.stage_id, "stage_name": matter.stage_name},
                )
            logger.error(f"❌ Matter {matter_id}: template validation failed: {validation.errors}")
            return AutomationResult(success=False, action="template_validation_failed")

        step_id = self.tracker.start_step(trace_id, "automation", "generate_tasks", {"templates": len(templates)})
        booking = MeetingRepository.get_latest_meeting(self.db, matter_id, matter.stage_id)
        if booking:
            logger.info(f"📅 Matter {matter_id}: meeting already booked for {booking.meeting_date}")
        trigger = TriggerContext(
            trigger_type=TriggerType.STAGE_CHANGE,
            meeting_at=booking.meeting_date if booking else None,
            stage_name=matter.stage_name,
        )
        result = await self.materializer.materialize_stage_tasks(matter.stage_id, matter, trigger)
        self.tracker.end_step(
            step_id,
            status="error" if result.failures else "success",
            metadata={"created": result.created, "skipped": result.skipped, "failed": result.failed},
        )
        return AutomationResult.from_materialization(result, "created_tasks")

    def _within_rollback_window(self, changed_at: Optional[datetime]) -> bool:
        if not changed_at:
            return False
        return changed_at >= datetime.utcnow() - timedelta(minutes=self.rollback_window_minutes)

    # ========================================================================
    # MEETING SCHEDULED
    # ========================================================================

    async def handle_calendar_entry(self, payload: ClioWebhookPayload) -> AutomationResult:
        data = payload.data
        is_update = bool(data.updated_at) and data.created_at != data.updated_at
        event_type = "calendar_entry.updated" if is_update else "calendar_entry.created"
        timestamp = data.updated_at if is_update else data.created_at
        return await self._run(
            payload,
            event_type,
            "calendar_entry",
            timestamp,
            lambda trace_id: self._process_calendar_entry(trace_id, data.id),
        )

    async def _process_calendar_entry(self, trace_id: Optional[str], calendar_entry_id: int) -> AutomationResult:
        entry = await self.clio.get_calendar_entry(calendar_entry_id)
        matter_id = (entry.get("matter") or {}).get("id")
        event_type_id = (entry.get("calendar_entry_event_type") or {}).get("id")

        if not matter_id:
            logger.info(f"ℹ️ Calendar entry {calendar_entry_id} has no matter, skipping")
            return AutomationResult(action="skipped_no_matter")

        if self._skipped_by_test_mode(matter_id):
            return AutomationResult(action="skipped_test_mode")

        if not event_type_id:
            logger.info(f"ℹ️ Calendar entry {calendar_entry_id} has no event type, skipping")
            return AutomationResult(action="skipped_no_event_type")

        mapping = TemplateRepository.get_calendar_event_mapping(self.db, event_type_id)
        if not mapping:
            logger.info(f"ℹ️ Calendar event type {event_type_id} is not mapped to a stage, skipping")
            return AutomationResult(action="skipped_unmapped_event_type")

        meeting_at = parse_clio_datetime(entry.get("start_at"))
        if not meeting_at:
            message = f"Calendar entry {calendar_entry_id} missing start_at"
            log_error(
                self.db,
                ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
                message,
                {"calendar_entry_id": calendar_entry_id, "matter_id": matter_id},
            )
            return AutomationResult(success=False, action="missing_meeting_date")

        matter = await self._fetch_matter(trace_id, matter_id)
        if matter.is_closed:
            logger.info(f"⏭️ Matter {matter_id} is closed, skipping")
            return AutomationResult(action="skipped_closed_matter")

        location = entry.get("location")
        MeetingRepository.upsert_booking(
            self.db,
            matter_id=matter_id,
            calendar_entry_id=calendar_entry_id,
            meeting_date=to_practice_local(meeting_at),
            calendar_event_id=event_type_id,
            stage_id=mapping.stage_id,
            location=location,
        )
        logger.info(
            f"📅 Matter {matter_id}: {mapping.calendar_event_name or mapping.stage_name} booked for "
            f"{meeting_at.isoformat()} (location: {location or 'not specified'})"
        )

        step_id = self.tracker.start_step(
            trace_id, "automation", "generate_tasks", {"stage_id": mapping.stage_id, "calendar_entry_id": calendar_entry_id}
        )
        patched = await self.materializer.apply_meeting(matter, mapping.stage_id, meeting_at, calendar_entry_id)
        trigger = TriggerContext(
            trigger_type=TriggerType.CALENDAR_EVENT,
            created_at=datetime.now(timezone.utc),
            meeting_at=meeting_at,
            calendar_entry_id=calendar_entry_id,
            meeting_location=location,
            uses_meeting_location=bool(mapping.uses_meeting_location),
            stage_name=mapping.stage_name,
        )
        created = await self.materializer.materialize_stage_tasks(mapping.stage_id, matter, trigger)
        result = patched.merge(created)
        self.tracker.end_step(
            step_id,
            status="error" if result.failures else "success",
            metadata={"created": result.created, "updated": result.updated, "failed": result.failed},
        )

        action = "meeting_tasks_generated" if result.created or result.updated else "no_changes"
        return AutomationResult.from_materialization(result, action)

    # ========================================================================
    # TASK UPDATED / COMPLETED
    # ========================================================================

    async def handle_task_updated(self, payload: ClioWebhookPayload) -> AutomationResult:
        data = payload.data
        timestamp = data.completed_at or data.updated_at
        return await self._run(
            payload,
            "task.updated",
            "task",
            timestamp,
            lambda trace_id: self._process_task(trace_id, data.id),
        )

    async def _process_task(self, trace_id: Optional[str], task_id: int) -> AutomationResult:
        try:
            clio_task = await self.clio.get_task(task_id)
        except httpx.HTTPStatusError as e:
            if not is_not_found(e):
                raise
            record = self.tasks.get_task(self.db, task_id)
            if not record:
                logger.info(f"ℹ️ Task {task_id} not found in Clio or locally, skipping")
                return AutomationResult(action="not_found")
            logger.info(f"🗑️ Task {task_id} no longer exists in Clio, marking as deleted")
            self.tasks.update_task(self.db, record, status="deleted")
            return AutomationResult(action="task_deleted")

        matter_id = (clio_task.get("matter") or {}).get("id")
        if not matter_id:
            message = "Task missing required matter association"
            log_error(self.db, ErrorCode.VALIDATION_MISSING_MATTER, message, {"task_id": task_id})
            return AutomationResult(success=False, action="missing_matter")

        if self._skipped_by_test_mode(matter_id):
            return AutomationResult(action="skipped_test_mode")

        record = self.tasks.get_task(self.db, task_id)
        if not record:
            logger.info(f"ℹ️ Task {task_id} is not tracked, skipping")
            return AutomationResult(action="not_found")

        if clio_task.get("status") != "complete":
            if record.completed:
                logger.info(f"🔓 Task {task_id} reopened: {record.task_name}")
                self.tasks.update_task(self.db, record, completed=False, status="pending", completed_at=None)
                return AutomationResult(action="task_reopened")
            return AutomationResult(action="skipped_not_completed")

        if record.completed:
            return AutomationResult(action="already_completed")

        completed_at = parse_clio_datetime(clio_task.get("completed_at")) or datetime.now(timezone.utc)
        self.tasks.update_task(
            self.db, record, completed=True, status="completed", completed_at=to_practice_local(completed_at)
        )
        logger.info(f"☑️ Task {task_id} completed: {record.task_name}")

        matter = await self._fetch_matter(trace_id, matter_id)
        if matter.is_closed:
            logger.info(f"⏭️ Matter {matter_id} is closed, skipping follow-ups")
            return AutomationResult(action="skipped_closed_matter")

        step_id = self.tracker.start_step(trace_id, "automation", "dependent_tasks", {"task_number": record.task_number})
        result = await self.materializer.apply_task_completion(record, completed_at, matter)
        self.tracker.end_step(
            step_id,
            status="error" if result.failures else "success",
            metadata={"created": result.created, "updated": result.updated},
        )

        action = "dependent_tasks" if result.created or result.updated else "none"
        return AutomationResult.from_materialization(result, action)

    # ========================================================================
    # TASK DELETED
    # ========================================================================

    async def handle_task_deleted(self, payload: ClioWebhookPayload) -> AutomationResult:
        data = payload.data
        timestamp = data.deleted_at or payload.occurred_at
        return await self._run(
            payload,
            "task.deleted",
            "task",
            timestamp,
            lambda trace_id: self._process_task_deleted(data.id),
        )

    async def _process_task_deleted(self, task_id: int) -> AutomationResult:
        record = self.tasks.get_task(self.db, task_id)
        if not record:
            logger.info(f"ℹ️ Task {task_id} not tracked - already deleted or never generated")
            return AutomationResult(action="task_not_found")

        if self._skipped_by_test_mode(record.matter_id):
            return AutomationResult(action="skipped_test_mode")

        self.tasks.update_task(self.db, record, status="deleted")
        logger.info(f"🗑️ Task {task_id} marked as deleted: {record.task_name} (matter {record.matter_id})")
        return AutomationResult(action="task_marked_deleted")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
