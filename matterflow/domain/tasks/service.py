"""
Task materializer - Business logic for turning templates into Clio tasks

A stage's templates become live Clio tasks plus one row each in the tasks
table. Tasks whose trigger has not happened yet (meeting-relative before the
meeting is booked, "after task N" before the parent completes) are created
without a due date and patched once the trigger arrives.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ...models import Task
from ...services.clio_service import ClioService, is_not_found
from ...services.error_logger import log_error
from ...shared.error_codes import ErrorCode
from ..assignees.resolver import AssigneeResolver
from ..assignees.schemas import AssigneeResolution, MatterContext
from ..templates.repository import TemplateRepository, is_deferred_attempt
from ..templates.schemas import TemplateRecord
from ..templates.sources import MEETING, TriggerType, select_template_source
from .dependencies import find_dependent_templates, get_dependency_chain, resolve_parent_tasks
from .due_dates import (
    ReferenceInstants,
    RelationKind,
    classify_relation,
    format_for_clio,
    resolve_due_date,
)
from .repository import TaskRepository
from .schemas import MaterializationResult, MaterializedTaskResponse, TaskFailure, TriggerContext

logger = logging.getLogger(__name__)

ATTEMPT_PATTERN = re.compile(r"\battempt\s+([123])\b", re.IGNORECASE)


def next_attempt_title(task_name: Optional[str]) -> Optional[str]:
    """Attempt 1 -> attempt 2 -> attempt 3 -> no response"""
    match = ATTEMPT_PATTERN.search(task_name or "")
    if not match:
        return None
    number = int(match.group(1))
    return "no response" if number == 3 else f"attempt {number + 1}"


class TaskMaterializer:
    """Service layer for task generation and due-date patching"""

    def __init__(self, db: Session, clio: ClioService):
        self.db = db
        self.clio = clio
        self.repo = TaskRepository()
        self.templates = TemplateRepository()
        self.assignees = AssigneeResolver(db)

    # ========================================================================
    # STAGE / MEETING GENERATION
    # ========================================================================

    async def materialize_stage_tasks(
        self, stage_id: int, matter: MatterContext, trigger: TriggerContext
    ) -> MaterializationResult:
        """
        Create the Clio tasks for a stage's templates.

        Templates already materialized for the matter are skipped, deleted
        ones are regenerated in place. Follow-up attempts are left for the
        attempt sequence when the trigger is a stage change.
        """
        source = select_template_source(trigger.trigger_type, matter.practice_area_id)
        templates = self.templates.get_stage_templates(self.db, source, stage_id)
        result = MaterializationResult()

        if not templates:
            logger.info(f"ℹ️ Matter {matter.matter_id}: no {source.name} templates for stage {stage_id}")
            return result

        if trigger.trigger_type == TriggerType.STAGE_CHANGE:
            deferred = [t for t in templates if is_deferred_attempt(t)]
            if deferred:
                logger.info(f"⏭️ Matter {matter.matter_id}: deferring {len(deferred)} attempt follow-up templates")
            templates = [t for t in templates if not is_deferred_attempt(t)]

        logger.info(
            f"📋 Matter {matter.matter_id}: materializing {len(templates)} {source.name} templates "
            f"for stage {stage_id}"
        )
        for template in templates:
            await self._materialize_template(template, matter, stage_id, trigger, result)

        logger.info(
            f"✅ Matter {matter.matter_id} stage {stage_id}: {result.created} created, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def apply_meeting(
        self,
        matter: MatterContext,
        stage_id: int,
        meeting_at: datetime,
        calendar_entry_id: int,
    ) -> MaterializationResult:
        """
        Patch the stage's meeting-relative tasks now that the meeting is known.

        Meeting templates win over the stage checklist when both define the
        same task number. Tasks still waiting for a due date are patched and linked to the
        calendar entry. Tasks already linked to this entry are recomputed so a
        rescheduled meeting moves their due dates.
        """
        result = MaterializationResult()
        templates = {template.task_number: template for template in self._merged_templates(matter, stage_id)}
        if not templates:
            return result

        reference = ReferenceInstants(created_at=datetime.now(timezone.utc), meeting_at=meeting_at)

        for task in self.repo.get_stage_tasks(self.db, matter.matter_id, stage_id, completed=False):
            template = templates.get(task.task_number)
            if not template or classify_relation(template.due_date_relation) != RelationKind.MEETING:
                continue

            linked = task.calendar_entry_id == calendar_entry_id
            if task.due_date is not None and not linked:
                continue

            due_date = resolve_due_date(template, reference)
            if linked and task.due_date == due_date:
                result.skipped += 1
                continue

            await self._patch_due_date(task, due_date, template, result, calendar_entry_id=calendar_entry_id)

        if result.updated:
            logger.info(
                f"📅 Matter {matter.matter_id}: patched {result.updated} meeting tasks "
                f"for calendar entry {calendar_entry_id}"
            )
        return result

    # ========================================================================
    # TASK COMPLETION
    # ========================================================================

    async def apply_task_completion(
        self, completed_task: Task, completed_at: datetime, matter: MatterContext
    ) -> MaterializationResult:
        """
        Follow up on a completed task.

        Creates the next step of an attempt sequence, then patches (or
        creates) every template whose relation is "after task N" for the
        completed task's number.
        """
        result = MaterializationResult()
        stage_id = completed_task.stage_id
        templates = self._merged_templates(matter, stage_id)
        if not templates:
            return result

        trigger = TriggerContext(
            trigger_type=TriggerType.TASK_COMPLETED,
            created_at=completed_at,
            calendar_entry_id=completed_task.calendar_entry_id,
            stage_name=completed_task.stage_name,
        )
        reference = trigger.reference_instants(parent_completed_at=completed_at)

        next_title = next_attempt_title(completed_task.task_name)
        if next_title:
            template = next((t for t in templates if next_title in t.task_title.lower()), None)
            if template:
                logger.info(f"🔁 Task {completed_task.task_id}: attempt sequence -> {template.task_title}")
                await self._materialize_template(template, matter, stage_id, trigger, result)
            else:
                logger.warning(f"⚠️ Task {completed_task.task_id}: no template for '{next_title}'")
                log_error(
                    self.db,
                    ErrorCode.TEMPLATE_NOT_FOUND,
                    f"No '{next_title}' template for stage {stage_id}",
                    {"matter_id": matter.matter_id, "stage_id": stage_id, "task_id": completed_task.task_id},
                )

        for template in find_dependent_templates(templates, completed_task.task_number):
            existing = self.repo.get_by_key(self.db, matter.matter_id, stage_id, template.task_number)

            if existing and existing.status != "deleted":
                if existing.completed or existing.due_date is not None:
                    result.skipped += 1
                    continue
                due_date = resolve_due_date(template, reference)
                patched = await self._patch_due_date(existing, due_date, template, result)
                if patched or existing.status != "deleted":
                    continue

            await self._create_task(template, matter, stage_id, trigger, reference, result, replaces=existing)

        return result

    def _merged_templates(self, matter: MatterContext, stage_id: int) -> list[TemplateRecord]:
        """Stage checklist plus meeting templates, meeting rows winning on a shared task number"""
        stage_source = select_template_source(TriggerType.STAGE_CHANGE, matter.practice_area_id)
        merged = {}
        for source in (stage_source, MEETING):
            for template in self.templates.get_stage_templates(self.db, source, stage_id):
                merged[template.task_number] = template
        return sorted(merged.values(), key=lambda template: template.task_number)

    # ========================================================================
    # ROLLBACK
    # ========================================================================

    async def rollback_recent_tasks(self, matter_id: int, stage_id: int, minutes: int) -> int:
        """Delete tasks generated for a stage within the last N minutes (Clio first, then the store)"""
        recent = self.repo.get_recently_generated(self.db, matter_id, stage_id, minutes)
        if not recent:
            return 0

        logger.info(f"↩️ Matter {matter_id}: rolling back {len(recent)} tasks from stage {stage_id}")
        for task in recent:
            await self._delete_clio_task(task.task_id)

        return self.repo.delete_tasks(self.db, [task.task_id for task in recent])

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _materialize_template(
        self,
        template: TemplateRecord,
        matter: MatterContext,
        stage_id: int,
        trigger: TriggerContext,
        result: MaterializationResult,
    ) -> Optional[Task]:
        existing = self.repo.get_by_key(self.db, matter.matter_id, stage_id, template.task_number)
        if existing and existing.status != "deleted":
            result.skipped += 1
            return existing

        if existing:
            logger.info(f"♻️ Regenerating deleted task {template.task_number} ({template.task_title})")

        reference = trigger.reference_instants(
            parent_completed_at=self._parent_completed_at(matter.matter_id, stage_id, template)
        )
        return await self._create_task(template, matter, stage_id, trigger, reference, result, replaces=existing)

    def _parent_completed_at(self, matter_id: int, stage_id: int, template: TemplateRecord) -> Optional[datetime]:
        edges = get_dependency_chain(stage_id, [template])
        if not edges:
            return None
        parent_task_id = resolve_parent_tasks(self.db, matter_id, stage_id, edges)[template.task_number]
        if parent_task_id is None:
            return None
        parent = self.repo.get_task(self.db, parent_task_id)
        if parent and parent.completed:
            return parent.completed_at or parent.last_updated
        return None

    def _resolve_assignee(
        self,
        template: TemplateRecord,
        matter: MatterContext,
        stage_id: int,
        trigger: TriggerContext,
    ) -> AssigneeResolution:
        uses_meeting_location = trigger.uses_meeting_location
        resolution = self.assignees.resolve_for_template(
            template.assignee,
            template.assignee_id,
            matter,
            meeting_location=trigger.meeting_location if uses_meeting_location else None,
            require_meeting_location=uses_meeting_location,
        )
        if not resolution.resolved:
            logger.warning(
                f"⚠️ Matter {matter.matter_id}: {resolution.message} - "
                f"creating '{template.task_title}' unassigned"
            )
            log_error(
                self.db,
                resolution.error_code,
                resolution.message,
                {
                    "matter_id": matter.matter_id,
                    "stage_id": stage_id,
                    "task_number": template.task_number,
                    "template_title": template.task_title,
                },
            )
        return resolution

    async def _create_task(
        self,
        template: TemplateRecord,
        matter: MatterContext,
        stage_id: int,
        trigger: TriggerContext,
        reference: ReferenceInstants,
        result: MaterializationResult,
        replaces: Optional[Task] = None,
    ) -> Optional[Task]:
        assignee = self._resolve_assignee(template, matter, stage_id, trigger)
        due_date = resolve_due_date(template, reference)

        task_data = {
            "name": template.task_title,
            "description": template.task_description or "",
            "matter": {"id": matter.matter_id},
        }
        if due_date:
            task_data["due_at"] = format_for_clio(due_date)
        if assignee.resolved:
            task_data["assignee"] = {"id": assignee.id, "type": "User"}

        try:
            clio_task = await self.clio.create_task(task_data)
        except httpx.HTTPError as e:
            logger.error(f"❌ Matter {matter.matter_id}: failed to create '{template.task_title}' in Clio: {e}")
            log_error(
                self.db,
                ErrorCode.CLIO_API_FAILED,
                f"Failed to create task in Clio: {e}",
                {"matter_id": matter.matter_id, "stage_id": stage_id, "template_title": template.task_title},
            )
            result.failures.append(
                TaskFailure(
                    task_number=template.task_number,
                    task_title=template.task_title,
                    error=f"Clio API failed: {e}",
                    error_code=ErrorCode.CLIO_API_FAILED.value,
                )
            )
            return None

        now = datetime.utcnow()
        row = {
            "task_id": clio_task["id"],
            "task_name": clio_task.get("name") or template.task_title,
            "task_desc": clio_task.get("description", template.task_description),
            "matter_id": matter.matter_id,
            "stage_id": stage_id,
            "stage_name": template.stage_name or trigger.stage_name,
            "task_number": template.task_number,
            "assigned_user_id": assignee.id,
            "assigned_user": assignee.name,
            "due_date": due_date,
            "calendar_entry_id": trigger.calendar_entry_id,
            "completed": False,
            "completed_at": None,
            "status": "pending",
            "task_date_generated": now,
            "due_date_generated": now if due_date else None,
        }

        if replaces is not None:
            task = self.repo.update_task(self.db, replaces, **row)
        else:
            task = self.repo.insert_task(self.db, **row)
            if task is None:
                logger.warning(
                    f"⚠️ Matter {matter.matter_id}: task {template.task_number} of stage {stage_id} "
                    f"was materialized concurrently - removing duplicate {clio_task['id']}"
                )
                await self._delete_clio_task(clio_task["id"])
                result.skipped += 1
                return None

        due_info = f"Due: {format_for_clio(due_date)}" if due_date else "Due: TBD"
        logger.info(f"✅ Matter {matter.matter_id}: created task '{task.task_name}' ({due_info})")
        result.created += 1
        result.tasks.append(MaterializedTaskResponse.model_validate(task))
        return task

    async def _patch_due_date(
        self,
        task: Task,
        due_date,
        template: TemplateRecord,
        result: MaterializationResult,
        **updates,
    ) -> bool:
        try:
            await self.clio.update_task(task.task_id, {"due_at": format_for_clio(due_date)})
        except httpx.HTTPError as e:
            if is_not_found(e):
                logger.warning(f"⚠️ Task {task.task_id} no longer exists in Clio - marking as deleted")
                log_error(
                    self.db,
                    ErrorCode.TASK_NOT_FOUND_IN_CLIO,
                    f"Task {task.task_id} deleted in Clio, marked for regeneration",
                    {"task_id": task.task_id, "matter_id": task.matter_id, "task_number": task.task_number},
                )
                self.repo.update_task(self.db, task, status="deleted")
                return False

            logger.error(f"❌ Failed to patch due date of task {task.task_id}: {e}")
            result.failures.append(
                TaskFailure(
                    task_number=template.task_number,
                    task_title=template.task_title,
                    error=f"Clio API failed: {e}",
                    error_code=ErrorCode.CLIO_API_FAILED.value,
                )
            )
            return False

        self.repo.update_task(
            self.db, task, due_date=due_date, due_date_generated=datetime.utcnow(), **updates
        )
        result.updated += 1
        result.tasks.append(MaterializedTaskResponse.model_validate(task))
        return True

    async def _delete_clio_task(self, task_id: int) -> None:
        try:
            await self.clio.delete_task(task_id)
        except httpx.HTTPError as e:
            if is_not_found(e):
                return
            logger.error(f"❌ Failed to delete task {task_id} from Clio: {e}")
