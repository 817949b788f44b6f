"""Template repository - read access to the task template tables"""

import logging
from typing import Optional

from sqlalchemy.exc import MultipleResultsFound
from sqlalchemy.orm import Session

from ...models import CalendarEventMapping
from .schemas import TemplateRecord, TemplateValidation
from .sources import TemplateSource

logger = logging.getLogger(__name__)

# Follow-up attempts are generated by task completion, not by stage changes
DEFERRED_ATTEMPT_TITLES = {
    "attempt 2",
    "attempt 2 follow up",
    "attempt 3",
    "attempt 3 follow up",
    "no response",
}


class DuplicateTemplateError(Exception):
    """Raised when more than one template row exists for a (stage_id, task_number) key"""

    def __init__(self, source: str, stage_id: int, task_number: int):
        self.source = source
        self.stage_id = stage_id
        self.task_number = task_number
        super().__init__(
            f"Duplicate {source} templates for stage {stage_id}, task {task_number}"
        )


def to_record(source: TemplateSource, row) -> TemplateRecord:
    return TemplateRecord(
        source=source.name,
        stage_id=row.stage_id,
        stage_name=row.stage_name,
        task_number=row.task_number,
        task_title=row.task_title,
        task_description=row.task_description,
        assignee=row.assignee,
        assignee_id=row.assignee_id,
        due_date_value=row.due_date_value,
        due_date_time_relation=row.due_date_time_relation,
        due_date_relation=row.due_date_relation,
        calendar_event_id=getattr(row, "calendar_event_id", None),
    )


class TemplateRepository:
    """Repository for task template lookups"""

    @staticmethod
    def get_stage_templates(db: Session, source: TemplateSource, stage_id: int) -> list[TemplateRecord]:
        """Get all templates of a stage, ordered by task number"""
        rows = (
            db.query(source.model)
            .filter(source.model.stage_id == stage_id)
            .order_by(source.model.task_number.asc())
            .all()
        )
        return [to_record(source, row) for row in rows]

    @staticmethod
    def get_template(
        db: Session, source: TemplateSource, stage_id: int, task_number: int
    ) -> Optional[TemplateRecord]:
        """Get a single template by its natural key"""
        try:
            row = (
                db.query(source.model)
                .filter(
                    source.model.stage_id == stage_id,
                    source.model.task_number == task_number,
                )
                .one_or_none()
            )
        except MultipleResultsFound:
            raise DuplicateTemplateError(source.name, stage_id, task_number) from None

        if not row:
            logger.warning(f"⚠️ No {source.name} template for stage {stage_id}, task {task_number}")
            return None
        return to_record(source, row)

    @staticmethod
    def get_calendar_event_mapping(db: Session, calendar_event_id: int) -> Optional[CalendarEventMapping]:
        """Get the active stage mapping for a Clio calendar event type"""
        return (
            db.query(CalendarEventMapping)
            .filter(
                CalendarEventMapping.calendar_event_id == calendar_event_id,
                CalendarEventMapping.active.is_(True),
            )
            .first()
        )


def validate_templates(templates: list[TemplateRecord]) -> TemplateValidation:
    """Check a stage's templates for duplicate task numbers and empty titles"""
    if not templates:
        return TemplateValidation(valid=False, errors=["No templates found"])

    errors = []
    seen = set()
    duplicates = []
    for template in templates:
        if template.task_number in seen and template.task_number not in duplicates:
            duplicates.append(template.task_number)
        seen.add(template.task_number)

    if duplicates:
        errors.append(f"Duplicate task_numbers found: {', '.join(str(n) for n in duplicates)}")

    for index, template in enumerate(templates):
        if not template.task_title.strip():
            errors.append(f"Template at index {index} missing task_title")

    return TemplateValidation(valid=not errors, errors=errors)


def is_deferred_attempt(template: TemplateRecord) -> bool:
    return template.task_title.strip().lower() in DEFERRED_ATTEMPT_TITLES
