"""
Relational due-date resolution

Due dates are computed from a template's relation text against one of three
reference instants: when the task was created, when its meeting happens, or
when the parent task was completed. Results are practice-local calendar
dates; weekend results move forward to Monday.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from ...config import TIMEZONE_OFFSET_HOURS
from ..templates.schemas import TemplateRecord

MEETING_PATTERN = re.compile(r"meeting", re.IGNORECASE)
AFTER_TASK_PATTERN = re.compile(r"after\s+task\s+\d+", re.IGNORECASE)


class RelationKind(str, Enum):
    CREATION = "creation"
    MEETING = "meeting"
    TASK_COMPLETION = "task_completion"


@dataclass(frozen=True)
class ReferenceInstants:
    """The instants a due date may be measured from"""

    created_at: datetime
    meeting_at: Optional[datetime] = None
    parent_completed_at: Optional[datetime] = None


def classify_relation(relation: Optional[str]) -> RelationKind:
    text = relation or ""
    if AFTER_TASK_PATTERN.search(text):
        return RelationKind.TASK_COMPLETION
    if MEETING_PATTERN.search(text):
        return RelationKind.MEETING
    return RelationKind.CREATION


def relation_sign(relation: Optional[str]) -> int:
    return -1 if "before" in (relation or "").lower() else 1


def to_practice_local(instant: datetime, offset_hours: int = TIMEZONE_OFFSET_HOURS) -> datetime:
    """
    Convert an instant to naive practice-local time.

    Timezone-aware instants are converted through UTC; naive instants are
    taken to be practice-local already.
    """
    if instant.tzinfo is None:
        return instant
    as_utc = instant.astimezone(timezone.utc).replace(tzinfo=None)
    return as_utc - timedelta(hours=offset_hours)


def shift_weekend_to_monday(day: date) -> date:
    """Move Saturday and Sunday forward to the following Monday"""
    weekday = day.weekday()
    if weekday == 5:
        return day + timedelta(days=2)
    if weekday == 6:
        return day + timedelta(days=1)
    return day


def offset_delta(value: int, unit: str) -> timedelta:
    unit = (unit or "days").lower()
    if "minute" in unit:
        return timedelta(minutes=value)
    if "hour" in unit:
        return timedelta(hours=value)
    return timedelta(days=value)


def pick_reference(template: TemplateRecord, reference: ReferenceInstants) -> Optional[datetime]:
    kind = classify_relation(template.due_date_relation)
    if kind == RelationKind.MEETING:
        return reference.meeting_at
    if kind == RelationKind.TASK_COMPLETION:
        return reference.parent_completed_at
    return reference.created_at


def resolve_due_date(template: TemplateRecord, reference: ReferenceInstants) -> Optional[date]:
    """
    Compute a template's due date, or None when its trigger has not happened.

    Meeting-relative templates need a meeting instant, "after task N"
    templates need the parent's completion instant. The weekend shift always
    moves forward, including for "before" relations.
    """
    instant = pick_reference(template, reference)
    if instant is None:
        return None

    local = to_practice_local(instant)
    delta = offset_delta(template.due_date_value, template.due_date_time_relation)
    raw = local + relation_sign(template.due_date_relation) * delta
    return shift_weekend_to_monday(raw.date())


def format_for_clio(day: Optional[date]) -> Optional[str]:
    return day.strftime("%Y-%m-%d") if day else None


def parse_clio_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by Clio (trailing Z allowed)"""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
