"""
Template sources

Each template table is exposed through one TemplateSource variant. The
source used for a materialization is selected explicitly from the trigger
and the matter's practice area instead of trying tables in sequence.
"""

from enum import Enum
from typing import Optional

from ...config import PROBATE_PRACTICE_AREA_ID
from ...models import MeetingTemplate, NonMeetingTemplate, ProbateTemplate


class TriggerType(str, Enum):
    STAGE_CHANGE = "stage_change"
    CALENDAR_EVENT = "calendar_event"
    TASK_COMPLETED = "task_completed"


class TemplateSource:
    """A template table that can be queried by (stage_id, task_number)"""

    name = ""
    model = None

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class NonMeetingTemplateSource(TemplateSource):
    name = "non_meeting"
    model = NonMeetingTemplate


class ProbateTemplateSource(TemplateSource):
    name = "probate"
    model = ProbateTemplate


class MeetingTemplateSource(TemplateSource):
    name = "meeting"
    model = MeetingTemplate


NON_MEETING = NonMeetingTemplateSource()
PROBATE = ProbateTemplateSource()
MEETING = MeetingTemplateSource()

SOURCES_BY_NAME = {source.name: source for source in (NON_MEETING, PROBATE, MEETING)}


def is_probate(practice_area_id: Optional[int]) -> bool:
    return practice_area_id is not None and int(practice_area_id) == PROBATE_PRACTICE_AREA_ID


def select_template_source(trigger: TriggerType, practice_area_id: Optional[int] = None) -> TemplateSource:
    """
    Pick the template table for a trigger.

    Calendar events generate meeting templates. Stage changes and task
    completions use the probate checklist for probate matters and the
    non-meeting checklist for everything else.
    """
    if trigger == TriggerType.CALENDAR_EVENT:
        return MEETING
    if is_probate(practice_area_id):
        return PROBATE
    return NON_MEETING


def get_source(name: str) -> TemplateSource:
    try:
        return SOURCES_BY_NAME[name]
    except KeyError:
        raise ValueError(f"Unknown template source: {name}") from None
