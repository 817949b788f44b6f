"""Tests for template sources, lookups and validation."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import MultipleResultsFound

from conftest import DESIGN_STAGE_ID, SIGNING_EVENT_TYPE_ID, SIGNING_STAGE_ID
from matterflow.config import PROBATE_PRACTICE_AREA_ID
from matterflow.domain.templates.repository import (
    DuplicateTemplateError,
    TemplateRepository,
    is_deferred_attempt,
    validate_templates,
)
from matterflow.domain.templates.schemas import TemplateRecord
from matterflow.domain.templates.sources import (
    MEETING,
    NON_MEETING,
    PROBATE,
    TriggerType,
    get_source,
    select_template_source,
)


def _record(number, title="Task"):
    return TemplateRecord(source="non_meeting", stage_id=DESIGN_STAGE_ID, task_number=number, task_title=title)


@pytest.mark.parametrize(
    ("trigger", "practice_area_id", "source"),
    [
        (TriggerType.CALENDAR_EVENT, None, MEETING),
        (TriggerType.CALENDAR_EVENT, PROBATE_PRACTICE_AREA_ID, MEETING),
        (TriggerType.STAGE_CHANGE, PROBATE_PRACTICE_AREA_ID, PROBATE),
        (TriggerType.TASK_COMPLETED, PROBATE_PRACTICE_AREA_ID, PROBATE),
        (TriggerType.STAGE_CHANGE, 1, NON_MEETING),
        (TriggerType.STAGE_CHANGE, None, NON_MEETING),
    ],
)
def test_select_template_source(trigger, practice_area_id, source):
    assert select_template_source(trigger, practice_area_id) is source


def test_get_source_rejects_unknown_names():
    assert get_source("probate") is PROBATE
    with pytest.raises(ValueError):
        get_source("archive")


def test_template_record_normalizes_blank_fields():
    record = TemplateRecord(
        source="meeting",
        stage_id=1,
        task_number=1,
        task_title="Call",
        due_date_value="",
        due_date_time_relation=None,
        due_date_relation=None,
        assignee_id=123,
        calendar_event_id="",
    )
    assert record.due_date_value == 0
    assert record.due_date_time_relation == "days"
    assert record.due_date_relation == "after creation"
    assert record.assignee_id == "123"
    assert record.calendar_event_id is None


def test_get_stage_templates_is_ordered(templates):
    records = TemplateRepository.get_stage_templates(templates, NON_MEETING, DESIGN_STAGE_ID)
    assert [r.task_number for r in records] == [1, 2, 3]
    assert records[1].due_date_relation == "after task 1"
    assert all(r.source == "non_meeting" for r in records)


def test_get_template_by_natural_key(templates):
    record = TemplateRepository.get_template(templates, MEETING, SIGNING_STAGE_ID, 2)
    assert record.task_title == "Post-signing follow up"
    assert record.calendar_event_id == SIGNING_EVENT_TYPE_ID
    assert TemplateRepository.get_template(templates, MEETING, SIGNING_STAGE_ID, 9) is None


def test_get_template_raises_on_duplicates():
    db = MagicMock()
    db.query.return_value.filter.return_value.one_or_none.side_effect = MultipleResultsFound()

    with pytest.raises(DuplicateTemplateError) as excinfo:
        TemplateRepository.get_template(db, NON_MEETING, DESIGN_STAGE_ID, 4)

    assert (excinfo.value.stage_id, excinfo.value.task_number) == (DESIGN_STAGE_ID, 4)


def test_calendar_event_mapping_ignores_inactive(templates):
    mapping = TemplateRepository.get_calendar_event_mapping(templates, SIGNING_EVENT_TYPE_ID)
    assert mapping.stage_id == SIGNING_STAGE_ID

    mapping.active = False
    templates.commit()
    assert TemplateRepository.get_calendar_event_mapping(templates, SIGNING_EVENT_TYPE_ID) is None


def test_validate_templates():
    assert validate_templates([_record(1), _record(2)]).valid

    empty = validate_templates([])
    assert not empty.valid and empty.errors == ["No templates found"]

    result = validate_templates([_record(1), _record(2), _record(2), _record(3, title="  ")])
    assert not result.valid
    assert result.errors == [
        "Duplicate task_numbers found: 2",
        "Template at index 3 missing task_title",
    ]


def test_is_deferred_attempt():
    assert is_deferred_attempt(_record(2, "Attempt 2"))
    assert is_deferred_attempt(_record(4, " No Response "))
    assert not is_deferred_attempt(_record(1, "Attempt 1 - call client"))
