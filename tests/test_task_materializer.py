"""Tests for task generation, meeting patches, completion follow-ups and rollback."""

from datetime import date, datetime

import pytest

from conftest import CONTACT_STAGE_ID, DESIGN_STAGE_ID, MATTER_ID, add_template, clio_matter, utc
from matterflow.domain.assignees.schemas import MatterContext
from matterflow.domain.tasks.repository import TaskRepository
from matterflow.domain.tasks.schemas import TriggerContext
from matterflow.domain.tasks.service import TaskMaterializer, next_attempt_title
from matterflow.domain.templates.sources import TriggerType
from matterflow.models import ErrorLog, Task
from matterflow.shared.error_codes import ErrorCode

CREATED_AT = utc(2025, 11, 14, 15, 0)  # Friday 11:00 practice time


@pytest.fixture
def materializer(templates, fake_clio):
    return TaskMaterializer(templates, fake_clio)


def _stage_change(created_at=CREATED_AT):
    return TriggerContext(trigger_type=TriggerType.STAGE_CHANGE, created_at=created_at, stage_name="Design")


def _task(db, number, stage_id=DESIGN_STAGE_ID):
    return TaskRepository.get_by_key(db, MATTER_ID, stage_id, number)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Attempt 1 - call client", "attempt 2"),
        ("attempt 2", "attempt 3"),
        ("ATTEMPT 3 follow up", "no response"),
        ("Attempt 4", None),
        ("Send welcome letter", None),
        (None, None),
    ],
)
def test_next_attempt_title(name, expected):
    assert next_attempt_title(name) == expected


async def test_stage_tasks_are_created_with_resolvable_due_dates(materializer, matter, fake_clio, templates):
    result = await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())

    assert (result.created, result.skipped, result.failed) == (3, 0, 0)
    welcome, draft, binder = fake_clio.created
    assert welcome["due_at"] == "2025-11-14"
    assert welcome["assignee"] == {"id": 201, "type": "User"}
    assert welcome["matter"] == {"id": MATTER_ID}
    assert "due_at" not in draft
    assert draft["assignee"]["id"] == 202
    assert "due_at" not in binder

    stored = TaskRepository.get_stage_tasks(templates, MATTER_ID, DESIGN_STAGE_ID)
    assert [(t.task_number, t.due_date) for t in stored] == [(1, date(2025, 11, 14)), (2, None), (3, None)]
    assert stored[0].due_date_generated is not None
    assert stored[1].due_date_generated is None
    assert all(t.status == "pending" for t in stored)


async def test_materialization_is_idempotent(materializer, matter, fake_clio):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    again = await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())

    assert (again.created, again.skipped) == (0, 3)
    assert len(fake_clio.created) == 3


async def test_deleted_task_is_regenerated_in_place(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    draft = _task(templates, 2)
    row_id, old_task_id = draft.id, draft.task_id
    TaskRepository.update_task(templates, draft, status="deleted")

    result = await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())

    assert (result.created, result.skipped) == (1, 2)
    regenerated = _task(templates, 2)
    assert regenerated.id == row_id
    assert regenerated.task_id != old_task_id
    assert regenerated.status == "pending"
    assert templates.query(Task).count() == 3


async def test_stage_change_defers_attempt_follow_ups(materializer, matter, fake_clio):
    result = await materializer.materialize_stage_tasks(CONTACT_STAGE_ID, matter, _stage_change())

    assert result.created == 1
    assert [t["name"] for t in fake_clio.created] == ["Attempt 1 - call client"]


async def test_unresolved_assignee_creates_unassigned_task(materializer, fake_clio, templates):
    matter = MatterContext.from_clio(clio_matter(location=None))
    result = await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())

    assert result.created == 3
    assert "assignee" not in fake_clio.created[0]
    assert _task(templates, 1).assigned_user_id is None
    codes = [row.error_code for row in templates.query(ErrorLog).all()]
    assert ErrorCode.MEETING_NO_LOCATION.value in codes


async def test_clio_failure_is_recorded_and_other_tasks_continue(materializer, matter, fake_clio, templates):
    fake_clio.fail_create.add("Draft documents")

    result = await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())

    assert (result.created, result.failed) == (2, 1)
    assert result.failures[0].task_number == 2
    assert result.failures[0].error_code == ErrorCode.CLIO_API_FAILED.value
    assert _task(templates, 2) is None
    assert templates.query(ErrorLog).filter(ErrorLog.error_code == ErrorCode.CLIO_API_FAILED.value).count() == 1


async def test_meeting_patches_waiting_tasks_and_follows_reschedules(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    binder_id = _task(templates, 3).task_id

    result = await materializer.apply_meeting(matter, DESIGN_STAGE_ID, utc(2025, 11, 20, 18, 0), 888)

    assert result.updated == 1
    assert fake_clio.updates[-1] == (binder_id, {"due_at": "2025-11-19"})
    binder = _task(templates, 3)
    assert binder.due_date == date(2025, 11, 19)
    assert binder.calendar_entry_id == 888

    moved = await materializer.apply_meeting(matter, DESIGN_STAGE_ID, utc(2025, 11, 25, 18, 0), 888)
    assert moved.updated == 1
    assert _task(templates, 3).due_date == date(2025, 11, 24)

    unchanged = await materializer.apply_meeting(matter, DESIGN_STAGE_ID, utc(2025, 11, 25, 18, 0), 888)
    assert (unchanged.updated, unchanged.skipped) == (0, 1)


async def test_meeting_patch_marks_missing_clio_task_deleted(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    fake_clio.missing.add(_task(templates, 3).task_id)

    result = await materializer.apply_meeting(matter, DESIGN_STAGE_ID, utc(2025, 11, 20, 18, 0), 888)

    assert result.updated == 0
    assert _task(templates, 3).status == "deleted"
    codes = [row.error_code for row in templates.query(ErrorLog).all()]
    assert ErrorCode.TASK_NOT_FOUND_IN_CLIO.value in codes


async def test_completion_patches_dependent_task(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    welcome = TaskRepository.update_task(
        templates, _task(templates, 1), completed=True, status="completed", completed_at=datetime(2025, 11, 14, 16, 0)
    )

    result = await materializer.apply_task_completion(welcome, utc(2025, 11, 14, 20, 0), matter)

    # Friday + 2 days is a Sunday
    assert result.updated == 1
    assert _task(templates, 2).due_date == date(2025, 11, 17)
    assert fake_clio.updates[-1][1] == {"due_at": "2025-11-17"}

    again = await materializer.apply_task_completion(welcome, utc(2025, 11, 14, 20, 0), matter)
    assert (again.updated, again.skipped) == (0, 1)


async def test_completion_recreates_deleted_dependent(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    TaskRepository.update_task(templates, _task(templates, 2), status="deleted")
    welcome = TaskRepository.update_task(templates, _task(templates, 1), completed=True, status="completed")

    result = await materializer.apply_task_completion(welcome, utc(2025, 11, 14, 20, 0), matter)

    assert result.created == 1
    assert fake_clio.created[-1]["name"] == "Draft documents"
    assert fake_clio.created[-1]["due_at"] == "2025-11-17"
    assert _task(templates, 2).status == "pending"


async def test_completing_meeting_linked_checklist_task_patches_its_dependent(
    materializer, matter, fake_clio, templates
):
    add_template(
        templates,
        task_number=4,
        task_title="Review binder with attorney",
        due_date_value=2,
        due_date_relation="after task 3",
    )
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    assert _task(templates, 4).due_date is None

    await materializer.apply_meeting(matter, DESIGN_STAGE_ID, utc(2025, 11, 20, 18, 0), 55)
    binder = _task(templates, 3)
    assert binder.calendar_entry_id == 55
    binder = TaskRepository.update_task(templates, binder, completed=True, status="completed")

    result = await materializer.apply_task_completion(binder, utc(2025, 11, 19, 14, 0), matter)

    # Wednesday + 2 days
    assert result.updated == 1
    dependent = _task(templates, 4)
    assert dependent.due_date == date(2025, 11, 21)
    assert fake_clio.updates[-1] == (dependent.task_id, {"due_at": "2025-11-21"})


async def test_attempt_sequence_creates_next_attempt(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(CONTACT_STAGE_ID, matter, _stage_change())
    first = TaskRepository.update_task(
        templates, _task(templates, 1, CONTACT_STAGE_ID), completed=True, status="completed"
    )

    result = await materializer.apply_task_completion(first, utc(2025, 11, 18, 14, 0), matter)

    assert result.created == 1
    assert fake_clio.created[-1]["name"] == "Attempt 2"
    assert fake_clio.created[-1]["due_at"] == "2025-11-20"
    assert _task(templates, 2, CONTACT_STAGE_ID) is not None


async def test_rollback_deletes_recent_tasks_from_clio_and_store(materializer, matter, fake_clio, templates):
    await materializer.materialize_stage_tasks(DESIGN_STAGE_ID, matter, _stage_change())
    created_ids = sorted(t["id"] for t in fake_clio.created)

    deleted = await materializer.rollback_recent_tasks(MATTER_ID, DESIGN_STAGE_ID, 3)

    assert deleted == 3
    assert sorted(fake_clio.deleted) == created_ids
    assert templates.query(Task).count() == 0
    assert await materializer.rollback_recent_tasks(MATTER_ID, DESIGN_STAGE_ID, 3) == 0


async def test_missing_attempt_template_is_logged(materializer, matter, templates):
    task = TaskRepository.insert_task(
        templates,
        task_id=4001,
        matter_id=MATTER_ID,
        stage_id=DESIGN_STAGE_ID,
        task_number=9,
        task_name="Attempt 1 - voicemail",
        completed=True,
    )

    result = await materializer.apply_task_completion(task, utc(2025, 11, 18, 14, 0), matter)

    assert (result.created, result.updated) == (0, 0)
    error = templates.query(ErrorLog).one()
    assert error.error_code == ErrorCode.TEMPLATE_NOT_FOUND.value
