"""Tests for "after task N" dependency chains."""

import pytest

from conftest import DESIGN_STAGE_ID, MATTER_ID
from matterflow.domain.tasks.dependencies import (
    DependencyEdge,
    extract_parent_task_number,
    find_dependent_templates,
    get_dependency_chain,
    resolve_parent_tasks,
)
from matterflow.domain.tasks.repository import TaskRepository
from matterflow.domain.templates.schemas import TemplateRecord
from matterflow.models import ErrorLog
from matterflow.shared.error_codes import ErrorCode


def _record(number, relation, stage_id=DESIGN_STAGE_ID):
    return TemplateRecord(
        source="non_meeting",
        stage_id=stage_id,
        task_number=number,
        task_title=f"Task {number}",
        due_date_relation=relation,
    )


@pytest.mark.parametrize(
    ("relation", "parent"),
    [
        ("after task 12", 12),
        ("3 days after task 5", 5),
        ("AFTER TASK 2", 2),
        ("after  task   7", 7),
        ("before task 4", None),
        ("after creation", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_parent_task_number(relation, parent):
    assert extract_parent_task_number(relation) == parent


def test_dependency_chain_only_covers_the_stage():
    templates = [
        _record(1, "after creation"),
        _record(2, "after task 1"),
        _record(3, "after task 2"),
        _record(4, "after task 1", stage_id=999),
    ]
    assert get_dependency_chain(DESIGN_STAGE_ID, templates) == [DependencyEdge(2, 1), DependencyEdge(3, 2)]


def test_find_dependent_templates():
    templates = [_record(1, "after creation"), _record(2, "after task 1"), _record(3, "after task 1")]
    assert [t.task_number for t in find_dependent_templates(templates, 1)] == [2, 3]
    assert find_dependent_templates(templates, 3) == []


def test_resolve_parent_tasks_maps_missing_parents_to_none(db):
    TaskRepository.insert_task(
        db,
        task_id=4001,
        matter_id=MATTER_ID,
        stage_id=DESIGN_STAGE_ID,
        task_number=1,
        task_name="Task 1",
    )
    edges = [DependencyEdge(2, 1), DependencyEdge(5, 4)]

    assert resolve_parent_tasks(db, MATTER_ID, DESIGN_STAGE_ID, edges) == {2: 4001, 5: None}
    error = db.query(ErrorLog).one()
    assert error.error_code == ErrorCode.PARENT_TASK_NOT_FOUND.value
    assert error.context["task_number"] == 5
