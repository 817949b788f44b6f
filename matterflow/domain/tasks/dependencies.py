"""Dependency chains between templates ("after task N" relations)"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ...services.error_logger import log_error
from ...shared.error_codes import ErrorCode
from ..templates.schemas import TemplateRecord
from .repository import TaskRepository

logger = logging.getLogger(__name__)

PARENT_TASK_PATTERN = re.compile(r"after\s+task\s+(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class DependencyEdge:
    dependent_task_number: int
    parent_task_number: int


def extract_parent_task_number(relation: Optional[str]) -> Optional[int]:
    """
    Get the parent task number from a relation.

    "after task 12" -> 12, "3 days after task 5" -> 5. "before task N" is
    informational only and gives None.
    """
    if not relation:
        return None
    match = PARENT_TASK_PATTERN.search(relation)
    return int(match.group(1)) if match else None


def get_dependency_chain(stage_id: int, templates: list[TemplateRecord]) -> list[DependencyEdge]:
    edges = []
    for template in templates:
        if template.stage_id != stage_id:
            continue
        parent = extract_parent_task_number(template.due_date_relation)
        if parent is not None:
            edges.append(DependencyEdge(template.task_number, parent))
    return edges


def find_dependent_templates(templates: list[TemplateRecord], parent_task_number: int) -> list[TemplateRecord]:
    return [
        t for t in templates if extract_parent_task_number(t.due_date_relation) == parent_task_number
    ]


def resolve_parent_tasks(
    db: Session, matter_id: int, stage_id: int, edges: list[DependencyEdge]
) -> dict[int, Optional[int]]:
    """
    Map each dependent task number to its parent's Clio task id for a matter.

    Parents are joined on the stored task_number. A parent that has not been
    materialized maps to None and is recorded in error_logs.
    """
    resolved = {}
    for edge in edges:
        parent = TaskRepository.get_by_key(db, matter_id, stage_id, edge.parent_task_number)
        if not parent:
            logger.warning(
                f"⚠️ Matter {matter_id}: parent task {edge.parent_task_number} of task "
                f"{edge.dependent_task_number} not found"
            )
            log_error(
                db,
                ErrorCode.PARENT_TASK_NOT_FOUND,
                f"Parent task {edge.parent_task_number} not materialized for task {edge.dependent_task_number}",
                {"matter_id": matter_id, "stage_id": stage_id, "task_number": edge.dependent_task_number},
            )
            resolved[edge.dependent_task_number] = None
        else:
            resolved[edge.dependent_task_number] = parent.task_id
    return resolved
