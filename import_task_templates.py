#!/usr/bin/env python3
"""
Import task templates from a CSV export into one of the template tables
Usage: python import_task_templates.py <non_meeting|probate|meeting> <templates.csv>

Rows are upserted by (stage_id, task_number).
"""

import csv
import sys
from pathlib import Path

from pydantic import ValidationError

from matterflow import models  # noqa: F401 - registers tables on Base
from matterflow.database import Base, SessionLocal, engine
from matterflow.domain.templates.schemas import TemplateRecord
from matterflow.domain.templates.sources import get_source

TEMPLATE_FIELDS = (
    "stage_name",
    "task_title",
    "task_description",
    "assignee",
    "assignee_id",
    "due_date_value",
    "due_date_time_relation",
    "due_date_relation",
)


def import_templates(source_name: str, csv_path: str) -> tuple[int, int, int]:
    source = get_source(source_name)
    Base.metadata.create_all(bind=engine, tables=[source.model.__table__], checkfirst=True)

    db = SessionLocal()
    inserted = updated = rejected = 0

    try:
        with open(csv_path, newline="", encoding="utf-8-sig") as f:
            for line_number, row in enumerate(csv.DictReader(f), start=2):
                try:
                    record = TemplateRecord(source=source.name, **{k: v for k, v in row.items() if k})
                except ValidationError as e:
                    print(f"   ⚠️  Line {line_number} rejected: {e.errors()[0]['msg']}")
                    rejected += 1
                    continue

                existing = (
                    db.query(source.model)
                    .filter(
                        source.model.stage_id == record.stage_id,
                        source.model.task_number == record.task_number,
                    )
                    .first()
                )
                values = {field: getattr(record, field) for field in TEMPLATE_FIELDS}
                if source.name == "meeting":
                    values["calendar_event_id"] = record.calendar_event_id

                if existing:
                    for key, value in values.items():
                        setattr(existing, key, value)
                    updated += 1
                else:
                    db.add(
                        source.model(stage_id=record.stage_id, task_number=record.task_number, **values)
                    )
                    inserted += 1

        db.commit()
        return inserted, updated, rejected
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python import_task_templates.py <non_meeting|probate|meeting> <templates.csv>")
        sys.exit(1)

    if not Path(sys.argv[2]).exists():
        print(f"❌ File not found: {sys.argv[2]}")
        sys.exit(1)

    print(f"🔍 Importing {sys.argv[1]} templates from {sys.argv[2]}...\n")
    try:
        counts = import_templates(sys.argv[1], sys.argv[2])
    except Exception as e:
        print(f"❌ Import failed: {e}")
        sys.exit(1)

    print(f"\n✅ Done: {counts[0]} inserted, {counts[1]} updated, {counts[2]} rejected")
