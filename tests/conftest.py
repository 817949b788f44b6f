"""Shared fixtures: in-memory database, fake Clio client and seeded reference data"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CLIO_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["CLIO_ACCESS_TOKEN"] = "env-access-token"
os.environ["CLIO_REFRESH_TOKEN"] = "env-refresh-token"
os.environ["TEST_MODE"] = "false"
os.environ["TIMEZONE_OFFSET_HOURS"] = "4"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import datetime, timezone  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from matterflow import models  # noqa: E402
from matterflow.database import Base  # noqa: E402
from matterflow.domain.assignees.schemas import MatterContext  # noqa: E402

MATTER_ID = 1675950832
ATTORNEY_ID = 111
DESIGN_STAGE_ID = 500
SIGNING_STAGE_ID = 600
CONTACT_STAGE_ID = 700
SIGNING_EVENT_TYPE_ID = 777

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def http_error(status_code: int, url: str = "https://app.clio.com/api/v4/tasks") -> httpx.HTTPStatusError:
    request = httpx.Request("GET", url)
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


def clio_matter(
    matter_id: int = MATTER_ID,
    stage_id=DESIGN_STAGE_ID,
    stage_name="Design",
    status: str = "Open",
    location="Naples",
    practice_area_id: int = 1,
    attorney_id=ATTORNEY_ID,
) -> dict:
    return {
        "id": matter_id,
        "display_number": "00042-Smith",
        "status": status,
        "location": location,
        "matter_stage": {"id": stage_id, "name": stage_name} if stage_id else None,
        "practice_area": {"id": practice_area_id, "name": "Estate Planning"},
        "responsible_attorney": {"id": attorney_id, "name": "Alice Attorney"} if attorney_id else None,
    }


class FakeClio:
    """In-memory Clio double that records every call the automations make"""

    def __init__(self):
        self.matters = {}
        self.tasks = {}
        self.calendar_entries = {}
        self.created = []
        self.updates = []
        self.deleted = []
        self.fail_create = set()
        self.missing = set()
        self._next_id = 9000

    async def get_matter(self, matter_id):
        if matter_id not in self.matters:
            raise http_error(404, f"https://app.clio.com/api/v4/matters/{matter_id}")
        return self.matters[matter_id]

    async def get_task(self, task_id):
        if task_id not in self.tasks or task_id in self.missing:
            raise http_error(404, f"https://app.clio.com/api/v4/tasks/{task_id}")
        return self.tasks[task_id]

    async def create_task(self, task_data):
        if task_data["name"] in self.fail_create:
            raise http_error(500)
        self._next_id += 1
        task = {"id": self._next_id, "status": "pending", "completed_at": None, **task_data}
        self.tasks[task["id"]] = task
        self.created.append(task)
        return task

    async def update_task(self, task_id, updates):
        if task_id in self.missing:
            raise http_error(404, f"https://app.clio.com/api/v4/tasks/{task_id}")
        self.updates.append((task_id, updates))
        self.tasks.setdefault(task_id, {"id": task_id}).update(updates)
        return self.tasks[task_id]

    async def delete_task(self, task_id):
        self.deleted.append(task_id)
        self.tasks.pop(task_id, None)

    async def get_calendar_entry(self, calendar_entry_id):
        if calendar_entry_id not in self.calendar_entries:
            raise http_error(404, f"https://app.clio.com/api/v4/calendar_entries/{calendar_entry_id}")
        return self.calendar_entries[calendar_entry_id]


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_clio():
    clio = FakeClio()
    clio.matters[MATTER_ID] = clio_matter()
    return clio


@pytest.fixture
def matter() -> MatterContext:
    return MatterContext.from_clio(clio_matter())


@pytest.fixture
def reference_data(db):
    db.add_all(
        [
            models.AssigneeReference(user_id=201, name="Naples CSC", location=["Naples"]),
            models.AssigneeReference(user_id=202, name="Paralegal Pat", attorney_id=[ATTORNEY_ID]),
            models.AssigneeReference(user_id=203, name="Fund Fran", fund_table=[str(ATTORNEY_ID)]),
            models.AssigneeReference(user_id=204, name="Bonita CSC", location=["Bonita Springs"]),
            models.LocationKeyword(keyword="Naples"),
            models.LocationKeyword(keyword="Bonita Springs"),
            models.LocationKeyword(keyword="Fort Myers"),
        ]
    )
    db.commit()
    return db


def add_template(db, model=models.NonMeetingTemplate, **fields):
    values = {
        "stage_id": DESIGN_STAGE_ID,
        "stage_name": "Design",
        "task_description": None,
        "assignee": "CSC",
        "assignee_id": None,
        "due_date_value": 0,
        "due_date_time_relation": "days",
        "due_date_relation": "after creation",
    }
    values.update(fields)
    row = model(**values)
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def templates(db, reference_data):
    """Design stage checklist, a signing meeting checklist and an attempt sequence"""
    add_template(db, task_number=1, task_title="Send welcome letter")
    add_template(
        db,
        task_number=2,
        task_title="Draft documents",
        assignee="PARALEGAL",
        due_date_value=2,
        due_date_relation="after task 1",
    )
    add_template(
        db,
        task_number=3,
        task_title="Prepare signing binder",
        due_date_value=1,
        due_date_relation="before meeting",
    )

    add_template(
        db,
        model=models.MeetingTemplate,
        stage_id=SIGNING_STAGE_ID,
        stage_name="Signing",
        calendar_event_id=SIGNING_EVENT_TYPE_ID,
        task_number=1,
        task_title="Confirm signing meeting",
        assignee_id="location",
        due_date_value=3,
        due_date_relation="before meeting",
    )
    add_template(
        db,
        model=models.MeetingTemplate,
        stage_id=SIGNING_STAGE_ID,
        stage_name="Signing",
        calendar_event_id=SIGNING_EVENT_TYPE_ID,
        task_number=2,
        task_title="Post-signing follow up",
        assignee="ATTORNEY",
        due_date_value=1,
        due_date_relation="after meeting",
    )
    db.add(
        models.CalendarEventMapping(
            calendar_event_id=SIGNING_EVENT_TYPE_ID,
            calendar_event_name="Signing Meeting",
            stage_id=SIGNING_STAGE_ID,
            stage_name="Signing",
            uses_meeting_location=True,
        )
    )
    db.commit()

    for number, title in enumerate(["Attempt 1 - call client", "Attempt 2", "Attempt 3", "No Response"], start=1):
        add_template(
            db,
            stage_id=CONTACT_STAGE_ID,
            stage_name="Contact",
            task_number=number,
            task_title=title,
            assignee="VA",
            due_date_value=0 if number == 1 else 2,
        )
    return db


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
