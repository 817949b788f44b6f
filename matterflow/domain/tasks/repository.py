"""Task repository - Database operations for materialized tasks and meetings"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import MatterStageHistory, MeetingBooking, Task


class TaskRepository:
    """Repository for materialized task database operations"""

    @staticmethod
    def get_task(db: Session, task_id: int) -> Optional[Task]:
        """Get a task by its Clio id"""
        return db.query(Task).filter(Task.task_id == task_id).first()

    @staticmethod
    def get_by_key(db: Session, matter_id: int, stage_id: int, task_number: int) -> Optional[Task]:
        """Get the task materialized for (matter, stage, task number)"""
        return (
            db.query(Task)
            .filter(
                Task.matter_id == matter_id,
                Task.stage_id == stage_id,
                Task.task_number == task_number,
            )
            .first()
        )

    @staticmethod
    def get_stage_tasks(
        db: Session,
        matter_id: int,
        stage_id: int,
        completed: Optional[bool] = None,
        include_deleted: bool = False,
    ) -> list[Task]:
        """Get a matter's tasks for a stage"""
        query = db.query(Task).filter(Task.matter_id == matter_id, Task.stage_id == stage_id)

        if completed is not None:
            query = query.filter(Task.completed.is_(completed))
        if not include_deleted:
            query = query.filter(Task.status != "deleted")

        return query.order_by(Task.task_number.asc()).all()

    @staticmethod
    def get_recently_generated(db: Session, matter_id: int, stage_id: int, minutes: int) -> list[Task]:
        """Get tasks generated for a stage within the last N minutes"""
        cutoff = datetime.utcnow() - timedelta(minutes=minutes)
        return (
            db.query(Task)
            .filter(
                Task.matter_id == matter_id,
                Task.stage_id == stage_id,
                Task.task_date_generated >= cutoff,
                Task.status != "deleted",
            )
            .all()
        )

    @staticmethod
    def insert_task(db: Session, **task_data) -> Optional[Task]:
        """
        Insert a task row.

        Returns None when the (matter, stage, task number) key already exists,
        which means another delivery materialized it first.
        """
        task = Task(**task_data)
        db.add(task)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        db.refresh(task)
        return task

    @staticmethod
    def update_task(db: Session, task: Task, **updates) -> Task:
        """Update a task with provided fields"""
        for key, value in updates.items():
            if hasattr(task, key):
                setattr(task, key, value)
        task.last_updated = datetime.utcnow()

        db.commit()
        db.refresh(task)
        return task

    @staticmethod
    def delete_tasks(db: Session, task_ids: list[int]) -> int:
        """Delete task rows by Clio id"""
        if not task_ids:
            return 0
        count = db.query(Task).filter(Task.task_id.in_(task_ids)).delete(synchronize_session=False)
        db.commit()
        return count


class MeetingRepository:
    """Repository for booked meetings"""

    @staticmethod
    def upsert_booking(
        db: Session,
        matter_id: int,
        calendar_entry_id: int,
        meeting_date: datetime,
        calendar_event_id: Optional[int] = None,
        stage_id: Optional[int] = None,
        location: Optional[str] = None,
    ) -> MeetingBooking:
        booking = (
            db.query(MeetingBooking)
            .filter(MeetingBooking.calendar_entry_id == calendar_entry_id)
            .first()
        )
        if booking:
            booking.meeting_date = meeting_date
            booking.location = location
            booking.stage_id = stage_id
            booking.calendar_event_id = calendar_event_id
        else:
            booking = MeetingBooking(
                matter_id=matter_id,
                calendar_entry_id=calendar_entry_id,
                calendar_event_id=calendar_event_id,
                stage_id=stage_id,
                meeting_date=meeting_date,
                location=location,
            )
            db.add(booking)

        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def get_latest_meeting(db: Session, matter_id: int, stage_id: Optional[int] = None) -> Optional[MeetingBooking]:
        """Get a matter's most recent meeting, optionally for one stage"""
        query = db.query(MeetingBooking).filter(MeetingBooking.matter_id == matter_id)
        if stage_id is not None:
            query = query.filter(MeetingBooking.stage_id == stage_id)
        return query.order_by(MeetingBooking.meeting_date.desc()).first()


class StageHistoryRepository:
    """Repository for observed matter stage changes"""

    @staticmethod
    def get_last_stage(db: Session, matter_id: int) -> Optional[MatterStageHistory]:
        return (
            db.query(MatterStageHistory)
            .filter(MatterStageHistory.matter_id == matter_id)
            .order_by(MatterStageHistory.changed_at.desc(), MatterStageHistory.id.desc())
            .first()
        )

    @staticmethod
    def record_stage(db: Session, **history_data) -> MatterStageHistory:
        entry = MatterStageHistory(**history_data)
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry
