"""
Event Tracker

Records a structured trace for every webhook delivery: one EventTrace per
delivery and one EventStep per stage of processing (validation, idempotency
check, Clio fetches, task generation). Tracking failures never affect the
automation being traced.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import TRACKING_ENABLED
from ..models import EventStep, EventTrace

logger = logging.getLogger(__name__)


def _elapsed_ms(started_at: Optional[datetime], ended_at: datetime) -> Optional[int]:
    if not started_at:
        return None
    return int((ended_at - started_at).total_seconds() * 1000)


class EventTracker:
    """Writes traces and steps for webhook processing"""

    def __init__(self, db: Session, enabled: bool = TRACKING_ENABLED):
        self.db = db
        self.enabled = enabled

    def _save(self, obj) -> bool:
        try:
            self.db.add(obj)
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Event tracking write failed: {e}")
            return False

    def start_trace(self, source: str, trigger_name: str, resource_id: Optional[int] = None) -> Optional[str]:
        if not self.enabled:
            return None

        trace = EventTrace(
            trace_id=uuid.uuid4().hex,
            source=source,
            trigger_name=trigger_name,
            resource_id=resource_id,
            started_at=datetime.utcnow(),
        )
        return trace.trace_id if self._save(trace) else None

    def end_trace(
        self,
        trace_id: Optional[str],
        status: str = "success",
        result_action: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if not self.enabled or not trace_id:
            return

        trace = self.db.query(EventTrace).filter(EventTrace.trace_id == trace_id).first()
        if not trace:
            return

        now = datetime.utcnow()
        trace.status = status
        trace.result_action = result_action
        trace.error_message = error_message
        trace.ended_at = now
        trace.duration_ms = _elapsed_ms(trace.started_at, now)
        self._save(trace)

    def start_step(
        self,
        trace_id: Optional[str],
        layer_name: str,
        step_name: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[int]:
        if not self.enabled or not trace_id:
            return None

        step = EventStep(
            trace_id=trace_id,
            layer_name=layer_name,
            step_name=step_name,
            step_metadata=metadata or {},
            started_at=datetime.utcnow(),
        )
        return step.id if self._save(step) else None

    def end_step(
        self,
        step_id: Optional[int],
        status: str = "success",
        metadata: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if not self.enabled or step_id is None:
            return

        step = self.db.get(EventStep, step_id)
        if not step:
            return

        now = datetime.utcnow()
        step.status = status
        step.error_message = error_message
        if metadata:
            step.step_metadata = {**(step.step_metadata or {}), **metadata}
        step.ended_at = now
        step.duration_ms = _elapsed_ms(step.started_at, now)
        self._save(step)

    def get_steps(self, trace_id: str) -> list[EventStep]:
        return (
            self.db.query(EventStep)
            .filter(EventStep.trace_id == trace_id)
            .order_by(EventStep.id.asc())
            .all()
        )


def cleanup_old_traces(db: Session, retention_days: int) -> int:
    """Delete traces and their steps older than the retention window"""
    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    old_ids = [
        row.trace_id
        for row in db.query(EventTrace.trace_id).filter(EventTrace.started_at < cutoff).all()
    ]
    if not old_ids:
        return 0

    db.query(EventStep).filter(EventStep.trace_id.in_(old_ids)).delete(synchronize_session=False)
    deleted = db.query(EventTrace).filter(EventTrace.trace_id.in_(old_ids)).delete(synchronize_session=False)
    db.commit()
    logger.info(f"🧹 Removed {deleted} event traces older than {retention_days} days")
    return deleted
