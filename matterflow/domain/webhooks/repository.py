"""Webhook event repository - idempotency ledger operations"""

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import WebhookEvent


class WebhookEventRepository:
    """Repository for webhook_events database operations"""

    @staticmethod
    def generate_idempotency_key(event_type: str, resource_id: int, timestamp: str) -> str:
        return f"{event_type}:{resource_id}:{timestamp}"

    @staticmethod
    def get_by_key(db: Session, idempotency_key: str) -> Optional[WebhookEvent]:
        return db.query(WebhookEvent).filter(WebhookEvent.idempotency_key == idempotency_key).first()

    @staticmethod
    def reserve(
        db: Session,
        idempotency_key: str,
        event_type: str,
        resource_type: str,
        resource_id: int,
        webhook_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Optional[WebhookEvent]:
        """
        Record a delivery as processing (success = NULL).

        Returns None when another delivery already holds the key.
        """
        event = WebhookEvent(
            idempotency_key=idempotency_key,
            webhook_id=webhook_id,
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
            success=None,
            action="processing",
            webhook_payload=payload,
            created_at=datetime.utcnow(),
        )
        db.add(event)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        db.refresh(event)
        return event

    @staticmethod
    def complete(
        db: Session,
        event: WebhookEvent,
        success: Optional[bool],
        action: str,
        tasks_created: int = 0,
        tasks_updated: int = 0,
        processing_duration_ms: Optional[int] = None,
        failure_details: Optional[list[dict[str, Any]]] = None,
    ) -> WebhookEvent:
        event.success = success
        event.action = action
        event.tasks_created = tasks_created
        event.tasks_updated = tasks_updated
        event.processing_duration_ms = processing_duration_ms
        event.failure_details = failure_details
        event.processed_at = datetime.utcnow()
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def cleanup_old_events(db: Session, retention_days: int) -> int:
        """Delete processed events older than the retention window"""
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        count = (
            db.query(WebhookEvent)
            .filter(WebhookEvent.created_at < cutoff, WebhookEvent.success.isnot(None))
            .delete(synchronize_session=False)
        )
        db.commit()
        return count
