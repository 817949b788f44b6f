"""Persist automation errors to the error_logs table"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import ErrorLog
from ..shared.error_codes import ErrorCode

logger = logging.getLogger(__name__)


def log_error(
    db: Session,
    error_code: ErrorCode,
    error_message: str,
    context: Optional[dict[str, Any]] = None,
) -> Optional[ErrorLog]:
    """
    Record an error for later review.

    A failure to write the log entry is logged and swallowed so the
    automation that hit the original error keeps its own outcome.
    """
    entry = ErrorLog(
        error_code=ErrorCode(error_code).value,
        error_message=error_message,
        context=context or {},
    )
    try:
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Failed to write error log {error_code}: {e}")
        return None
