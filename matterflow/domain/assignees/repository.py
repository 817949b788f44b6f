"""Assignee reference repository - lookups against assigned_user_reference"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import AssigneeReference, LocationKeyword


def _contains(values, needle) -> bool:
    return needle in (values or [])


def _contains_id(values, user_id) -> bool:
    # ids may be stored as numbers or numeric strings
    return str(user_id) in {str(v) for v in (values or [])}


class AssigneeReferenceRepository:
    """Repository for assignee reference data (read-only)"""

    @staticmethod
    def get_location_keywords(db: Session) -> list[str]:
        rows = db.query(LocationKeyword).filter(LocationKeyword.active.is_(True)).all()
        return [row.keyword for row in rows]

    @staticmethod
    def get_by_location(db: Session, location: str) -> Optional[AssigneeReference]:
        """
        Find the reference row serving a location.

        Exact set membership wins. When the location is itself a known keyword,
        fall back to a case-insensitive substring match against each row's
        locations.
        """
        rows = db.query(AssigneeReference).order_by(AssigneeReference.id.asc()).all()

        for row in rows:
            if _contains(row.location, location):
                return row

        keywords = {k.lower() for k in AssigneeReferenceRepository.get_location_keywords(db)}
        needle = location.lower()
        if needle not in keywords:
            return None

        for row in rows:
            if any(needle in str(loc).lower() for loc in (row.location or [])):
                return row
        return None

    @staticmethod
    def get_by_attorney_id(db: Session, attorney_id: int) -> Optional[AssigneeReference]:
        rows = db.query(AssigneeReference).order_by(AssigneeReference.id.asc()).all()
        return next((row for row in rows if _contains_id(row.attorney_id, attorney_id)), None)

    @staticmethod
    def get_by_fund_table(db: Session, attorney_id: int) -> Optional[AssigneeReference]:
        rows = db.query(AssigneeReference).order_by(AssigneeReference.id.asc()).all()
        return next((row for row in rows if _contains_id(row.fund_table, attorney_id)), None)
