"""
Assignee resolution

Turns a template's assignment rule into a concrete Clio user for a matter.
Lookups that find nobody return an unresolved AssigneeResolution with an
error code; the caller decides whether to create the task unassigned.
"""

import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from ...config import VA_USER_ID, VA_USER_NAME
from ...shared.error_codes import ErrorCode
from .repository import AssigneeReferenceRepository
from .schemas import AssigneeResolution, MatterContext

logger = logging.getLogger(__name__)

LOCATION_REFERENCES = {"location"}
ATTORNEY_REFERENCES = {"attorney", "attorney_id"}


def is_numeric_id(value) -> bool:
    return value is not None and str(value).strip().isdigit()


class AssigneeResolver:
    """Resolves assignment rules against assignee reference data"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AssigneeReferenceRepository()

    def extract_location_keyword(self, location_text: Optional[str]) -> Optional[str]:
        """Find the first known location keyword inside a free-text meeting location"""
        if not location_text:
            return None

        keywords = self.repo.get_location_keywords(self.db)
        if not keywords:
            return None

        pattern = re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE)
        match = pattern.search(location_text)
        return match.group(1).lower() if match else None

    def resolve_for_template(
        self,
        rule: Optional[str],
        template_assignee_id: Optional[str],
        matter: MatterContext,
        meeting_location: Optional[str] = None,
        require_meeting_location: bool = False,
    ) -> AssigneeResolution:
        """
        Resolve a template's assignee.

        FUNDING_COOR always takes the template's assignee_id. Otherwise a
        numeric assignee_id overrides the rule and a non-numeric one is used
        as a lookup reference ("location" or "attorney").
        """
        if (rule or "").strip() == "FUNDING_COOR":
            return self.resolve(rule, matter, explicit_assignee_id=template_assignee_id)

        if is_numeric_id(template_assignee_id):
            return self.resolve(str(template_assignee_id).strip(), matter)

        reference = (template_assignee_id or "").strip().lower()
        if reference in LOCATION_REFERENCES:
            return self._resolve_by_location(matter, meeting_location, require_meeting_location)
        if reference in ATTORNEY_REFERENCES:
            return self._resolve_attorney(matter)

        return self.resolve(
            rule,
            matter,
            meeting_location=meeting_location,
            require_meeting_location=require_meeting_location,
        )

    def resolve(
        self,
        rule: Optional[str],
        matter: MatterContext,
        explicit_assignee_id: Optional[str] = None,
        meeting_location: Optional[str] = None,
        require_meeting_location: bool = False,
    ) -> AssigneeResolution:
        """Resolve an assignment rule tag for a matter"""
        tag = (rule or "").strip()

        if tag == "VA":
            return AssigneeResolution.user(VA_USER_ID, VA_USER_NAME)

        if tag == "FUNDING_COOR":
            if not is_numeric_id(explicit_assignee_id):
                return AssigneeResolution.unresolved(
                    ErrorCode.ASSIGNEE_INVALID_TYPE,
                    f"FUNDING_COOR requires a numeric assignee_id, got {explicit_assignee_id!r}. "
                    f"Matter: {matter.matter_id}",
                )
            return AssigneeResolution.user(int(str(explicit_assignee_id).strip()), "Funding Coordinator")

        if tag == "ATTORNEY":
            return self._resolve_attorney(matter)

        if tag == "CSC":
            return self._resolve_by_location(matter, meeting_location, require_meeting_location)

        if tag == "PARALEGAL":
            attorney_id = matter.attorney_id
            if not attorney_id:
                return AssigneeResolution.unresolved(
                    ErrorCode.ASSIGNEE_NO_ATTORNEY,
                    f"No attorney found for PARALEGAL assignment. Matter: {matter.matter_id}",
                )
            row = self.repo.get_by_attorney_id(self.db, attorney_id)
            if not row:
                return AssigneeResolution.unresolved(
                    ErrorCode.ASSIGNEE_NO_PARALEGAL,
                    f"No PARALEGAL found for attorney ID: {attorney_id}",
                )
            return AssigneeResolution.user(row.user_id, row.name)

        if tag in ("FUND_TABLE", "FUND TABLE"):
            attorney_id = matter.attorney_id
            if not attorney_id:
                return AssigneeResolution.unresolved(
                    ErrorCode.ASSIGNEE_NO_ATTORNEY,
                    f"No attorney found for FUND TABLE assignment. Matter: {matter.matter_id}",
                )
            row = self.repo.get_by_fund_table(self.db, attorney_id)
            if not row:
                return AssigneeResolution.unresolved(
                    ErrorCode.ASSIGNEE_NO_FUND_TABLE,
                    f"No assignee found in fund_table for attorney ID: {attorney_id}",
                )
            return AssigneeResolution.user(row.user_id, row.name)

        if is_numeric_id(tag):
            return AssigneeResolution.user(int(tag), "Direct Assignment")

        return AssigneeResolution.unresolved(
            ErrorCode.ASSIGNEE_INVALID_TYPE,
            f'Invalid assignee type: "{rule}". Must be ATTORNEY, CSC, PARALEGAL, FUND_TABLE, '
            f"FUNDING_COOR, VA, or a numeric ID.",
        )

    def _resolve_attorney(self, matter: MatterContext) -> AssigneeResolution:
        if not matter.attorney_id:
            return AssigneeResolution.unresolved(
                ErrorCode.ASSIGNEE_NO_ATTORNEY,
                f"No attorney assigned to matter: {matter.matter_id}",
            )
        return AssigneeResolution.user(matter.attorney_id, matter.attorney_name)

    def _resolve_by_location(
        self,
        matter: MatterContext,
        meeting_location: Optional[str],
        require_meeting_location: bool,
    ) -> AssigneeResolution:
        if require_meeting_location and not meeting_location:
            return AssigneeResolution.unresolved(
                ErrorCode.MEETING_NO_LOCATION,
                f"Meeting location is required but was not provided. Matter: {matter.matter_id}",
            )

        if meeting_location:
            location = self.extract_location_keyword(meeting_location)
            if not location:
                return AssigneeResolution.unresolved(
                    ErrorCode.MEETING_INVALID_LOCATION,
                    f"Could not extract location keyword from meeting location: {meeting_location}",
                )
        else:
            location = matter.location
            if not location:
                return AssigneeResolution.unresolved(
                    ErrorCode.MEETING_NO_LOCATION,
                    f"No location found for CSC assignment. Matter: {matter.matter_id}",
                )

        row = self.repo.get_by_location(self.db, location)
        if not row:
            return AssigneeResolution.unresolved(
                ErrorCode.ASSIGNEE_NO_CSC,
                f"No CSC found for location: {location}",
            )
        return AssigneeResolution.user(row.user_id, row.name)
