"""Error codes recorded in the error_logs table

Format: ERR_[CATEGORY]_[SPECIFIC_ERROR]
"""

from enum import Enum


class ErrorCode(str, Enum):
    # Assignee resolution errors
    ASSIGNEE_NO_ATTORNEY = "ERR_ASSIGNEE_NO_ATTORNEY"
    ASSIGNEE_NO_CSC = "ERR_ASSIGNEE_NO_CSC"
    ASSIGNEE_NO_PARALEGAL = "ERR_ASSIGNEE_NO_PARALEGAL"
    ASSIGNEE_NO_FUND_TABLE = "ERR_ASSIGNEE_NO_FUND_TABLE"
    ASSIGNEE_INVALID_TYPE = "ERR_ASSIGNEE_INVALID_TYPE"

    # Meeting location errors
    MEETING_NO_LOCATION = "ERR_MEETING_NO_LOCATION"
    MEETING_INVALID_LOCATION = "ERR_MEETING_INVALID_LOCATION"

    # Template errors
    TEMPLATE_MISSING = "ERR_TEMPLATE_MISSING"
    TEMPLATE_DUPLICATE = "ERR_TEMPLATE_DUPLICATE"
    TEMPLATE_NOT_FOUND = "ERR_TEMPLATE_NOT_FOUND"

    # API and sync errors
    CLIO_API_FAILED = "ERR_CLIO_API_FAILED"
    TASK_NOT_FOUND_IN_CLIO = "ERR_TASK_NOT_FOUND_IN_CLIO"
    PARENT_TASK_NOT_FOUND = "ERR_PARENT_TASK_NOT_FOUND"

    # Validation errors (missing required data from Clio)
    VALIDATION_MISSING_STAGE = "ERR_VALIDATION_MISSING_STAGE"
    VALIDATION_MISSING_MATTER = "ERR_VALIDATION_MISSING_MATTER"
    VALIDATION_MISSING_REQUIRED_FIELD = "ERR_VALIDATION_MISSING_REQUIRED_FIELD"
