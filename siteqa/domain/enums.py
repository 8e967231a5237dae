from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    OWNER = "owner"
    MEMBER = "member"


class PlanTier(StrEnum):
    FREE = "free"
    STARTER = "starter"
    TEAM = "team"
    AGENCY = "agency"


class BillingInterval(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ReportStatus(StrEnum):
    # Reference values only; any non-empty status string may be stored.
    NEW = "new"
    IN_PROGRESS = "inProgress"
    DONE = "done"


class ActivityType(StrEnum):
    COMMENT = "comment"
    STATUS = "status"
    PRIORITY = "priority"
    DUE_DATE = "due_date"
    ASSIGNMENT = "assignment"
    COMPLETED = "completed"
    CREATED = "created"


class NotificationType(StrEnum):
    SITE_INVITE = "SITE_INVITE"
    MENTION = "MENTION"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_DUE_TODAY = "TASK_DUE_TODAY"
