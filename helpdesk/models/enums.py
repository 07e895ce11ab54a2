from enum import Enum


class Role(str, Enum):
    STUDENT = "student"
    COUNSELOR = "counselor"
    ADVISOR = "advisor"
    ADMIN = "admin"

    @property
    def is_staff(self) -> bool:
        return self in STAFF_ROLES

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        return cls((value or "").strip().lower())


STAFF_ROLES = frozenset({Role.COUNSELOR, Role.ADVISOR, Role.ADMIN})


class TicketStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def is_active(self) -> bool:
        return self in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


_STATUS_ORDER = [
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.RESOLVED,
    TicketStatus.CLOSED,
]

ACTIVE_STATUSES = [TicketStatus.OPEN.value, TicketStatus.IN_PROGRESS.value]


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class AutoAssigned(str, Enum):
    YES = "yes"
    NO = "no"
    MANUAL = "manual"


class ResponseVisibility(str, Enum):
    ALL = "all"
    COUNSELORS = "counselors"
    ADMINS = "admins"


class AssignmentType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    UNASSIGN = "unassign"
