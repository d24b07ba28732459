"""
core/models.py -- Shared domain vocabulary for Capstone Tracker.

Role and status enums are used by every layer (auth/, projects/, api/), so
they live in the kernel. TeamMember is here too because it is the one fact
the access evaluator reads; projects/ persists it, core/ only consumes it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    INSTRUCTOR = "INSTRUCTOR"


class MemberRole(str, Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"


class ProjectStatus(str, Enum):
    PLANNING = "PLANNING"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# Sort weight for "priority descending" listings. Alphabetical order of the
# enum values does not match their urgency.
PRIORITY_RANK: dict[str, int] = {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "URGENT": 3}
STATUS_RANK: dict[str, int] = {"TODO": 0, "IN_PROGRESS": 1, "IN_REVIEW": 2, "DONE": 3}


@dataclass
class TeamMember:
    """A user's membership in a project.

    At most one record exists per (project_id, user_id). The project owner
    always holds one with role OWNER, written in the same transaction as the
    project itself.
    """

    project_id: int
    user_id: int
    role: str  # "OWNER" | "MEMBER"
    id: Optional[int] = None
    joined_at: str = ""  # ISO 8601, set by store on insert
