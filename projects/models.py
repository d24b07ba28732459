"""
projects/models.py -- Domain dataclasses for projects and the work scoped to them.

These are pure data containers with zero logic. Persistence and cascade rules
live in projects/store.py; authorization lives in core/access.py.

Project is the aggregate root: Task, Milestone, TeamMember and Comment records
never outlive the project they belong to. TeamMember itself is defined in
core/models.py because the access evaluator consumes it.
"""

from dataclasses import dataclass
from typing import Optional

from core.models import TeamMember

__all__ = ["Comment", "Milestone", "Project", "Task", "TeamMember"]


@dataclass
class Project:
    """A capstone project owned by exactly one user.

    id is None before the record is written to the database. task_count and
    milestone_count are only filled in by listing queries.
    """

    name: str
    owner_id: int
    description: Optional[str] = None
    status: str = "PLANNING"  # "PLANNING" | "IN_PROGRESS" | "ON_HOLD" | "COMPLETED" | "CANCELLED"
    start_date: Optional[str] = None  # YYYY-MM-DD
    end_date: Optional[str] = None  # YYYY-MM-DD
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    task_count: int = 0
    milestone_count: int = 0


@dataclass
class Task:
    """A unit of work inside a project.

    assignee_id, when set, always refers to a member of project_id -- the
    access evaluator rejects anything else before the store is called.
    milestone_id, when set, refers to a milestone of the same project.
    """

    project_id: int
    title: str
    creator_id: int
    description: Optional[str] = None
    status: str = "TODO"  # "TODO" | "IN_PROGRESS" | "IN_REVIEW" | "DONE"
    priority: str = "MEDIUM"  # "LOW" | "MEDIUM" | "HIGH" | "URGENT"
    assignee_id: Optional[int] = None
    milestone_id: Optional[int] = None
    due_date: Optional[str] = None  # YYYY-MM-DD
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    comment_count: int = 0


@dataclass
class Milestone:
    project_id: int
    name: str
    description: Optional[str] = None
    due_date: Optional[str] = None  # YYYY-MM-DD
    is_completed: bool = False
    id: Optional[int] = None
    created_at: str = ""
    task_count: int = 0


@dataclass
class Comment:
    task_id: int
    author_id: int
    content: str
    id: Optional[int] = None
    created_at: str = ""
