"""
API request and response models for Capstone Tracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in projects/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain models = domain truth; api/ models = API contract.

Enum fields reuse the str Enums from core/models.py, so an unknown status or
priority is rejected with 422 before any handler runs.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User
from core.models import MemberRole, ProjectStatus, TaskPriority, TaskStatus
from projects.models import Comment, Milestone, Project, Task, TeamMember

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: the address only has to be shaped like an email. It is
# the login identifier, not a delivery target.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt ignores input past 72 bytes; 128 chars keeps hashing cost bounded.
_PASSWORD_MAX = 128


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255, description="Account email address.")
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    username: str
    role: str


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    The minimum password length is a runtime setting, so the route checks it;
    only the upper bound is enforced here.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(max_length=_PASSWORD_MAX)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    first_name: str
    last_name: str
    role: str
    oauth_provider: Optional[str] = None
    image: Optional[str] = None


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Users and profile
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public identity embedded in project, task, member, and comment responses."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    image: Optional[str] = None

    @classmethod
    def from_user(cls, user: Optional[User]) -> Optional["UserSummary"]:
        """Build a UserSummary, or None when the user record is missing.

        Factory Method: the mapping lives next to the output model rather than
        in every route handler.
        """
        if user is None:
            return None
        return cls(
            id=user.id,
            email=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            image=user.image,
        )


class ProfileResponse(BaseModel):
    """Response for GET/PATCH /api/v1/users/me."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: str
    image: Optional[str] = None
    oauth_provider: Optional[str] = None
    has_password: bool
    created_at: str
    owned_projects: int = 0
    memberships: int = 0
    assigned_tasks: int = 0


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/me.

    new_password triggers the password-change rule; current_password is then
    required and must verify.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    current_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    new_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Projects and membership
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectUpdate(BaseModel):
    """PATCH body -- only fields present in the request are written."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[ProjectStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class MemberAdd(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    project_id: int
    user_id: int
    role: MemberRole
    joined_at: str
    user: Optional[UserSummary] = None

    @classmethod
    def from_member(cls, member: TeamMember, users: dict[int, User]) -> "MemberResponse":
        return cls(
            id=member.id,
            project_id=member.project_id,
            user_id=member.user_id,
            role=member.role,
            joined_at=member.joined_at,
            user=UserSummary.from_user(users.get(member.user_id)),
        )


class ProjectResponse(BaseModel):
    """One project row. Used for lists and as the base of the detail view."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    status: ProjectStatus
    start_date: Optional[str]
    end_date: Optional[str]
    owner_id: int
    owner: Optional[UserSummary] = None
    created_at: str
    updated_at: str
    task_count: int = 0
    milestone_count: int = 0

    @classmethod
    def from_project(cls, project: Project, users: dict[int, User]) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            status=project.status,
            start_date=project.start_date,
            end_date=project.end_date,
            owner_id=project.owner_id,
            owner=UserSummary.from_user(users.get(project.owner_id)),
            created_at=project.created_at,
            updated_at=project.updated_at,
            task_count=project.task_count,
            milestone_count=project.milestone_count,
        )


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


class MilestoneCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    due_date: Optional[date] = None


class MilestoneUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    due_date: Optional[date] = None
    is_completed: Optional[bool] = None


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    project_id: int
    name: str
    description: Optional[str]
    due_date: Optional[str]
    is_completed: bool
    created_at: str
    task_count: int = 0

    @classmethod
    def from_milestone(cls, milestone: Milestone) -> "MilestoneResponse":
        return cls(
            id=milestone.id,
            project_id=milestone.project_id,
            name=milestone.name,
            description=milestone.description,
            due_date=milestone.due_date,
            is_completed=milestone.is_completed,
            created_at=milestone.created_at,
            task_count=milestone.task_count,
        )


# ---------------------------------------------------------------------------
# Tasks and comments
# ---------------------------------------------------------------------------


class RefSummary(BaseModel):
    """{id, name} reference to a project or milestone inside a task response."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    project_id: int
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_id: Optional[int] = None
    milestone_id: Optional[int] = None
    due_date: Optional[date] = None


class TaskUpdate(BaseModel):
    """PATCH body. Sending "assignee_id": null explicitly unassigns the task."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[int] = None
    milestone_id: Optional[int] = None
    due_date: Optional[date] = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    project_id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    assignee_id: Optional[int]
    creator_id: int
    milestone_id: Optional[int]
    due_date: Optional[str]
    created_at: str
    updated_at: str
    comment_count: int = 0
    assignee: Optional[UserSummary] = None
    creator: Optional[UserSummary] = None
    project: Optional[RefSummary] = None
    milestone: Optional[RefSummary] = None

    @classmethod
    def from_task(
        cls,
        task: Task,
        users: dict[int, User],
        project_names: Optional[dict[int, str]] = None,
        milestone_names: Optional[dict[int, str]] = None,
    ) -> "TaskResponse":
        """Build a TaskResponse with embedded references.

        users, project_names and milestone_names are lookups the caller
        fetched in bulk; a missing entry simply leaves the reference None.
        """
        project_names = project_names or {}
        milestone_names = milestone_names or {}
        project = None
        if task.project_id in project_names:
            project = RefSummary(id=task.project_id, name=project_names[task.project_id])
        milestone = None
        if task.milestone_id is not None and task.milestone_id in milestone_names:
            milestone = RefSummary(id=task.milestone_id, name=milestone_names[task.milestone_id])
        return cls(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            assignee_id=task.assignee_id,
            creator_id=task.creator_id,
            milestone_id=task.milestone_id,
            due_date=task.due_date,
            created_at=task.created_at,
            updated_at=task.updated_at,
            comment_count=task.comment_count,
            assignee=UserSummary.from_user(users.get(task.assignee_id)) if task.assignee_id else None,
            creator=UserSummary.from_user(users.get(task.creator_id)),
            project=project,
            milestone=milestone,
        )


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    task_id: int
    author_id: int
    content: str
    created_at: str
    author: Optional[UserSummary] = None

    @classmethod
    def from_comment(cls, comment: Comment, users: dict[int, User]) -> "CommentResponse":
        return cls(
            id=comment.id,
            task_id=comment.task_id,
            author_id=comment.author_id,
            content=comment.content,
            created_at=comment.created_at,
            author=UserSummary.from_user(users.get(comment.author_id)),
        )


class TaskDetailResponse(TaskResponse):
    """GET /api/v1/tasks/{id} -- the task plus its comment thread."""

    comments: list[CommentResponse] = Field(default_factory=list)


class ProjectDetailResponse(ProjectResponse):
    """GET /api/v1/projects/{id} -- the project with members, milestones, and tasks."""

    members: list[MemberResponse] = Field(default_factory=list)
    milestones: list[MilestoneResponse] = Field(default_factory=list)
    tasks: list[TaskResponse] = Field(default_factory=list)
