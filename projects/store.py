"""
projects/store.py -- SQLAlchemy-backed persistence layer for projects and their work.

Uses SQLAlchemy Core (not ORM) so the dataclasses in projects/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. ProjectStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

ProjectStore also satisfies core.access.MembershipReader (get_membership,
get_owner, list_members), so the access evaluator reads membership facts
straight from the committed tables with no caching layer in between.

Transactions:
  create_project()  -- project row + owner's OWNER membership, all or nothing.
  delete_project()  -- cascades comments, tasks, milestones, members.
  delete_task()     -- cascades comments.
  delete_milestone()-- clears milestone_id on tasks that referenced it.
  remove_member()   -- clears the removed user's task assignments, so an
                       assignee is always a member.
All use engine.begin(), which commits on success and rolls back on any error.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ProjectStore()                                # SQLite default
    store = ProjectStore("postgresql://user:pw@host/db")  # PostgreSQL
    project_id = store.create_project(Project(name="Capstone", owner_id=1))
    store.add_member(TeamMember(project_id=project_id, user_id=2, role="MEMBER"))
    store.close()
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine

from core.models import PRIORITY_RANK, STATUS_RANK, MemberRole
from projects.models import Comment, Milestone, Project, Task, TeamMember

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'capstone_projects.db'}"

# Columns callers may change through the update_* methods. Column names in
# .values(**fields) therefore never come from raw request input.
_PROJECT_FIELDS = frozenset({"name", "description", "status", "start_date", "end_date"})
_TASK_FIELDS = frozenset({"title", "description", "status", "priority", "assignee_id", "milestone_id", "due_date"})
_MILESTONE_FIELDS = frozenset({"name", "description", "due_date", "is_completed"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("status", String(30), nullable=False, server_default="PLANNING"),
    Column("start_date", String(10)),  # YYYY-MM-DD
    Column("end_date", String(10)),
    Column("owner_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_members = Table(
    "team_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    Column("role", String(20), nullable=False, server_default="MEMBER"),
    Column("joined_at", String(32), nullable=False),
    UniqueConstraint("project_id", "user_id", name="uq_project_user"),
)

_milestones = Table(
    "milestones",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("due_date", String(10)),
    Column("is_completed", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("created_at", String(32), nullable=False),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False, server_default="TODO"),
    Column("priority", String(20), nullable=False, server_default="MEDIUM"),
    Column("assignee_id", Integer),
    Column("creator_id", Integer, nullable=False),
    Column("milestone_id", Integer),
    Column("due_date", String(10)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("task_id", Integer, nullable=False, index=True),
    Column("author_id", Integer, nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _check_fields(fields: dict, allowed: frozenset) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {unknown!r}")


# "status ascending, priority descending, newest first" -- the board order.
# The enum values do not sort correctly as strings, so rank them explicitly.
_TASK_ORDER = (
    case(STATUS_RANK, value=_tasks.c.status, else_=len(STATUS_RANK)),
    case(PRIORITY_RANK, value=_tasks.c.priority, else_=-1).desc(),
    _tasks.c.created_at.desc(),
    _tasks.c.id.desc(),
)


def _comment_count():
    return (
        select(func.count())
        .select_from(_comments)
        .where(_comments.c.task_id == _tasks.c.id)
        .scalar_subquery()
        .label("comment_count")
    )


def _visible_project_ids(user_id: int):
    """Subquery of project IDs the user owns or belongs to."""
    member_of = select(_members.c.project_id).where(_members.c.user_id == user_id)
    return select(_projects.c.id).where(or_(_projects.c.owner_id == user_id, _projects.c.id.in_(member_of)))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProjectStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Run a trivial query. Raises if the database is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> int:
        """Insert a project and its owner's OWNER membership in one transaction.

        If either insert fails, neither is kept: there is never a project
        without an owning TeamMember record.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _projects.insert().values(
                    name=project.name,
                    description=project.description,
                    status=project.status,
                    start_date=project.start_date,
                    end_date=project.end_date,
                    owner_id=project.owner_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            project_id = result.inserted_primary_key[0]
            conn.execute(
                _members.insert().values(
                    project_id=project_id,
                    user_id=project.owner_id,
                    role=MemberRole.OWNER.value,
                    joined_at=now,
                )
            )
        return project_id

    def get_project(self, project_id: int) -> Optional[Project]:
        with self.engine.connect() as conn:
            row = conn.execute(_projects.select().where(_projects.c.id == project_id)).fetchone()
        return _row_to_project(row) if row is not None else None

    def list_projects_for_user(self, user_id: int) -> list[Project]:
        """Return projects the user owns or belongs to, most recently updated first.

        Task and milestone counts come from correlated subqueries so the list
        is one SELECT regardless of project count.
        """
        task_count = (
            select(func.count()).select_from(_tasks).where(_tasks.c.project_id == _projects.c.id).scalar_subquery()
        )
        milestone_count = (
            select(func.count())
            .select_from(_milestones)
            .where(_milestones.c.project_id == _projects.c.id)
            .scalar_subquery()
        )
        stmt = (
            select(_projects, task_count.label("task_count"), milestone_count.label("milestone_count"))
            .where(_projects.c.id.in_(_visible_project_ids(user_id)))
            .order_by(_projects.c.updated_at.desc(), _projects.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_project(r) for r in rows]

    def update_project(self, project_id: int, **fields) -> bool:
        """Update project columns and bump updated_at. Returns False if not found."""
        _check_fields(fields, _PROJECT_FIELDS)
        with self.engine.connect() as conn:
            result = conn.execute(
                _projects.update().where(_projects.c.id == project_id).values(**fields, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_project(self, project_id: int) -> bool:
        """Delete a project and everything scoped to it in one transaction."""
        task_ids = select(_tasks.c.id).where(_tasks.c.project_id == project_id)
        with self.engine.begin() as conn:
            conn.execute(_comments.delete().where(_comments.c.task_id.in_(task_ids)))
            conn.execute(_tasks.delete().where(_tasks.c.project_id == project_id))
            conn.execute(_milestones.delete().where(_milestones.c.project_id == project_id))
            conn.execute(_members.delete().where(_members.c.project_id == project_id))
            result = conn.execute(_projects.delete().where(_projects.c.id == project_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Membership (core.access.MembershipReader)
    # ------------------------------------------------------------------

    def get_membership(self, project_id: int, user_id: int) -> Optional[TeamMember]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _members.select().where((_members.c.project_id == project_id) & (_members.c.user_id == user_id))
            ).fetchone()
        return _row_to_member(row) if row is not None else None

    def get_owner(self, project_id: int) -> Optional[int]:
        with self.engine.connect() as conn:
            return conn.execute(select(_projects.c.owner_id).where(_projects.c.id == project_id)).scalar()

    def list_members(self, project_id: int) -> set[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_members.c.user_id).where(_members.c.project_id == project_id)).fetchall()
        return {r.user_id for r in rows}

    def list_memberships(self, project_id: int) -> list[TeamMember]:
        """Full membership records for a project, in join order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _members.select().where(_members.c.project_id == project_id).order_by(_members.c.id)
            ).fetchall()
        return [_row_to_member(r) for r in rows]

    def add_member(self, member: TeamMember) -> int:
        """Insert a membership record.

        Raises sqlalchemy.exc.IntegrityError if the user already belongs to
        the project (UNIQUE(project_id, user_id)).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.insert().values(
                    project_id=member.project_id,
                    user_id=member.user_id,
                    role=member.role,
                    joined_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def remove_member(self, project_id: int, user_id: int) -> bool:
        """Delete a membership and unassign the user's tasks in that project."""
        with self.engine.begin() as conn:
            conn.execute(
                _tasks.update()
                .where((_tasks.c.project_id == project_id) & (_tasks.c.assignee_id == user_id))
                .values(assignee_id=None, updated_at=_now_iso())
            )
            result = conn.execute(
                _members.delete().where((_members.c.project_id == project_id) & (_members.c.user_id == user_id))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    project_id=task.project_id,
                    title=task.title,
                    description=task.description,
                    status=task.status,
                    priority=task.priority,
                    assignee_id=task.assignee_id,
                    creator_id=task.creator_id,
                    milestone_id=task.milestone_id,
                    due_date=task.due_date,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int) -> Optional[Task]:
        with self.engine.connect() as conn:
            row = conn.execute(select(_tasks, _comment_count()).where(_tasks.c.id == task_id)).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, project_id: int) -> list[Task]:
        """All tasks of one project in board order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_tasks, _comment_count()).where(_tasks.c.project_id == project_id).order_by(*_TASK_ORDER)
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def list_tasks_for_user(self, user_id: int, project_id: Optional[int] = None) -> list[Task]:
        """Tasks across every project visible to the user, optionally narrowed to one.

        A project_id the user cannot see yields an empty list, not an error.
        """
        stmt = select(_tasks, _comment_count()).where(_tasks.c.project_id.in_(_visible_project_ids(user_id)))
        if project_id is not None:
            stmt = stmt.where(_tasks.c.project_id == project_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(*_TASK_ORDER)).fetchall()
        return [_row_to_task(r) for r in rows]

    def update_task(self, task_id: int, **fields) -> bool:
        _check_fields(fields, _TASK_FIELDS)
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.update().where(_tasks.c.id == task_id).values(**fields, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def count_comments(self, task_id: int) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(select(func.count()).select_from(_comments).where(_comments.c.task_id == task_id)).scalar()
                or 0
            )

    def delete_task(self, task_id: int) -> bool:
        """Delete a task and its comments in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(_comments.delete().where(_comments.c.task_id == task_id))
            result = conn.execute(_tasks.delete().where(_tasks.c.id == task_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    def create_milestone(self, milestone: Milestone) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _milestones.insert().values(
                    project_id=milestone.project_id,
                    name=milestone.name,
                    description=milestone.description,
                    due_date=milestone.due_date,
                    is_completed=1 if milestone.is_completed else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_milestone(self, milestone_id: int) -> Optional[Milestone]:
        with self.engine.connect() as conn:
            row = conn.execute(_milestones.select().where(_milestones.c.id == milestone_id)).fetchone()
        return _row_to_milestone(row) if row is not None else None

    def list_milestones(self, project_id: int) -> list[Milestone]:
        """Milestones by due date, undated ones last, each with its task count."""
        task_count = (
            select(func.count())
            .select_from(_tasks)
            .where(_tasks.c.milestone_id == _milestones.c.id)
            .scalar_subquery()
            .label("task_count")
        )
        stmt = (
            select(_milestones, task_count)
            .where(_milestones.c.project_id == project_id)
            .order_by(_milestones.c.due_date.is_(None), _milestones.c.due_date, _milestones.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_milestone(r) for r in rows]

    def update_milestone(self, milestone_id: int, **fields) -> bool:
        _check_fields(fields, _MILESTONE_FIELDS)
        if "is_completed" in fields:
            fields["is_completed"] = 1 if fields["is_completed"] else 0
        if not fields:
            return self.get_milestone(milestone_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_milestones.update().where(_milestones.c.id == milestone_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_milestone(self, milestone_id: int) -> bool:
        """Delete a milestone; tasks that referenced it keep existing, unlinked."""
        with self.engine.begin() as conn:
            conn.execute(
                _tasks.update()
                .where(_tasks.c.milestone_id == milestone_id)
                .values(milestone_id=None, updated_at=_now_iso())
            )
            result = conn.execute(_milestones.delete().where(_milestones.c.id == milestone_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment: Comment) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _comments.insert().values(
                    task_id=comment.task_id,
                    author_id=comment.author_id,
                    content=comment.content,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_comment(self, comment_id: int) -> Optional[Comment]:
        with self.engine.connect() as conn:
            row = conn.execute(_comments.select().where(_comments.c.id == comment_id)).fetchone()
        return _row_to_comment(row) if row is not None else None

    def list_comments(self, task_id: int) -> list[Comment]:
        """Comments on a task, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _comments.select()
                .where(_comments.c.task_id == task_id)
                .order_by(_comments.c.created_at, _comments.c.id)
            ).fetchall()
        return [_row_to_comment(r) for r in rows]

    def delete_comment(self, comment_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_comments.delete().where(_comments.c.id == comment_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Profile summary
    # ------------------------------------------------------------------

    def user_summary_counts(self, user_id: int) -> dict[str, int]:
        """Return owned project, membership, and assigned task counts for a user."""
        with self.engine.connect() as conn:
            owned = conn.execute(
                select(func.count()).select_from(_projects).where(_projects.c.owner_id == user_id)
            ).scalar()
            memberships = conn.execute(
                select(func.count()).select_from(_members).where(_members.c.user_id == user_id)
            ).scalar()
            tasks = conn.execute(
                select(func.count()).select_from(_tasks).where(_tasks.c.assignee_id == user_id)
            ).scalar()
        return {
            "owned_projects": owned or 0,
            "memberships": memberships or 0,
            "assigned_tasks": tasks or 0,
        }

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_project(row) -> Project:
    # Counts are only selected by list_projects_for_user(); plain selects
    # have no such columns, so fall back to 0.
    return Project(
        id=row.id,
        name=row.name,
        description=row.description,
        status=row.status,
        start_date=row.start_date,
        end_date=row.end_date,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        task_count=getattr(row, "task_count", 0) or 0,
        milestone_count=getattr(row, "milestone_count", 0) or 0,
    )


def _row_to_member(row) -> TeamMember:
    return TeamMember(
        id=row.id,
        project_id=row.project_id,
        user_id=row.user_id,
        role=row.role,
        joined_at=row.joined_at,
    )


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        description=row.description,
        status=row.status,
        priority=row.priority,
        assignee_id=row.assignee_id,
        creator_id=row.creator_id,
        milestone_id=row.milestone_id,
        due_date=row.due_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
        comment_count=getattr(row, "comment_count", 0) or 0,
    )


def _row_to_milestone(row) -> Milestone:
    return Milestone(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        description=row.description,
        due_date=row.due_date,
        is_completed=bool(row.is_completed),
        created_at=row.created_at,
        task_count=getattr(row, "task_count", 0) or 0,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        task_id=row.task_id,
        author_id=row.author_id,
        content=row.content,
        created_at=row.created_at,
    )
