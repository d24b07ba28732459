"""
projects/seed.py -- Demo dataset for local development.

Creates one instructor, three students, and a sample project owned by Alice
with Bob and Carol as members, three milestones, eight tasks, and four
comments. Every account's password is "password123".

Idempotent: existing users are reused, and the project block is skipped when
Alice already owns a project with the sample name. Running `python main.py
seed` twice leaves one copy of everything.
"""

import logging

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.models import MemberRole, ProjectStatus, TaskPriority, TaskStatus, UserRole
from projects.models import Comment, Milestone, Project, Task, TeamMember
from projects.store import ProjectStore

logger = logging.getLogger("capstone.seed")

SEED_PASSWORD = "password123"  # noqa: S105 -- published demo credential

_USERS = [
    ("instructor@college.edu", "John", "Smith", UserRole.INSTRUCTOR),
    ("alice@student.edu", "Alice", "Johnson", UserRole.STUDENT),
    ("bob@student.edu", "Bob", "Williams", UserRole.STUDENT),
    ("carol@student.edu", "Carol", "Davis", UserRole.STUDENT),
]

_PROJECT_NAME = "E-Commerce Platform"

_MILESTONES = [
    (
        "Phase 1: Foundation",
        "Set up project infrastructure, authentication, and basic UI components",
        "2024-02-15",
        True,
    ),
    ("Phase 2: Core Features", "Implement product catalog, shopping cart, and checkout flow", "2024-03-15", False),
    ("Phase 3: Polish & Deploy", "Testing, bug fixes, documentation, and deployment", "2024-04-30", False),
]

# (title, description, status, priority, assignee key, milestone index)
_TASKS = [
    (
        "Set up Next.js project with TypeScript",
        "Initialize the Next.js project with TypeScript configuration and folder structure.",
        TaskStatus.DONE,
        TaskPriority.HIGH,
        "alice",
        0,
    ),
    (
        "Configure PostgreSQL database with Prisma",
        "Set up Prisma ORM and design the database schema for users, products, and orders.",
        TaskStatus.DONE,
        TaskPriority.HIGH,
        "bob",
        0,
    ),
    (
        "Implement user authentication",
        "Set up NextAuth.js with credentials provider and Google OAuth.",
        TaskStatus.DONE,
        TaskPriority.HIGH,
        "alice",
        0,
    ),
    (
        "Build product listing page",
        "Create a responsive product grid with filtering and sorting options.",
        TaskStatus.IN_PROGRESS,
        TaskPriority.HIGH,
        "bob",
        1,
    ),
    (
        "Implement shopping cart",
        "Build shopping cart functionality with add/remove items and quantity management.",
        TaskStatus.IN_PROGRESS,
        TaskPriority.HIGH,
        "carol",
        1,
    ),
    (
        "Create checkout flow",
        "Design and implement the multi-step checkout process.",
        TaskStatus.TODO,
        TaskPriority.MEDIUM,
        "alice",
        1,
    ),
    (
        "Write unit tests",
        "Create comprehensive unit tests for all components and API routes.",
        TaskStatus.TODO,
        TaskPriority.MEDIUM,
        "carol",
        2,
    ),
    (
        "Deploy to production",
        "Set up CI/CD pipeline and deploy the application to Vercel.",
        TaskStatus.TODO,
        TaskPriority.LOW,
        None,
        2,
    ),
]

# (task index, author key, content)
_COMMENTS = [
    (0, "alice", "I've completed the initial setup. The project structure follows the Next.js App Router pattern."),
    (1, "bob", "Database schema looks good! I've added indexes for better query performance."),
    (3, "bob", "Working on the product grid. Should we use server-side rendering or client-side filtering?"),
    (
        3,
        "alice",
        "Let's use server-side rendering for the initial load and client-side for filtering. "
        "That gives us the best of both worlds.",
    ),
]


def _ensure_user(user_store: UserStore, email: str, first: str, last: str, role: UserRole, hashed: str) -> int:
    existing = user_store.get_by_username(email)
    if existing is not None:
        return existing.id
    user_id = user_store.create_user(
        User(username=email, role=role.value, first_name=first, last_name=last, hashed_password=hashed)
    )
    logger.info("Created %s %s", role.value.lower(), email)
    return user_id


def seed_demo_data(user_store: UserStore, project_store: ProjectStore) -> dict[str, int]:
    """Load the demo dataset. Returns {"users", "projects", "tasks", "comments"} created counts."""
    created = {"users": 0, "projects": 0, "tasks": 0, "comments": 0}
    hashed = hash_password(SEED_PASSWORD)

    ids: dict[str, int] = {}
    for email, first, last, role in _USERS:
        existed = user_store.get_by_username(email) is not None
        ids[email.split("@")[0]] = _ensure_user(user_store, email, first, last, role, hashed)
        created["users"] += 0 if existed else 1

    alice = ids["alice"]
    if any(p.name == _PROJECT_NAME and p.owner_id == alice for p in project_store.list_projects_for_user(alice)):
        logger.info("Sample project already present; skipping")
        return created

    project_id = project_store.create_project(
        Project(
            name=_PROJECT_NAME,
            description=(
                "A full-stack e-commerce platform with user authentication, product catalog, "
                "shopping cart, and payment processing."
            ),
            status=ProjectStatus.IN_PROGRESS.value,
            start_date="2024-01-15",
            end_date="2024-04-30",
            owner_id=alice,
        )
    )
    created["projects"] = 1
    for key in ("bob", "carol"):
        project_store.add_member(TeamMember(project_id=project_id, user_id=ids[key], role=MemberRole.MEMBER.value))

    milestone_ids = [
        project_store.create_milestone(
            Milestone(project_id=project_id, name=name, description=desc, due_date=due, is_completed=done)
        )
        for name, desc, due, done in _MILESTONES
    ]

    task_ids: list[int] = []
    for title, desc, status, priority, assignee, milestone in _TASKS:
        task_ids.append(
            project_store.create_task(
                Task(
                    project_id=project_id,
                    title=title,
                    description=desc,
                    status=status.value,
                    priority=priority.value,
                    assignee_id=ids[assignee] if assignee else None,
                    creator_id=alice,
                    milestone_id=milestone_ids[milestone],
                )
            )
        )
    created["tasks"] = len(task_ids)

    for task_index, author, content in _COMMENTS:
        project_store.create_comment(Comment(task_id=task_ids[task_index], author_id=ids[author], content=content))
    created["comments"] = len(_COMMENTS)

    logger.info("Seeded project id=%s with %d tasks", project_id, len(task_ids))
    return created
