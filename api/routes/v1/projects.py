"""
api/routes/v1/projects.py -- Project, membership, and milestone REST endpoints.

Routes:
  GET    /api/v1/projects                             -- projects the caller owns or belongs to
  POST   /api/v1/projects                             -- create; caller becomes owner (201)
  GET    /api/v1/projects/{id}                        -- detail with members, milestones, tasks
  PATCH  /api/v1/projects/{id}                        -- partial update
  DELETE /api/v1/projects/{id}                        -- cascade delete (204)
  GET    /api/v1/projects/{id}/members                -- membership list
  POST   /api/v1/projects/{id}/members                -- add a member by email (201)
  DELETE /api/v1/projects/{id}/members/{user_id}      -- remove a member (204)
  GET    /api/v1/projects/{id}/milestones             -- milestones by due date
  POST   /api/v1/projects/{id}/milestones             -- create (201)
  PATCH  /api/v1/milestones/{id}                      -- partial update
  DELETE /api/v1/milestones/{id}                      -- delete; tasks are unlinked (204)

Authorization: every handler calls AccessEvaluator.require() before touching
the store. Denials surface as AccessError subclasses, which the handlers in
api/main.py map to 404 / 403 / 400 / 503. Handlers never build those
responses themselves, so an invisible project and a missing one are
indistinguishable to the caller.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.models import (
    MemberAdd,
    MemberResponse,
    MilestoneCreate,
    MilestoneResponse,
    MilestoneUpdate,
    ProjectCreate,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectUpdate,
    TaskResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from core.access import (
    INDETERMINATE_MESSAGE,
    NOT_VISIBLE_MESSAGE,
    AccessEvaluator,
    Action,
    EvaluationIndeterminate,
    Resource,
    ResourceNotFound,
    ValidationFailure,
)
from core.models import MemberRole
from projects.models import Milestone, Project, TeamMember
from projects.store import ProjectStore

logger = logging.getLogger("capstone.api.projects")

# Auth policy: every route requires get_current_user; per-project rules come
# from core.access._RULES.
router = APIRouter()


def _load_project(project_store: ProjectStore, project_id: int) -> Project:
    project = project_store.get_project(project_id)
    if project is None:
        raise ResourceNotFound(NOT_VISIBLE_MESSAGE)
    return project


def _load_milestone(project_store: ProjectStore, milestone_id: int) -> Milestone:
    """Fetch the milestone whose project scopes the access check.

    A missing milestone answers exactly like an invisible one, and a store
    failure here is an indeterminate evaluation rather than a 500.
    """
    try:
        milestone = project_store.get_milestone(milestone_id)
    except SQLAlchemyError as exc:
        logger.exception("Milestone lookup failed: id=%s", milestone_id)
        raise EvaluationIndeterminate(INDETERMINATE_MESSAGE) from exc
    if milestone is None:
        raise ResourceNotFound(NOT_VISIBLE_MESSAGE)
    return milestone


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(request: Request, current_user: User = Depends(get_current_user)) -> list[ProjectResponse]:
    """Return projects the caller owns or belongs to, most recently updated first.

    Visibility is the listing filter itself, so no per-row evaluation is needed.
    """
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    projects = project_store.list_projects_for_user(current_user.id)
    owners = user_store.get_many({p.owner_id for p in projects})
    return [ProjectResponse.from_project(p, owners) for p in projects]


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    request: Request,
    body: ProjectCreate,
    current_user: User = Depends(get_current_user),
) -> ProjectResponse:
    """Create a project. The caller becomes owner and OWNER member atomically."""
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    access.require(current_user.id, Action.CREATE_PROJECT)
    fields = body.model_dump(mode="json")
    project_id = project_store.create_project(Project(owner_id=current_user.id, **fields))
    logger.info("Project id=%s created by user id=%s", project_id, current_user.id)

    project = _load_project(project_store, project_id)
    return ProjectResponse.from_project(project, {current_user.id: current_user})


@router.get("/projects/{project_id}", response_model=ProjectDetailResponse)
def get_project(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> ProjectDetailResponse:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    access.require(current_user.id, Action.VIEW_PROJECT, Resource(project_id=project_id))
    project = _load_project(project_store, project_id)
    members = project_store.list_memberships(project_id)
    milestones = project_store.list_milestones(project_id)
    tasks = project_store.list_tasks(project_id)

    user_ids = {project.owner_id} | {m.user_id for m in members}
    user_ids |= {t.creator_id for t in tasks} | {t.assignee_id for t in tasks if t.assignee_id}
    users = user_store.get_many(user_ids)
    milestone_names = {m.id: m.name for m in milestones}

    base = ProjectResponse.from_project(project, users).model_dump()
    base["task_count"] = len(tasks)
    base["milestone_count"] = len(milestones)
    return ProjectDetailResponse(
        **base,
        members=[MemberResponse.from_member(m, users) for m in members],
        milestones=[MilestoneResponse.from_milestone(m) for m in milestones],
        tasks=[TaskResponse.from_task(t, users, milestone_names=milestone_names) for t in tasks],
    )


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    request: Request,
    project_id: int,
    body: ProjectUpdate,
    current_user: User = Depends(get_current_user),
) -> ProjectResponse:
    """Partially update a project. Only fields present in the body are written."""
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    access.require(current_user.id, Action.UPDATE_PROJECT, Resource(project_id=project_id))
    fields = body.model_dump(mode="json", exclude_unset=True)
    if fields.get("name", "") is None or fields.get("status", "") is None:
        raise ValidationFailure("name and status cannot be null.")
    if fields:
        project_store.update_project(project_id, **fields)

    project = _load_project(project_store, project_id)
    return ProjectResponse.from_project(project, user_store.get_many({project.owner_id}))


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete a project and everything under it. Owner only."""
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    access.require(current_user.id, Action.DELETE_PROJECT, Resource(project_id=project_id))
    if not project_store.delete_project(project_id):
        raise ResourceNotFound(NOT_VISIBLE_MESSAGE)
    logger.info("Project id=%s deleted by user id=%s", project_id, current_user.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/members", response_model=list[MemberResponse])
def list_members(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> list[MemberResponse]:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    access.require(current_user.id, Action.VIEW_PROJECT, Resource(project_id=project_id))
    members = project_store.list_memberships(project_id)
    users = user_store.get_many({m.user_id for m in members})
    return [MemberResponse.from_member(m, users) for m in members]


@router.post("/projects/{project_id}/members", response_model=MemberResponse, status_code=201)
def add_member(
    request: Request,
    project_id: int,
    body: MemberAdd,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    """Add an existing user to the project as MEMBER. Owner only."""
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    access.require(current_user.id, Action.MANAGE_MEMBERS, Resource(project_id=project_id))
    user = user_store.get_by_username(body.email)
    if user is None or not user.is_active:
        raise ValidationFailure("No active user with that email.")

    try:
        project_store.add_member(TeamMember(project_id=project_id, user_id=user.id, role=MemberRole.MEMBER.value))
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User is already a member of this project."},
        ) from exc

    logger.info("User id=%s added to project id=%s", user.id, project_id)
    member = project_store.get_membership(project_id, user.id)
    return MemberResponse.from_member(member, {user.id: user})


@router.delete("/projects/{project_id}/members/{user_id}", status_code=204)
def remove_member(
    request: Request,
    project_id: int,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Remove a member. Their tasks in this project become unassigned.

    The owner's own membership cannot be removed; ownership is permanent.
    """
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    access.require(current_user.id, Action.MANAGE_MEMBERS, Resource(project_id=project_id))
    if project_store.get_owner(project_id) == user_id:
        raise ValidationFailure("The project owner cannot be removed.")
    if not project_store.remove_member(project_id, user_id):
        raise ResourceNotFound("Member not found.")
    logger.info("User id=%s removed from project id=%s", user_id, project_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/milestones", response_model=list[MilestoneResponse])
def list_milestones(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> list[MilestoneResponse]:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    access.require(current_user.id, Action.VIEW_PROJECT, Resource(project_id=project_id))
    return [MilestoneResponse.from_milestone(m) for m in project_store.list_milestones(project_id)]


@router.post("/projects/{project_id}/milestones", response_model=MilestoneResponse, status_code=201)
def create_milestone(
    request: Request,
    project_id: int,
    body: MilestoneCreate,
    current_user: User = Depends(get_current_user),
) -> MilestoneResponse:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    access.require(current_user.id, Action.MANAGE_MILESTONES, Resource(project_id=project_id))
    milestone_id = project_store.create_milestone(Milestone(project_id=project_id, **body.model_dump(mode="json")))
    return MilestoneResponse.from_milestone(_load_milestone(project_store, milestone_id))


@router.patch("/milestones/{milestone_id}", response_model=MilestoneResponse)
def update_milestone(
    request: Request,
    milestone_id: int,
    body: MilestoneUpdate,
    current_user: User = Depends(get_current_user),
) -> MilestoneResponse:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    milestone = _load_milestone(project_store, milestone_id)
    access.require(current_user.id, Action.MANAGE_MILESTONES, Resource(project_id=milestone.project_id))
    fields = body.model_dump(mode="json", exclude_unset=True)
    if fields.get("name", "") is None or fields.get("is_completed", False) is None:
        raise ValidationFailure("name and is_completed cannot be null.")
    project_store.update_milestone(milestone_id, **fields)
    return MilestoneResponse.from_milestone(_load_milestone(project_store, milestone_id))


@router.delete("/milestones/{milestone_id}", status_code=204)
def delete_milestone(
    request: Request,
    milestone_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    milestone = _load_milestone(project_store, milestone_id)
    access.require(current_user.id, Action.MANAGE_MILESTONES, Resource(project_id=milestone.project_id))
    project_store.delete_milestone(milestone_id)
    return Response(status_code=204)
