"""
api/routes/v1/tasks.py -- Task and comment REST endpoints.

Routes:
  GET    /api/v1/tasks?project_id=        -- tasks across visible projects (board order)
  POST   /api/v1/tasks                    -- create (201)
  GET    /api/v1/tasks/{id}               -- detail with comments
  PATCH  /api/v1/tasks/{id}               -- partial update, including (re)assignment
  DELETE /api/v1/tasks/{id}               -- delete with comments (204)
  POST   /api/v1/tasks/{id}/comments      -- add a comment (201)
  DELETE /api/v1/comments/{id}            -- delete a comment (204)

Assignment: whenever a request sets assignee_id (create or update), the
evaluator runs ASSIGN_TASK with the assignee as target user. A non-member
assignee is a ValidationFailure (400) and nothing is written. An explicit
null assignee_id unassigns and needs no membership check.

Milestones: a task may only reference a milestone of its own project.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.exc import SQLAlchemyError

from api.models import CommentCreate, CommentResponse, TaskCreate, TaskDetailResponse, TaskResponse, TaskUpdate
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
from projects.models import Comment, Task
from projects.store import ProjectStore

logger = logging.getLogger("capstone.api.tasks")

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_task(project_store: ProjectStore, task_id: int) -> Task:
    """Fetch the task whose project scopes the access check.

    Missing and invisible tasks produce the same ResourceNotFound, so task IDs
    in other projects cannot be probed. A store failure is indeterminate.
    """
    try:
        task = project_store.get_task(task_id)
    except SQLAlchemyError as exc:
        logger.exception("Task lookup failed: id=%s", task_id)
        raise EvaluationIndeterminate(INDETERMINATE_MESSAGE) from exc
    if task is None:
        raise ResourceNotFound(NOT_VISIBLE_MESSAGE)
    return task


def _load_comment(project_store: ProjectStore, comment_id: int) -> Comment:
    try:
        comment = project_store.get_comment(comment_id)
    except SQLAlchemyError as exc:
        logger.exception("Comment lookup failed: id=%s", comment_id)
        raise EvaluationIndeterminate(INDETERMINATE_MESSAGE) from exc
    if comment is None:
        raise ResourceNotFound(NOT_VISIBLE_MESSAGE)
    return comment


def _check_milestone(project_store: ProjectStore, project_id: int, milestone_id: Optional[int]) -> None:
    if milestone_id is None:
        return
    milestone = project_store.get_milestone(milestone_id)
    if milestone is None or milestone.project_id != project_id:
        raise ValidationFailure("Milestone does not belong to this project.")


def _task_responses(request: Request, tasks: list[Task]) -> list[TaskResponse]:
    """Decorate tasks with user, project, and milestone references in bulk."""
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    user_ids = {t.creator_id for t in tasks} | {t.assignee_id for t in tasks if t.assignee_id}
    users = user_store.get_many(user_ids)

    project_names: dict[int, str] = {}
    for project_id in {t.project_id for t in tasks}:
        project = project_store.get_project(project_id)
        if project is not None:
            project_names[project_id] = project.name

    milestone_names: dict[int, str] = {}
    for milestone_id in {t.milestone_id for t in tasks if t.milestone_id}:
        milestone = project_store.get_milestone(milestone_id)
        if milestone is not None:
            milestone_names[milestone_id] = milestone.name

    return [TaskResponse.from_task(t, users, project_names, milestone_names) for t in tasks]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    project_id: Optional[int] = Query(default=None),
    current_user: User = Depends(get_current_user),
) -> list[TaskResponse]:
    """Tasks in every project the caller can see, optionally narrowed to one project.

    Ordered by status, then priority (highest first), then newest first.
    """
    project_store: ProjectStore = request.app.state.project_store
    tasks = project_store.list_tasks_for_user(current_user.id, project_id)
    return _task_responses(request, tasks)


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request,
    body: TaskCreate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    access.require(current_user.id, Action.CREATE_TASK, Resource(project_id=body.project_id))
    if body.assignee_id is not None:
        assignee = Resource(project_id=body.project_id, user_id=body.assignee_id)
        access.require(current_user.id, Action.ASSIGN_TASK, assignee)
    _check_milestone(project_store, body.project_id, body.milestone_id)

    fields = body.model_dump(mode="json")
    task_id = project_store.create_task(Task(creator_id=current_user.id, **fields))
    logger.info("Task id=%s created in project id=%s", task_id, body.project_id)
    return _task_responses(request, [_load_task(project_store, task_id)])[0]


@router.get("/tasks/{task_id}", response_model=TaskDetailResponse)
def get_task(
    request: Request,
    task_id: int,
    current_user: User = Depends(get_current_user),
) -> TaskDetailResponse:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store
    user_store: UserStore = request.app.state.user_store

    task = _load_task(project_store, task_id)
    access.require(current_user.id, Action.VIEW_TASK, Resource(project_id=task.project_id))

    comments = project_store.list_comments(task_id)
    authors = user_store.get_many({c.author_id for c in comments})
    base = _task_responses(request, [task])[0]
    return TaskDetailResponse(
        **base.model_dump(),
        comments=[CommentResponse.from_comment(c, authors) for c in comments],
    )


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    """Partially update a task.

    Every check runs before the single update_task() write, so a rejected
    assignee leaves the task exactly as it was.
    """
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    task = _load_task(project_store, task_id)
    access.require(current_user.id, Action.UPDATE_TASK, Resource(project_id=task.project_id))

    fields = body.model_dump(mode="json", exclude_unset=True)
    for required in ("title", "status", "priority"):
        if required in fields and fields[required] is None:
            raise ValidationFailure(f"{required} cannot be null.")
    if "assignee_id" in fields:
        access.require(
            current_user.id,
            Action.ASSIGN_TASK,
            Resource(project_id=task.project_id, user_id=fields["assignee_id"]),
        )
    if "milestone_id" in fields:
        _check_milestone(project_store, task.project_id, fields["milestone_id"])

    if fields:
        project_store.update_task(task_id, **fields)
    return _task_responses(request, [_load_task(project_store, task_id)])[0]


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(
    request: Request,
    task_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    task = _load_task(project_store, task_id)
    access.require(current_user.id, Action.DELETE_TASK, Resource(project_id=task.project_id))
    project_store.delete_task(task_id)
    logger.info("Task id=%s deleted by user id=%s", task_id, current_user.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/comments", response_model=CommentResponse, status_code=201)
def create_comment(
    request: Request,
    task_id: int,
    body: CommentCreate,
    current_user: User = Depends(get_current_user),
) -> CommentResponse:
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    task = _load_task(project_store, task_id)
    access.require(current_user.id, Action.CREATE_COMMENT, Resource(project_id=task.project_id))
    comment_id = project_store.create_comment(Comment(task_id=task_id, author_id=current_user.id, content=body.content))
    comment = project_store.get_comment(comment_id)
    return CommentResponse.from_comment(comment, {current_user.id: current_user})


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    request: Request,
    comment_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete a comment. Its author or the project owner may do so."""
    access: AccessEvaluator = request.app.state.access
    project_store: ProjectStore = request.app.state.project_store

    comment = _load_comment(project_store, comment_id)
    task = _load_task(project_store, comment.task_id)
    access.require(
        current_user.id,
        Action.DELETE_COMMENT,
        Resource(project_id=task.project_id, author_id=comment.author_id),
    )
    project_store.delete_comment(comment_id)
    return Response(status_code=204)
