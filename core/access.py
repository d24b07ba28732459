"""
core/access.py -- Access control evaluator for projects, tasks, milestones, comments.

Every route that reads or mutates project-scoped data asks this module first.
The rules live in one table (_RULES) keyed by Action, so the differences
between actions are explicit entries rather than per-handler conditionals:

  - Read access is membership-based: the owner or anyone holding a
    TeamMember record may see a project and everything under it.
  - Update Project needs membership role OWNER or MEMBER.
  - Delete Project and member management are owner-only. A MEMBER gets an
    explicit "forbidden", not "not found".
  - Delete Task accepts the project owner or role OWNER/MEMBER, which in
    practice is any member.

Outcomes:
  ALLOWED                   -- proceed with the mutation or read.
  DENIED_INVISIBLE          -- actor has no standing on the project (or it does
                               not exist). Callers answer "not found" so project
                               existence does not leak.
  DENIED_INSUFFICIENT_ROLE  -- actor can see the project but lacks the elevated
                               permission. Callers answer "forbidden".
  VALIDATION_FAILURE        -- e.g. assigning a task to a non-member.
  INDETERMINATE             -- the membership store failed. Reported distinctly
                               from a denial; callers must fail closed.

Pattern: Policy object with an injected repository. AccessEvaluator holds no
state besides the store reference and never caches lookups, so a membership
change is visible to the very next evaluation.

Layer rule: core/ is the kernel. No imports from api/, auth/, or projects/.
The store is any object satisfying MembershipReader.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from core.models import MemberRole, TeamMember

logger = logging.getLogger("capstone.access")

# Shared by the evaluator and by route lookups, so a missing resource and a
# hidden one produce identical responses.
NOT_VISIBLE_MESSAGE = "Project not found or access denied."
INDETERMINATE_MESSAGE = "Authorization could not be evaluated. Try again later."


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------


class Action(str, Enum):
    VIEW_PROJECT = "view_project"
    CREATE_PROJECT = "create_project"
    UPDATE_PROJECT = "update_project"
    DELETE_PROJECT = "delete_project"
    MANAGE_MEMBERS = "manage_members"
    CREATE_TASK = "create_task"
    VIEW_TASK = "view_task"
    UPDATE_TASK = "update_task"
    ASSIGN_TASK = "assign_task"
    DELETE_TASK = "delete_task"
    MANAGE_MILESTONES = "manage_milestones"
    CREATE_COMMENT = "create_comment"
    DELETE_COMMENT = "delete_comment"
    UPDATE_PROFILE = "update_profile"
    CHANGE_PASSWORD = "change_password"


class Outcome(str, Enum):
    ALLOWED = "allowed"
    DENIED_INVISIBLE = "denied_invisible"
    DENIED_INSUFFICIENT_ROLE = "denied_insufficient_role"
    VALIDATION_FAILURE = "validation_failure"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class Resource:
    """Identifies the target of an action.

    project_id -- owning project (or the project itself) for scoped actions.
    user_id    -- target user: the assignee for ASSIGN_TASK (None = unassign),
                  the profile owner for UPDATE_PROFILE / CHANGE_PASSWORD.
    author_id  -- comment author for DELETE_COMMENT.
    """

    project_id: Optional[int] = None
    user_id: Optional[int] = None
    author_id: Optional[int] = None


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOWED


class MembershipReader(Protocol):
    """Read-only view of membership and ownership facts.

    Implementations must read committed state on every call (no relaxed
    consistency, no cache).
    """

    def get_membership(self, project_id: int, user_id: int) -> Optional[TeamMember]: ...

    def get_owner(self, project_id: int) -> Optional[int]: ...

    def list_members(self, project_id: int) -> set[int]: ...


# ---------------------------------------------------------------------------
# Exceptions -- raised by AccessEvaluator.require()
# ---------------------------------------------------------------------------


class AccessError(Exception):
    """Base class for every non-allowed outcome."""

    outcome: Outcome = Outcome.DENIED_INVISIBLE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ResourceNotFound(AccessError):
    outcome = Outcome.DENIED_INVISIBLE


class PermissionDenied(AccessError):
    outcome = Outcome.DENIED_INSUFFICIENT_ROLE


class ValidationFailure(AccessError):
    outcome = Outcome.VALIDATION_FAILURE


class EvaluationIndeterminate(AccessError):
    """The membership store could not answer. Safe to retry with backoff."""

    outcome = Outcome.INDETERMINATE


_EXCEPTIONS: dict[Outcome, type[AccessError]] = {
    Outcome.DENIED_INVISIBLE: ResourceNotFound,
    Outcome.DENIED_INSUFFICIENT_ROLE: PermissionDenied,
    Outcome.VALIDATION_FAILURE: ValidationFailure,
    Outcome.INDETERMINATE: EvaluationIndeterminate,
}


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    """What satisfies a project-scoped action once the actor can see the project.

    owner  -- the user in Project.owner_id qualifies.
    roles  -- membership roles that qualify; None means any membership record.
    author -- the comment author qualifies.
    """

    owner: bool
    roles: Optional[frozenset[str]]
    forbidden: str
    author: bool = False


_OWNER_OR_MEMBER = frozenset({MemberRole.OWNER.value, MemberRole.MEMBER.value})
_NOBODY: frozenset[str] = frozenset()

_RULES: dict[Action, Rule] = {
    Action.VIEW_PROJECT: Rule(owner=True, roles=None, forbidden="You do not have access to this project."),
    Action.UPDATE_PROJECT: Rule(
        owner=False, roles=_OWNER_OR_MEMBER, forbidden="You do not have permission to update this project."
    ),
    Action.DELETE_PROJECT: Rule(owner=True, roles=_NOBODY, forbidden="Only the project owner can delete a project."),
    Action.MANAGE_MEMBERS: Rule(owner=True, roles=_NOBODY, forbidden="Only the project owner can manage members."),
    Action.CREATE_TASK: Rule(owner=False, roles=None, forbidden="You do not have access to this project."),
    Action.VIEW_TASK: Rule(owner=True, roles=None, forbidden="You do not have access to this task."),
    Action.UPDATE_TASK: Rule(owner=False, roles=None, forbidden="You do not have permission to update this task."),
    Action.ASSIGN_TASK: Rule(owner=False, roles=None, forbidden="You do not have permission to assign this task."),
    Action.DELETE_TASK: Rule(
        owner=True, roles=_OWNER_OR_MEMBER, forbidden="You do not have permission to delete this task."
    ),
    Action.MANAGE_MILESTONES: Rule(
        owner=False, roles=None, forbidden="You do not have permission to manage milestones."
    ),
    Action.CREATE_COMMENT: Rule(owner=True, roles=None, forbidden="You do not have access to this task."),
    Action.DELETE_COMMENT: Rule(
        owner=True,
        roles=_NOBODY,
        author=True,
        forbidden="Only the comment author or project owner can delete a comment.",
    ),
}

_SELF_ACTIONS = frozenset({Action.UPDATE_PROFILE, Action.CHANGE_PASSWORD})

# Store failures that mean "could not evaluate", not "denied".
_STORE_ERRORS = (SQLAlchemyError, OSError)


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class AccessEvaluator:
    """Stateless decision function over (actor, action, resource).

    Usage:
        access = AccessEvaluator(project_store)
        decision = access.evaluate(actor_id, Action.DELETE_PROJECT, Resource(project_id=7))
        access.require(actor_id, Action.UPDATE_TASK, Resource(project_id=7))  # raises on deny
    """

    def __init__(self, store: MembershipReader) -> None:
        self._store = store

    def evaluate(self, actor_id: int, action: Action, resource: Optional[Resource] = None) -> Decision:
        """Return exactly one Decision. Never raises for policy outcomes.

        Store failures are logged and returned as INDETERMINATE so callers can
        tell an outage from a denial.
        """
        resource = resource or Resource()
        try:
            decision = self._decide(actor_id, action, resource)
        except _STORE_ERRORS:
            logger.exception("Access evaluation indeterminate: actor=%s action=%s", actor_id, action.value)
            return Decision(Outcome.INDETERMINATE, INDETERMINATE_MESSAGE)
        if not decision.allowed:
            logger.debug(
                "Access %s: actor=%s action=%s project=%s",
                decision.outcome.value,
                actor_id,
                action.value,
                resource.project_id,
            )
        return decision

    def require(self, actor_id: int, action: Action, resource: Optional[Resource] = None) -> None:
        """Evaluate and raise the matching AccessError unless the outcome is ALLOWED."""
        decision = self.evaluate(actor_id, action, resource)
        if decision.allowed:
            return
        raise _EXCEPTIONS[decision.outcome](decision.reason)

    def visible_to(self, actor_id: int, project_id: int) -> bool:
        """True when the actor owns the project or holds any membership in it.

        Diagnostic helper; routes always go through require(). Store errors
        propagate; use evaluate() when an outage must be reported
        as INDETERMINATE.
        """
        if self._store.get_owner(project_id) == actor_id:
            return True
        return self._store.get_membership(project_id, actor_id) is not None

    # ------------------------------------------------------------------
    # Rule application
    # ------------------------------------------------------------------

    def _decide(self, actor_id: int, action: Action, resource: Resource) -> Decision:
        if action is Action.CREATE_PROJECT:
            return Decision(Outcome.ALLOWED)

        if action in _SELF_ACTIONS:
            if resource.user_id is not None and resource.user_id == actor_id:
                return Decision(Outcome.ALLOWED)
            return Decision(Outcome.DENIED_INVISIBLE, "User not found.")

        if resource.project_id is None:
            raise ValueError(f"{action.value} requires a project_id")

        rule = _RULES[action]
        owner_id = self._store.get_owner(resource.project_id)
        membership = self._store.get_membership(resource.project_id, actor_id)
        is_owner = owner_id is not None and owner_id == actor_id

        if not is_owner and membership is None:
            return Decision(Outcome.DENIED_INVISIBLE, NOT_VISIBLE_MESSAGE)

        satisfied = (
            (rule.owner and is_owner)
            or (membership is not None and (rule.roles is None or membership.role in rule.roles))
            or (rule.author and resource.author_id is not None and resource.author_id == actor_id)
        )
        if not satisfied:
            return Decision(Outcome.DENIED_INSUFFICIENT_ROLE, rule.forbidden)

        if action is Action.ASSIGN_TASK and resource.user_id is not None:
            if self._store.get_membership(resource.project_id, resource.user_id) is None:
                return Decision(Outcome.VALIDATION_FAILURE, "Assignee is not a member of this project.")

        return Decision(Outcome.ALLOWED)
