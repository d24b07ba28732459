"""Unit tests for core/access.py -- the access control evaluator.

Covers:
- Every rule-table row for owner, OWNER/MEMBER roles, and outsiders
- Invisible (not found) vs insufficient role (forbidden) on update and delete
- The invite scenario: a new MEMBER may view, create tasks, update, delete
  tasks, but not delete the project
- Assignment validation for members, non-members, and unassignment
- Store failures reported as INDETERMINATE, and require() failing closed
- Self-only profile actions
- No caching: membership changes are visible to the next evaluation
"""

from typing import Optional

import pytest
from sqlalchemy.exc import OperationalError

from core.access import (
    AccessEvaluator,
    Action,
    Decision,
    EvaluationIndeterminate,
    Outcome,
    PermissionDenied,
    Resource,
    ResourceNotFound,
    ValidationFailure,
)
from core.models import TeamMember
from projects.models import Project

OWNER = 1
MEMBER = 2
OUTSIDER = 3
OWNER_ROLE_MEMBER = 4  # holds role OWNER without being Project.owner_id
PROJECT = 10


class FakeMembershipStore:
    """In-memory MembershipReader. Set fail=True to simulate an outage."""

    def __init__(self) -> None:
        self.owners: dict[int, int] = {}
        self.members: dict[tuple[int, int], str] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise OperationalError("SELECT", {}, Exception("database is locked"))

    def get_membership(self, project_id: int, user_id: int) -> Optional[TeamMember]:
        self._check()
        role = self.members.get((project_id, user_id))
        if role is None:
            return None
        return TeamMember(project_id=project_id, user_id=user_id, role=role)

    def get_owner(self, project_id: int) -> Optional[int]:
        self._check()
        return self.owners.get(project_id)

    def list_members(self, project_id: int) -> set[int]:
        self._check()
        return {uid for (pid, uid) in self.members if pid == project_id}


@pytest.fixture
def fake_store() -> FakeMembershipStore:
    s = FakeMembershipStore()
    s.owners[PROJECT] = OWNER
    s.members[(PROJECT, OWNER)] = "OWNER"
    s.members[(PROJECT, MEMBER)] = "MEMBER"
    s.members[(PROJECT, OWNER_ROLE_MEMBER)] = "OWNER"
    return s


@pytest.fixture
def access(fake_store) -> AccessEvaluator:
    return AccessEvaluator(fake_store)


def _outcome(access: AccessEvaluator, actor: int, action: Action, **resource) -> Outcome:
    resource.setdefault("project_id", PROJECT)
    return access.evaluate(actor, action, Resource(**resource)).outcome


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

_UNSCOPED = (Action.CREATE_PROJECT, Action.UPDATE_PROFILE, Action.CHANGE_PASSWORD)
_PROJECT_ACTIONS = [a for a in Action if a not in _UNSCOPED]


class TestVisibility:
    @pytest.mark.parametrize("action", _PROJECT_ACTIONS)
    def test_outsider_is_denied_invisible_for_every_scoped_action(self, access, action):
        assert _outcome(access, OUTSIDER, action) is Outcome.DENIED_INVISIBLE

    @pytest.mark.parametrize("action", [Action.VIEW_PROJECT, Action.UPDATE_PROJECT, Action.DELETE_PROJECT])
    def test_missing_project_looks_like_invisible(self, access, action):
        assert _outcome(access, OWNER, action, project_id=999) is Outcome.DENIED_INVISIBLE

    def test_invisible_reason_does_not_confirm_existence(self, access):
        missing = access.evaluate(OUTSIDER, Action.VIEW_PROJECT, Resource(project_id=999))
        hidden = access.evaluate(OUTSIDER, Action.VIEW_PROJECT, Resource(project_id=PROJECT))
        assert missing == hidden

    def test_visible_to(self, access):
        assert access.visible_to(OWNER, PROJECT)
        assert access.visible_to(MEMBER, PROJECT)
        assert not access.visible_to(OUTSIDER, PROJECT)

    def test_owner_without_membership_record_can_still_view(self, fake_store, access):
        del fake_store.members[(PROJECT, OWNER)]
        assert _outcome(access, OWNER, Action.VIEW_PROJECT) is Outcome.ALLOWED
        assert _outcome(access, OWNER, Action.DELETE_PROJECT) is Outcome.ALLOWED


class TestRuleTable:
    @pytest.mark.parametrize(
        "action",
        [
            Action.VIEW_PROJECT,
            Action.UPDATE_PROJECT,
            Action.CREATE_TASK,
            Action.VIEW_TASK,
            Action.UPDATE_TASK,
            Action.ASSIGN_TASK,
            Action.DELETE_TASK,
            Action.MANAGE_MILESTONES,
            Action.CREATE_COMMENT,
        ],
    )
    def test_plain_member_allowed(self, access, action):
        assert _outcome(access, MEMBER, action) is Outcome.ALLOWED

    @pytest.mark.parametrize("action", [Action.DELETE_PROJECT, Action.MANAGE_MEMBERS])
    def test_owner_only_actions_forbid_members(self, access, action):
        assert _outcome(access, MEMBER, action) is Outcome.DENIED_INSUFFICIENT_ROLE
        assert _outcome(access, OWNER_ROLE_MEMBER, action) is Outcome.DENIED_INSUFFICIENT_ROLE
        assert _outcome(access, OWNER, action) is Outcome.ALLOWED

    def test_update_project_requires_membership_role(self, fake_store, access):
        """Ownership alone does not satisfy UPDATE_PROJECT; a role record does."""
        del fake_store.members[(PROJECT, OWNER)]
        assert _outcome(access, OWNER, Action.UPDATE_PROJECT) is Outcome.DENIED_INSUFFICIENT_ROLE

    def test_forbidden_decisions_carry_a_reason(self, access):
        decision = access.evaluate(MEMBER, Action.DELETE_PROJECT, Resource(project_id=PROJECT))
        assert decision.reason == "Only the project owner can delete a project."

    def test_create_project_needs_no_lookup(self, fake_store, access):
        fake_store.fail = True
        assert access.evaluate(OUTSIDER, Action.CREATE_PROJECT).outcome is Outcome.ALLOWED

    def test_scoped_action_without_project_id_is_a_programming_error(self, access):
        with pytest.raises(ValueError):
            access.evaluate(OWNER, Action.VIEW_PROJECT, Resource())


class TestUpdateDeleteAsymmetry:
    def test_member_may_update_but_not_delete(self, access):
        assert _outcome(access, MEMBER, Action.UPDATE_PROJECT) is Outcome.ALLOWED
        assert _outcome(access, MEMBER, Action.DELETE_PROJECT) is Outcome.DENIED_INSUFFICIENT_ROLE

    def test_invite_scenario(self, fake_store, access):
        newcomer = 50
        assert _outcome(access, newcomer, Action.VIEW_PROJECT) is Outcome.DENIED_INVISIBLE

        fake_store.members[(PROJECT, newcomer)] = "MEMBER"

        assert _outcome(access, newcomer, Action.VIEW_PROJECT) is Outcome.ALLOWED
        assert _outcome(access, newcomer, Action.CREATE_TASK) is Outcome.ALLOWED
        assert _outcome(access, newcomer, Action.UPDATE_PROJECT) is Outcome.ALLOWED
        assert _outcome(access, newcomer, Action.DELETE_PROJECT) is Outcome.DENIED_INSUFFICIENT_ROLE
        assert _outcome(access, newcomer, Action.DELETE_TASK) is Outcome.ALLOWED

    def test_revoked_membership_takes_effect_immediately(self, fake_store, access):
        assert _outcome(access, MEMBER, Action.UPDATE_TASK) is Outcome.ALLOWED
        del fake_store.members[(PROJECT, MEMBER)]
        assert _outcome(access, MEMBER, Action.UPDATE_TASK) is Outcome.DENIED_INVISIBLE


class TestComments:
    def test_author_may_delete_own_comment(self, access):
        assert _outcome(access, MEMBER, Action.DELETE_COMMENT, author_id=MEMBER) is Outcome.ALLOWED

    def test_member_may_not_delete_someone_elses_comment(self, access):
        assert _outcome(access, MEMBER, Action.DELETE_COMMENT, author_id=OWNER) is Outcome.DENIED_INSUFFICIENT_ROLE

    def test_owner_may_delete_any_comment(self, access):
        assert _outcome(access, OWNER, Action.DELETE_COMMENT, author_id=MEMBER) is Outcome.ALLOWED

    def test_former_member_cannot_delete_own_comment(self, fake_store, access):
        del fake_store.members[(PROJECT, MEMBER)]
        assert _outcome(access, MEMBER, Action.DELETE_COMMENT, author_id=MEMBER) is Outcome.DENIED_INVISIBLE


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


class TestAssignment:
    def test_assign_to_member(self, access):
        assert _outcome(access, OWNER, Action.ASSIGN_TASK, user_id=MEMBER) is Outcome.ALLOWED

    def test_assign_to_non_member_is_validation_failure(self, access):
        decision = access.evaluate(MEMBER, Action.ASSIGN_TASK, Resource(project_id=PROJECT, user_id=OUTSIDER))
        assert decision.outcome is Outcome.VALIDATION_FAILURE
        assert decision.reason == "Assignee is not a member of this project."

    def test_unassign_needs_no_assignee_check(self, access):
        assert _outcome(access, MEMBER, Action.ASSIGN_TASK, user_id=None) is Outcome.ALLOWED

    def test_outsider_assigning_is_invisible_not_validation(self, access):
        assert _outcome(access, OUTSIDER, Action.ASSIGN_TASK, user_id=MEMBER) is Outcome.DENIED_INVISIBLE

    def test_require_raises_validation_failure(self, access):
        with pytest.raises(ValidationFailure):
            access.require(MEMBER, Action.ASSIGN_TASK, Resource(project_id=PROJECT, user_id=OUTSIDER))


# ---------------------------------------------------------------------------
# Self-only actions
# ---------------------------------------------------------------------------


class TestProfileActions:
    @pytest.mark.parametrize("action", [Action.UPDATE_PROFILE, Action.CHANGE_PASSWORD])
    def test_self_allowed(self, access, action):
        assert access.evaluate(OUTSIDER, action, Resource(user_id=OUTSIDER)).outcome is Outcome.ALLOWED

    @pytest.mark.parametrize("action", [Action.UPDATE_PROFILE, Action.CHANGE_PASSWORD])
    def test_other_user_denied(self, access, action):
        assert access.evaluate(OWNER, action, Resource(user_id=MEMBER)).outcome is Outcome.DENIED_INVISIBLE

    def test_missing_target_denied(self, access):
        assert access.evaluate(OWNER, Action.UPDATE_PROFILE).outcome is Outcome.DENIED_INVISIBLE


# ---------------------------------------------------------------------------
# Failure semantics
# ---------------------------------------------------------------------------


class TestIndeterminate:
    def test_store_failure_is_indeterminate_not_denied(self, fake_store, access):
        fake_store.fail = True
        decision = access.evaluate(OWNER, Action.VIEW_PROJECT, Resource(project_id=PROJECT))
        assert decision.outcome is Outcome.INDETERMINATE
        assert not decision.allowed

    def test_require_fails_closed(self, fake_store, access):
        fake_store.fail = True
        with pytest.raises(EvaluationIndeterminate):
            access.require(OWNER, Action.DELETE_PROJECT, Resource(project_id=PROJECT))

    def test_failure_is_logged(self, fake_store, access, caplog):
        fake_store.fail = True
        with caplog.at_level("ERROR", logger="capstone.access"):
            access.evaluate(OWNER, Action.UPDATE_TASK, Resource(project_id=PROJECT))
        assert any("indeterminate" in r.getMessage() for r in caplog.records)


class TestRequire:
    def test_allowed_returns_none(self, access):
        assert access.require(OWNER, Action.DELETE_PROJECT, Resource(project_id=PROJECT)) is None

    def test_invisible_raises_not_found(self, access):
        with pytest.raises(ResourceNotFound) as exc_info:
            access.require(OUTSIDER, Action.DELETE_PROJECT, Resource(project_id=PROJECT))
        assert exc_info.value.outcome is Outcome.DENIED_INVISIBLE

    def test_insufficient_role_raises_permission_denied(self, access):
        with pytest.raises(PermissionDenied) as exc_info:
            access.require(MEMBER, Action.DELETE_PROJECT, Resource(project_id=PROJECT))
        assert "owner" in exc_info.value.message

    def test_decision_allowed_property(self):
        assert Decision(Outcome.ALLOWED).allowed
        assert not Decision(Outcome.VALIDATION_FAILURE).allowed


# ---------------------------------------------------------------------------
# Against the real store
# ---------------------------------------------------------------------------


class TestWithProjectStore:
    """The evaluator reads straight from ProjectStore with no cache in between."""

    def test_membership_changes_visible_to_next_evaluation(self, project_store):
        access = AccessEvaluator(project_store)
        project_id = project_store.create_project(Project(name="Real", owner_id=OWNER))
        scope = Resource(project_id=project_id)

        assert access.evaluate(MEMBER, Action.VIEW_PROJECT, scope).outcome is Outcome.DENIED_INVISIBLE
        project_store.add_member(TeamMember(project_id=project_id, user_id=MEMBER, role="MEMBER"))
        assert access.evaluate(MEMBER, Action.VIEW_PROJECT, scope).outcome is Outcome.ALLOWED
        assert access.evaluate(MEMBER, Action.DELETE_PROJECT, scope).outcome is Outcome.DENIED_INSUFFICIENT_ROLE
        project_store.remove_member(project_id, MEMBER)
        assert access.evaluate(MEMBER, Action.VIEW_PROJECT, scope).outcome is Outcome.DENIED_INVISIBLE

    def test_creator_is_owner_and_owner_member(self, project_store):
        access = AccessEvaluator(project_store)
        project_id = project_store.create_project(Project(name="Mine", owner_id=OWNER))
        scope = Resource(project_id=project_id)
        for action in (Action.VIEW_PROJECT, Action.UPDATE_PROJECT, Action.DELETE_PROJECT, Action.MANAGE_MEMBERS):
            assert access.evaluate(OWNER, action, scope).allowed
