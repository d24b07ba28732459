"""Unit tests for projects/seed.py -- demo dataset loading."""

from auth.tokens import authenticate_user
from projects.seed import SEED_PASSWORD, seed_demo_data


def test_seed_creates_demo_dataset(user_store, project_store):
    created = seed_demo_data(user_store, project_store)
    assert created == {"users": 4, "projects": 1, "tasks": 8, "comments": 4}

    instructor = user_store.get_by_username("instructor@college.edu")
    assert instructor is not None
    assert instructor.role == "INSTRUCTOR"

    alice = user_store.get_by_username("alice@student.edu")
    (project,) = project_store.list_projects_for_user(alice.id)
    assert project.name == "E-Commerce Platform"
    assert project.task_count == 8
    assert project.milestone_count == 3
    assert len(project_store.list_memberships(project.id)) == 3


def test_seed_users_can_log_in(user_store, project_store):
    seed_demo_data(user_store, project_store)
    assert authenticate_user(user_store, "bob@student.edu", SEED_PASSWORD) is not None


def test_seed_is_idempotent(user_store, project_store):
    seed_demo_data(user_store, project_store)
    again = seed_demo_data(user_store, project_store)
    assert again == {"users": 0, "projects": 0, "tasks": 0, "comments": 0}

    alice = user_store.get_by_username("alice@student.edu")
    assert len(project_store.list_projects_for_user(alice.id)) == 1


def test_instructor_sees_nothing_without_membership(user_store, project_store):
    seed_demo_data(user_store, project_store)
    instructor = user_store.get_by_username("instructor@college.edu")
    assert project_store.list_projects_for_user(instructor.id) == []
