"""
tests/conftest.py -- Shared test fixtures for Capstone Tracker tests.

This module provides:
  - make_test_stores(): isolated in-memory DBs for the user and project stores
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: ApiContext with a TestClient and JWTs for four users
  - project_store / user_store: bare in-memory stores for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from unittest.mock import MagicMock

# CRITICAL: Set env before any auth/core import -- Settings is read once.
os.environ.setdefault("DEBUG", "true")
# Login tests across modules share one in-memory limiter; keep it out of the way.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.access import AccessEvaluator
from projects.store import ProjectStore

TEST_PASSWORD = "testpass123"  # noqa: S105

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_stores(db_suffix: str) -> tuple[UserStore, ProjectStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    projects_url = f"sqlite:///file:test_projects_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), ProjectStore(db_url=projects_url)


def _patch_lifespan(user_store: UserStore, project_store: ProjectStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs. The OAuth registry is mocked to prevent network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.project_store = project_store
        app.state.access = AccessEvaluator(project_store)
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    """Handle returned by the api_client fixture.

    users maps a short name to a user ID; tokens maps the same name to a JWT.
      alice -- creates projects in most tests (the owner)
      bob   -- added as MEMBER where a test needs one
      carol -- never added to anything (the outsider)
      dan   -- OAuth-only account (no password hash)
    """

    client: TestClient
    user_store: UserStore
    project_store: ProjectStore
    users: dict[str, int] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    password: str = TEST_PASSWORD

    def auth(self, name: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[name]}"}

    def new_project(self, owner: str = "alice", name: str = "Capstone", members: tuple[str, ...] = ()) -> int:
        """Create a project over the API and add members. Returns its ID."""
        resp = self.client.post("/api/v1/projects", json={"name": name}, headers=self.auth(owner))
        assert resp.status_code == 201, resp.text
        project_id = resp.json()["id"]
        for member in members:
            resp = self.client.post(
                f"/api/v1/projects/{project_id}/members",
                json={"email": f"{member}@student.edu"},
                headers=self.auth(owner),
            )
            assert resp.status_code == 201, resp.text
        return project_id


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    One TestClient per test module for speed. The real FastAPI app runs with a
    patched lifespan so tests hit real route handlers against isolated
    in-memory stores.
    """
    user_store, project_store = make_test_stores(request.module.__name__.replace(".", "_"))

    ctx = ApiContext(client=None, user_store=user_store, project_store=project_store)  # type: ignore[arg-type]
    hashed = hash_password(TEST_PASSWORD)
    for name in ("alice", "bob", "carol"):
        ctx.users[name] = user_store.create_user(
            User(
                username=f"{name}@student.edu",
                role="STUDENT",
                first_name=name.capitalize(),
                last_name="Tester",
                hashed_password=hashed,
            )
        )
    ctx.users["dan"] = user_store.create_user(
        User(
            username="dan@student.edu",
            role="STUDENT",
            first_name="Dan",
            last_name="Oauth",
            oauth_provider="github",
            oauth_subject="4242",
        )
    )
    for name, uid in ctx.users.items():
        ctx.tokens[name] = create_access_token(uid, f"{name}@student.edu", "STUDENT", expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, project_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        ctx.client = client
        yield ctx

    user_store.close()
    project_store.close()


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_store() -> Generator[ProjectStore, None, None]:
    """Fresh in-memory ProjectStore per test."""
    store = ProjectStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()
