"""
auth/models.py -- Domain dataclass for authenticated identities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in projects/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/ or projects/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """Represents an authenticated identity in Capstone Tracker.

    username is the lower-cased email address. OAuth users are matched by
    (oauth_provider, oauth_subject) after their first login; the first login
    either links an existing account with the same email or provisions a new
    STUDENT account.

    hashed_password is None for OAuth-only users. Such accounts cannot log in
    with a password and cannot change one.
    """

    username: str
    role: str  # "STUDENT" | "INSTRUCTOR"
    id: int | None = None
    first_name: str = ""
    last_name: str = ""
    hashed_password: str | None = None  # None = OAuth-only user
    oauth_provider: str | None = None  # "github", "google"
    oauth_subject: str | None = None  # provider's stable user ID
    image: str | None = None
    created_at: str | None = None
    is_active: bool = True
    last_login: str = ""

    @property
    def has_password(self) -> bool:
        return self.hashed_password is not None
