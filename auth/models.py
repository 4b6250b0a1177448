"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work; api/models.py owns the HTTP shape.

Layer rule: no imports from api/, cache/, or crm/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A CRM account.

    password_hash holds a bcrypt credential for local accounts and the
    FEDERATED_PLACEHOLDER sentinel (auth/credentials.py) for accounts created
    by the first OIDC login. It is never serialized to clients.

    status is "active" or "inactive". Inactive accounts cannot log in by
    any method.
    """

    username: str
    email: str
    id: int | None = None
    password_hash: str | None = None
    first_name: str = ""
    last_name: str = ""
    role: str = "employee"  # "employee", "admin"
    status: str = "active"  # "active", "inactive"
    phone_number: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class FederatedIdentity:
    """Claims extracted from a verified OIDC ID token."""

    email: str
    name: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionGrant:
    """Result of a successful login: the session token and the account it names."""

    token: str
    user: User
