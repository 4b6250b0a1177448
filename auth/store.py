"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user is the mapper. Route and service code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  username and email carry UNIQUE constraints. A violation surfaces as
  DuplicateUserError (HTTP 409), never as a raw IntegrityError.

Provisioning race:
  Two first-time OIDC logins for the same email can both miss in
  get_by_email() and both try to insert. The loser's INSERT fails on the
  email UNIQUE constraint; find_or_create_by_email() catches that and
  re-reads the winner's row. The constraint decides, not application
  locking.

Layer rule: no imports from api/, cache/, or crm/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.credentials import FEDERATED_PLACEHOLDER
from auth.errors import DuplicateUserError
from auth.models import User

logger = logging.getLogger("microcrm.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'micro-crm.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="employee"),
    Column("phone_number", String(50)),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def split_name(full_name: str) -> tuple[str, str]:
    """Split a display name into (first, last).

    First whitespace-separated token is the first name; the remaining tokens
    joined by single spaces form the last name. Empty input gives ("", "").
    """
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def username_from_email(email: str) -> str:
    return email.split("@", 1)[0]


def _ensure_sqlite_dir(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite URL if missing."""
    if not db_url.startswith("sqlite:///") or "mode=memory" in db_url or db_url == "sqlite:///:memory:":
        return
    Path(db_url[len("sqlite:///") :]).parent.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User accounts.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="alice", email="alice@example.com", password_hash=...))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            _ensure_sqlite_dir(db_url)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateUserError if the username or email is already taken.
        """
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        password_hash=user.password_hash or FEDERATED_PLACEHOLDER,
                        role=user.role,
                        phone_number=user.phone_number,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        status=user.status,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateUserError("Username or email already exists.") from exc

    def create_federated_user(self, email: str, first_name: str, last_name: str) -> User:
        """Create an account for a first-time OIDC login.

        The username is the local part of the email. The account gets the
        employee role, active status, and a credential that can never pass
        password verification.
        """
        user = User(
            username=username_from_email(email),
            email=email,
            password_hash=FEDERATED_PLACEHOLDER,
            first_name=first_name,
            last_name=last_name,
            role="employee",
            status="active",
            phone_number="none",
        )
        user.id = self.create_user(user)
        return self.get_by_id(user.id) or user

    def find_or_create_by_email(self, email: str, full_name: str) -> tuple[User, bool]:
        """Return (user, created) for email, creating the account on first sight.

        Idempotent: repeated calls with the same email return the same row.
        If a concurrent call wins the insert, the email UNIQUE constraint
        rejects ours and the winner's row is returned instead. A collision on
        username alone (same local part, different email) still raises
        DuplicateUserError.
        """
        existing = self.get_by_email(email)
        if existing is not None:
            return existing, False

        first_name, last_name = split_name(full_name)
        try:
            return self.create_federated_user(email, first_name, last_name), True
        except DuplicateUserError:
            winner = self.get_by_email(email)
            if winner is None:
                raise
            logger.info("Concurrent provisioning for user %d resolved by re-fetch", winner.id)
            return winner, False

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        """Replace the stored credential (work-factor migration on login)."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
            conn.commit()

    def update_profile(
        self,
        user_id: int,
        *,
        username: str | None = None,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        password_hash: str | None = None,
    ) -> bool:
        """Apply a profile edit. None leaves a field unchanged.

        Returns False if user_id was not found. Raises DuplicateUserError when
        the new username or email belongs to another account.
        """
        changes = {
            "username": username,
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "password_hash": password_hash,
        }
        values = {k: v for k, v in changes.items() if v is not None}
        values["updated_at"] = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateUserError("Username or email already exists.") from exc
        return result.rowcount > 0

    def set_status(self, user_id: int, status: str) -> bool:
        """Set status to "active" or "inactive". Returns False if user_id was not found."""
        if status not in ("active", "inactive"):
            raise ValueError(f"Unknown user status: {status!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(status=status, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        role=row.role,
        status=row.status,
        phone_number=row.phone_number,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
