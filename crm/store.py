"""
crm/store.py -- SQLAlchemy Core persistence for user-owned CRM records.

Defines the full schema of the owned tables (companies, contacts,
interactions, tasks, files) so the ownership guard has real rows to check
against. Only companies and contacts get repository methods; the remaining
tables exist for schema completeness.

Pattern: Repository + Data Mapper, same as auth/store.py. Every read and
delete is scoped by user_id in the WHERE clause itself, so a foreign row
is indistinguishable from a missing one even without the guard.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CRMStore("sqlite:///data/micro-crm.db")
    cid = store.create_company(Company(user_id=1, name="Acme"))
    store.get_company(cid, user_id=1)
    store.close()
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from crm.models import Company, Contact

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_companies = Table(
    "companies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("name", Text, nullable=False),
    Column("website", Text),
    Column("industry", Text),
    Column("address", Text),
    Column("phone_number", String(50)),
    Column("pipeline_stage", String(30), server_default="Lead"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_companies_user_id", "user_id"),
)

_contacts = Table(
    "contacts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("company_id", Integer),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("email", Text),
    Column("phone_number", String(50)),
    Column("job_title", Text),
    Column("notes", Text),
    Column("last_interaction_at", String(32)),
    Column("next_action_at", String(32)),
    Column("next_action_description", Text),
    Column("pipeline_stage", String(30), server_default="Lead"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_contacts_user_id", "user_id"),
    Index("idx_contacts_company_id", "company_id"),
)

_interactions = Table(
    "interactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("contact_id", Integer, nullable=False),
    Column("type", String(30), nullable=False),  # "Call" | "Email" | "Meeting" | "Note"
    Column("description", Text),
    Column("interaction_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("idx_interactions_user_id", "user_id"),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("contact_id", Integer),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("due_date", String(32)),
    Column("status", String(30), nullable=False, server_default="To Do"),
    Column("priority", String(10), server_default="Medium"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_tasks_user_id", "user_id"),
)

_files = Table(
    "files",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("contact_id", Integer),
    Column("company_id", Integer),
    Column("file_name", Text, nullable=False),
    Column("storage_path", Text, nullable=False, unique=True),
    Column("file_type", String(100)),
    Column("file_size", Integer),
    Column("uploaded_at", String(32), nullable=False),
    Index("idx_files_user_id", "user_id"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CRMStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------

    def create_company(self, company: Company) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _companies.insert().values(
                    user_id=company.user_id,
                    name=company.name,
                    website=company.website,
                    industry=company.industry,
                    address=company.address,
                    phone_number=company.phone_number,
                    pipeline_stage=company.pipeline_stage,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_companies(self, user_id: int) -> list[Company]:
        query = _companies.select().where(_companies.c.user_id == user_id).order_by(_companies.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_company(r) for r in rows]

    def get_company(self, company_id: int, user_id: int) -> Company | None:
        query = _companies.select().where((_companies.c.id == company_id) & (_companies.c.user_id == user_id))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_company(row) if row is not None else None

    def delete_company(self, company_id: int, user_id: int) -> bool:
        """Delete the company and detach its contacts. Returns False if nothing matched."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _companies.delete().where((_companies.c.id == company_id) & (_companies.c.user_id == user_id))
            )
            if result.rowcount:
                # ON DELETE SET NULL, done by hand: SQLite foreign keys are off by default.
                conn.execute(
                    _contacts.update()
                    .where((_contacts.c.company_id == company_id) & (_contacts.c.user_id == user_id))
                    .values(company_id=None, updated_at=_now_iso())
                )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def create_contact(self, contact: Contact) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _contacts.insert().values(
                    user_id=contact.user_id,
                    company_id=contact.company_id,
                    first_name=contact.first_name,
                    last_name=contact.last_name,
                    email=contact.email,
                    phone_number=contact.phone_number,
                    job_title=contact.job_title,
                    notes=contact.notes,
                    pipeline_stage=contact.pipeline_stage,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_contacts(self, user_id: int, company_id: int | None = None) -> list[Contact]:
        query = _contacts.select().where(_contacts.c.user_id == user_id)
        if company_id is not None:
            query = query.where(_contacts.c.company_id == company_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_contacts.c.id)).fetchall()
        return [_row_to_contact(r) for r in rows]

    def get_contact(self, contact_id: int, user_id: int) -> Contact | None:
        query = _contacts.select().where((_contacts.c.id == contact_id) & (_contacts.c.user_id == user_id))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_contact(row) if row is not None else None

    def delete_contact(self, contact_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _contacts.delete().where((_contacts.c.id == contact_id) & (_contacts.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_company(row) -> Company:
    return Company(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        website=row.website,
        industry=row.industry,
        address=row.address,
        phone_number=row.phone_number,
        pipeline_stage=row.pipeline_stage or "Lead",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_contact(row) -> Contact:
    return Contact(
        id=row.id,
        user_id=row.user_id,
        company_id=row.company_id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        phone_number=row.phone_number,
        job_title=row.job_title,
        notes=row.notes,
        pipeline_stage=row.pipeline_stage or "Lead",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
