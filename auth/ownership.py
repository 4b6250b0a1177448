"""
auth/ownership.py -- Row ownership checks for user-scoped tables.

Every owned row carries a user_id column. A row is visible or mutable only
through a lookup that conjoins id AND user_id, so "row exists but belongs to
someone else" and "row does not exist" produce the same answer. Callers turn
that answer into one 403 without saying which case it was; otherwise an
attacker could enumerate ids belonging to other users.

The table allow-list is the OwnableTable enum. Each member maps to a
SQLAlchemy Table object with just the two columns the check needs, so the
table name in the query comes from this module, never from the caller. A
string outside the enum raises InvalidTableError before any SQL is built.

Known race: there is no transaction spanning assert_owned() and the write
that follows it (check-then-act). Rows are single-writer in practice, so
the window is accepted.

Layer rule: no imports from api/, cache/, or crm/.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, Integer, MetaData, Table, exists, select
from sqlalchemy.engine import Engine

from auth.errors import InvalidTableError, NotOwnedError


class OwnableTable(str, Enum):
    COMPANIES = "companies"
    CONTACTS = "contacts"
    INTERACTIONS = "interactions"
    TASKS = "tasks"
    FILES = "files"


# Lightweight views of the owned tables. Never passed to create_all() --
# the owning collaborator (crm/store.py) defines the full schema.
_metadata = MetaData()
_TABLES: dict[OwnableTable, Table] = {
    t: Table(t.value, _metadata, Column("id", Integer, primary_key=True), Column("user_id", Integer))
    for t in OwnableTable
}


def resolve_table(table: OwnableTable | str) -> OwnableTable:
    """Map a caller-supplied name onto the allow-list or raise InvalidTableError."""
    if isinstance(table, OwnableTable):
        return table
    try:
        return OwnableTable(table)
    except ValueError:
        raise InvalidTableError(f"Invalid table for ownership check: {table!r}") from None


class OwnershipGuard:
    """Answers "does row_id in table belong to user_id" against a shared engine.

    Usage:
        guard = OwnershipGuard(crm_store.engine)
        guard.assert_owned(OwnableTable.CONTACTS, contact_id, user_id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def is_owned(self, table: OwnableTable | str, row_id: int, user_id: int) -> bool:
        tbl = _TABLES[resolve_table(table)]
        query = select(exists().where((tbl.c.id == row_id) & (tbl.c.user_id == user_id)))
        with self.engine.connect() as conn:
            return bool(conn.execute(query).scalar())

    def assert_owned(self, table: OwnableTable | str, row_id: int, user_id: int) -> None:
        """Raise NotOwnedError unless the row exists and belongs to user_id.

        The message is the same whether the row is missing or foreign.
        """
        if not self.is_owned(table, row_id, user_id):
            raise NotOwnedError("Resource not found or access denied.")
