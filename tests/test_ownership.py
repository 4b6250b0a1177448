"""
tests/test_ownership.py -- Unit tests for auth/ownership.py (OwnershipGuard).

Runs against the real CRM schema so the guard's lightweight table views are
checked against the columns crm/store.py actually creates.

Coverage:
  - owner sees own row
  - foreign row and absent row give the same answer
  - every OwnableTable member is queryable
  - strings outside the allow-list raise InvalidTableError
  - check-then-act window: the guard does not lock the row
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from auth.errors import InvalidTableError, NotOwnedError
from auth.ownership import OwnableTable, OwnershipGuard, resolve_table
from crm.models import Company, Contact
from crm.store import CRMStore

ALICE, MALLORY = 1, 2


@pytest.fixture
def crm(tmp_path) -> CRMStore:
    store = CRMStore(f"sqlite:///{tmp_path / 'crm.db'}")
    yield store
    store.close()


@pytest.fixture
def guard(crm: CRMStore) -> OwnershipGuard:
    return OwnershipGuard(crm.engine)


class TestIsOwned:
    def test_owner(self, crm: CRMStore, guard: OwnershipGuard) -> None:
        cid = crm.create_company(Company(user_id=ALICE, name="Acme"))
        assert guard.is_owned(OwnableTable.COMPANIES, cid, ALICE) is True

    def test_foreign_and_absent_are_indistinguishable(self, crm: CRMStore, guard: OwnershipGuard) -> None:
        cid = crm.create_company(Company(user_id=ALICE, name="Acme"))
        foreign = guard.is_owned(OwnableTable.COMPANIES, cid, MALLORY)
        absent = guard.is_owned(OwnableTable.COMPANIES, cid + 1000, MALLORY)
        assert foreign is absent is False

    def test_string_table_name(self, crm: CRMStore, guard: OwnershipGuard) -> None:
        contact_id = crm.create_contact(Contact(user_id=ALICE, first_name="Ann", last_name="Lee"))
        assert guard.is_owned("contacts", contact_id, ALICE) is True

    @pytest.mark.parametrize("table", list(OwnableTable))
    def test_every_table_is_queryable(self, guard: OwnershipGuard, table: OwnableTable) -> None:
        assert guard.is_owned(table, 1, ALICE) is False

    def test_rows_in_other_tables_do_not_count(self, crm: CRMStore, guard: OwnershipGuard) -> None:
        cid = crm.create_company(Company(user_id=ALICE, name="Acme"))
        assert guard.is_owned(OwnableTable.CONTACTS, cid, ALICE) is False


class TestAssertOwned:
    def test_passes_for_owner(self, crm: CRMStore, guard: OwnershipGuard) -> None:
        cid = crm.create_company(Company(user_id=ALICE, name="Acme"))
        guard.assert_owned(OwnableTable.COMPANIES, cid, ALICE)

    def test_same_message_for_foreign_and_absent(self, crm: CRMStore, guard: OwnershipGuard) -> None:
        cid = crm.create_company(Company(user_id=ALICE, name="Acme"))
        with pytest.raises(NotOwnedError) as foreign:
            guard.assert_owned(OwnableTable.COMPANIES, cid, MALLORY)
        with pytest.raises(NotOwnedError) as absent:
            guard.assert_owned(OwnableTable.COMPANIES, cid + 1000, MALLORY)
        assert foreign.value.message == absent.value.message
        assert foreign.value.status_code == 403


class TestAllowList:
    @pytest.mark.parametrize("name", ["users", "companies; DROP TABLE users", "", "Companies"])
    def test_unknown_table_rejected(self, guard: OwnershipGuard, name: str) -> None:
        with pytest.raises(InvalidTableError):
            guard.is_owned(name, 1, ALICE)

    def test_resolve_passes_enum_through(self) -> None:
        assert resolve_table(OwnableTable.TASKS) is OwnableTable.TASKS
        assert resolve_table("files") is OwnableTable.FILES


def test_check_then_act_window(crm: CRMStore, guard: OwnershipGuard) -> None:
    """The guard answers for the moment of the check only.

    A row deleted after assert_owned() passes is simply gone by the time the
    caller acts on it; callers must tolerate a missing row after the check.
    """
    cid = crm.create_company(Company(user_id=ALICE, name="Acme"))
    guard.assert_owned(OwnableTable.COMPANIES, cid, ALICE)
    with crm.engine.connect() as conn:
        conn.execute(text("DELETE FROM companies WHERE id = :id"), {"id": cid})
        conn.commit()
    assert crm.get_company(cid, ALICE) is None
    assert guard.is_owned(OwnableTable.COMPANIES, cid, ALICE) is False
