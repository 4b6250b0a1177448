"""
tests/test_token_store.py -- Unit tests for cache/token_store.py.

A fake clock drives expiry so nothing sleeps.

Coverage:
  - put/get/delete, last write wins, idempotent delete
  - TTL expiry: expired entries read as absent and are removed
  - non-positive TTL rejected with InvalidExpiry
  - purge_expired() bulk removal
  - keys for different users are independent
  - AuthService declares and receives an IDTokenStore
"""

from __future__ import annotations

import inspect
from datetime import datetime, timezone

import pytest

from auth.errors import InvalidExpiry, TokenNotFound
from auth.service import AuthService
from cache.token_store import IDTokenStore

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _at(offset: float) -> datetime:
    return datetime.fromtimestamp(START + offset, tz=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> IDTokenStore:
    return IDTokenStore(tmp_path / "tokens.db", clock=clock)


class TestPutGet:
    def test_round_trip(self, store: IDTokenStore) -> None:
        store.put(1, "id-token-1", _at(3600))
        assert store.get(1) == "id-token-1"

    def test_missing_raises(self, store: IDTokenStore) -> None:
        with pytest.raises(TokenNotFound):
            store.get(99)

    def test_last_write_wins(self, store: IDTokenStore) -> None:
        store.put(1, "first", _at(3600))
        store.put(1, "second", _at(3600))
        assert store.get(1) == "second"

    def test_users_are_independent(self, store: IDTokenStore) -> None:
        store.put(1, "one", _at(3600))
        store.put(2, "two", _at(3600))
        store.delete(1)
        assert store.get(2) == "two"

    def test_survives_reopen(self, tmp_path, clock: FakeClock) -> None:
        IDTokenStore(tmp_path / "t.db", clock=clock).put(5, "persisted", _at(60))
        assert IDTokenStore(tmp_path / "t.db", clock=clock).get(5) == "persisted"


class TestDelete:
    def test_delete_then_get(self, store: IDTokenStore) -> None:
        store.put(1, "tok", _at(3600))
        store.delete(1)
        with pytest.raises(TokenNotFound):
            store.get(1)

    def test_delete_is_idempotent(self, store: IDTokenStore) -> None:
        store.delete(1)
        store.delete(1)


class TestExpiry:
    def test_expired_entry_reads_as_absent(self, store: IDTokenStore, clock: FakeClock) -> None:
        store.put(1, "tok", _at(10))
        clock.now = START + 10
        with pytest.raises(TokenNotFound):
            store.get(1)

    def test_live_until_expiry(self, store: IDTokenStore, clock: FakeClock) -> None:
        store.put(1, "tok", _at(10))
        clock.now = START + 9
        assert store.get(1) == "tok"

    def test_ttl_rounds_to_seconds(self, store: IDTokenStore, clock: FakeClock) -> None:
        store.put(1, "tok", _at(1.6))  # rounds to 2 s
        clock.now = START + 1.9
        assert store.get(1) == "tok"

    @pytest.mark.parametrize("offset", [0, -5, 0.4])
    def test_non_positive_ttl_rejected(self, store: IDTokenStore, offset: float) -> None:
        with pytest.raises(InvalidExpiry):
            store.put(1, "tok", _at(offset))

    def test_purge_expired(self, store: IDTokenStore, clock: FakeClock) -> None:
        store.put(1, "short", _at(10))
        store.put(2, "long", _at(1000))
        clock.now = START + 100
        assert store.purge_expired() == 1
        assert store.get(2) == "long"
        assert store.purge_expired() == 0


def test_auth_service_takes_an_id_token_store(client) -> None:
    """The fifth named collaborator is declared and wired as an IDTokenStore."""
    annotation = inspect.signature(AuthService.__init__).parameters["token_store"].annotation
    assert annotation == "IDTokenStore"
    assert isinstance(client.app.state.auth.token_store, IDTokenStore)
