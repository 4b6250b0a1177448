"""
tests/test_credentials.py -- Unit tests for auth/credentials.py.

Coverage:
  - hash/verify round trip and mismatch
  - fresh salt per hash
  - malformed stored credentials raise VerifyError
  - federated placeholder detection
  - needs_rehash work-factor migration
  - 72-byte bcrypt input limit
"""

from __future__ import annotations

import pytest

from auth.credentials import FEDERATED_PLACEHOLDER, CredentialStore, is_federated_placeholder
from auth.errors import ValidationError, VerifyError


@pytest.fixture(scope="module")
def creds() -> CredentialStore:
    return CredentialStore(rounds=4)


class TestHashVerify:
    def test_round_trip(self, creds: CredentialStore) -> None:
        stored = creds.hash("secret123")
        assert creds.verify(stored, "secret123") is True

    def test_wrong_password(self, creds: CredentialStore) -> None:
        stored = creds.hash("secret123")
        assert creds.verify(stored, "secret124") is False

    def test_same_password_hashes_differently(self, creds: CredentialStore) -> None:
        assert creds.hash("secret123") != creds.hash("secret123")

    def test_hash_is_modular_crypt_with_cost(self, creds: CredentialStore) -> None:
        assert creds.hash("secret123").startswith("$2b$04$")

    def test_plaintext_not_in_credential(self, creds: CredentialStore) -> None:
        assert "secret123" not in creds.hash("secret123")


class TestMalformedCredentials:
    @pytest.mark.parametrize("credential", [FEDERATED_PLACEHOLDER, "", "$2b$04$truncated"])
    def test_malformed_credential_raises(self, creds: CredentialStore, credential: str) -> None:
        with pytest.raises(VerifyError):
            creds.verify(credential, "secret123")

    def test_placeholder_detection(self) -> None:
        assert is_federated_placeholder(FEDERATED_PLACEHOLDER)
        assert is_federated_placeholder(None)
        assert not is_federated_placeholder("$2b$12$abc")


class TestRehash:
    def test_same_cost_needs_no_rehash(self, creds: CredentialStore) -> None:
        assert creds.needs_rehash(creds.hash("secret123")) is False

    def test_different_cost_needs_rehash(self, creds: CredentialStore) -> None:
        stronger = CredentialStore(rounds=5)
        assert stronger.needs_rehash(creds.hash("secret123")) is True

    def test_garbage_never_needs_rehash(self, creds: CredentialStore) -> None:
        assert creds.needs_rehash(FEDERATED_PLACEHOLDER) is False


class TestLengthLimit:
    def test_hash_rejects_over_72_bytes(self, creds: CredentialStore) -> None:
        with pytest.raises(ValidationError):
            creds.hash("x" * 73)

    def test_verify_over_72_bytes_is_false(self, creds: CredentialStore) -> None:
        stored = creds.hash("x" * 72)
        assert creds.verify(stored, "x" * 73) is False

    def test_burn_does_not_raise(self, creds: CredentialStore) -> None:
        creds.burn("anything")
