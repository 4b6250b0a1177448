"""
auth/credentials.py -- Password hashing and verification.

Passwords: bcrypt used directly (no passlib wrapper). The stored credential
is the full modular-crypt string "$2b$<cost>$<salt><hash>", so algorithm,
work factor, and salt travel with the hash and needs_rehash() can detect
credentials created under an older cost.

Federated-only accounts store FEDERATED_PLACEHOLDER instead of a hash. The
placeholder is not a bcrypt string, so verify() would raise VerifyError on
it; callers check is_federated_placeholder() first and treat such accounts
as non-authenticatable by password.

Plaintext never leaves this module except as bcrypt input. Nothing here logs.

Layer rule: no imports from api/, cache/, or crm/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import HashingError, ValidationError, VerifyError

FEDERATED_PLACEHOLDER = "oidc_login_placeholder"

# bcrypt only reads the first 72 bytes; bcrypt>=4.1 rejects longer input.
_MAX_PASSWORD_BYTES = 72


def is_federated_placeholder(credential: str | None) -> bool:
    return credential is None or credential == FEDERATED_PLACEHOLDER


class CredentialStore:
    """bcrypt hashing with a configurable work factor.

    Usage:
        creds = CredentialStore(rounds=12)
        stored = creds.hash("secret123")
        creds.verify(stored, "secret123")   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # login attempt is not measurably slower than subsequent ones.
        self._dummy_hash = self.hash("microcrm_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt credential for plaintext with a fresh random salt."""
        raw = _encode(plaintext)
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
            return bcrypt.hashpw(raw, salt).decode("utf-8")
        except (OSError, ValueError) as exc:
            raise HashingError("Failed to hash password.") from exc

    def verify(self, credential: str, plaintext: str) -> bool:
        """Return True if plaintext matches the stored credential.

        Returns False on mismatch. Raises VerifyError only when the stored
        credential is not a valid bcrypt string.
        """
        raw = plaintext.encode("utf-8")
        if len(raw) > _MAX_PASSWORD_BYTES:
            # Could never have been hashed, so it cannot match.
            return False
        try:
            return bcrypt.checkpw(raw, credential.encode("utf-8"))
        except ValueError as exc:
            raise VerifyError("Stored credential is malformed.") from exc

    def burn(self, plaintext: str) -> None:
        """Run one bcrypt comparison against the dummy hash and discard the result.

        Called on every failed lookup so an unknown username costs the same
        as a wrong password.
        """
        self.verify(self._dummy_hash, plaintext)

    def needs_rehash(self, credential: str) -> bool:
        """True when the credential was produced with a different work factor."""
        try:
            _, _prefix, cost, _rest = credential.split("$", 3)
            return int(cost) != self.rounds
        except ValueError:
            return False


def _encode(plaintext: str) -> bytes:
    raw = plaintext.encode("utf-8")
    if len(raw) > _MAX_PASSWORD_BYTES:
        raise ValidationError("Password must be at most 72 bytes long.")
    return raw
