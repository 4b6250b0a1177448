"""
auth/tokens.py -- Session token issuance and verification.

Session tokens are HS256 JWTs (python-jose) carrying exactly three claims:
user_id, iat, and exp. Lifetime is fixed at 24 hours. Tokens are never
persisted; validity is signature + expiry only, so there is no revocation
list and no replay protection.

The signing secret is injected into TokenIssuer at construction time and
cannot be changed afterwards. There is no module-level secret and no setter:
code that has no issuer instance cannot sign or verify anything.

verify() reports failures through the TokenError family in auth/errors.py.
The expiry check runs on the unverified claims, before the signature check,
so an expired token reports TokenExpired whatever its signature.

Layer rule: no imports from api/, cache/, or crm/.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import ClaimsMissing, MalformedToken, SecretNotConfigured, SignatureMismatch, TokenExpired

SESSION_LIFETIME = timedelta(hours=24)

_ALGORITHM = "HS256"
# Verification accepts the whole HMAC family; anything else (RS256, none, ...)
# is a SignatureMismatch before the key is ever used.
_HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


class TokenIssuer:
    """Signs and verifies session tokens with one immutable secret.

    Usage:
        issuer = TokenIssuer(settings.secret_key)
        token = issuer.issue(42)
        issuer.verify(token)   # 42
    """

    __slots__ = ("_secret",)

    def __init__(self, secret: str) -> None:
        if not secret:
            raise SecretNotConfigured("Session token secret is not configured.")
        self._secret = secret

    def issue(self, user_id: int, now: datetime | None = None) -> str:
        """Return a signed token asserting user_id for the next 24 hours."""
        issued = now or datetime.now(timezone.utc)
        iat = int(issued.timestamp())
        payload = {
            "user_id": user_id,
            "iat": iat,
            "exp": iat + int(SESSION_LIFETIME.total_seconds()),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str, now: datetime | None = None) -> int:
        """Verify token and return the user id it asserts.

        Raises:
            MalformedToken:    token is not a parseable JWT.
            TokenExpired:      exp is in the past.
            SignatureMismatch: algorithm outside the HMAC family, or bad signature.
            ClaimsMissing:     exp or user_id missing, or user_id not an integer.
        """
        try:
            header = jwt.get_unverified_header(token)
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken("Token is not a valid JWT.") from exc

        exp = claims.get("exp")
        if exp is not None and not _is_number(exp):
            raise MalformedToken("Token exp claim is not numeric.")
        current = (now or datetime.now(timezone.utc)).timestamp()
        if exp is not None and exp <= current:
            raise TokenExpired("Token has expired.")

        if header.get("alg") not in _HMAC_ALGORITHMS:
            raise SignatureMismatch("Unexpected signing algorithm.")

        try:
            # exp was checked above against the injectable clock.
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=list(_HMAC_ALGORITHMS),
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise MalformedToken("Token claims are invalid.") from exc
        except JWTError as exc:
            raise SignatureMismatch("Token signature is invalid.") from exc

        if "exp" not in payload:
            raise ClaimsMissing("Token has no exp claim.")
        user_id = payload.get("user_id")
        if not _is_number(user_id) or (isinstance(user_id, float) and not user_id.is_integer()):
            raise ClaimsMissing("Token has no usable user_id claim.")
        return int(user_id)
