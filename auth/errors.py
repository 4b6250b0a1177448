"""
auth/errors.py -- Error taxonomy for the auth and ownership core.

Every exception carries the HTTP status and a stable machine-readable code.
api/main.py registers one exception handler for AuthError and renders the
shared {"error": {code, message, detail}} envelope, so route handlers raise
these directly instead of building HTTPExceptions.

Token failures are deliberately granular (MalformedToken, TokenExpired, ...)
for callers and tests, but the HTTP layer collapses all of them into one
401 message so clients never learn why a token was rejected.

Layer rule: stdlib only. cache/ imports from here too.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors raised by the auth core."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class AuthenticationError(AuthError):
    status_code = 401
    code = "unauthorized"


class InactiveUserError(AuthenticationError):
    """Credentials were correct but the account status is inactive."""

    code = "account_disabled"


class TokenError(AuthenticationError):
    """Base class for session token verification failures."""


class MalformedToken(TokenError):
    pass


class SignatureMismatch(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class ClaimsMissing(TokenError):
    pass


# ---------------------------------------------------------------------------
# 403 / 400 / 409 / 502
# ---------------------------------------------------------------------------


class AuthorizationError(AuthError):
    status_code = 403
    code = "forbidden"


class NotOwnedError(AuthorizationError):
    """Row is absent or belongs to another user. The two cases are not distinguished."""


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


class DuplicateUserError(ConflictError):
    pass


class UpstreamError(AuthError):
    """Identity provider exchange, discovery, or ID token verification failed."""

    status_code = 502
    code = "upstream_error"


# ---------------------------------------------------------------------------
# 500 -- configuration, storage, credential format
# ---------------------------------------------------------------------------


class ConfigurationError(AuthError):
    code = "configuration_error"


class SecretNotConfigured(ConfigurationError):
    pass


class InvalidTableError(ConfigurationError):
    pass


class FederatedLoginDisabled(ConfigurationError):
    status_code = 503
    code = "oidc_disabled"


class TokenNotFound(AuthError):
    code = "id_token_missing"


class InvalidExpiry(AuthError):
    code = "invalid_expiry"


class HashingError(AuthError):
    code = "hashing_error"


class VerifyError(AuthError):
    code = "credential_format"
