"""
auth/service.py -- AuthService, the aggregate the API layer talks to.

Collaborators are passed in by name at construction; nothing here reaches
for module globals or app.state. api/main.py builds one instance in its
lifespan and stores it on app.state.auth.

    AuthService(
        credentials=CredentialStore(rounds),
        issuer=TokenIssuer(secret),
        directory=UserStore(db_url),
        guard=OwnershipGuard(engine),
        token_store=IDTokenStore(path),
        oidc=OIDCBridge(config) or None,
    )

Operations:
  register()           -- create a local account, return a session grant
  authenticate()       -- password login with timing equalization
  update_profile()     -- profile edit; password change needs the current password
  federated_login()    -- OIDC code -> verified identity -> user -> session
  federated_logout()   -- stored ID token -> provider end-session URL

Layer rule: no imports from api/ or crm/. cache/ is imported for type
checking only; at runtime it is reached through the token_store collaborator.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from auth.credentials import CredentialStore, is_federated_placeholder
from auth.errors import (
    AuthenticationError,
    AuthError,
    FederatedLoginDisabled,
    InactiveUserError,
    UpstreamError,
    ValidationError,
    VerifyError,
)
from auth.models import SessionGrant, User
from auth.oidc import OIDCBridge
from auth.ownership import OwnershipGuard
from auth.store import UserStore
from auth.tokens import TokenIssuer

if TYPE_CHECKING:
    from cache.token_store import IDTokenStore

logger = logging.getLogger("microcrm.auth.service")

_BAD_CREDENTIALS = "Invalid username or password."


class AuthService:
    def __init__(
        self,
        *,
        credentials: CredentialStore,
        issuer: TokenIssuer,
        directory: UserStore,
        guard: OwnershipGuard,
        token_store: IDTokenStore,
        oidc: OIDCBridge | None = None,
    ) -> None:
        self.credentials = credentials
        self.issuer = issuer
        self.directory = directory
        self.guard = guard
        self.token_store = token_store
        self.oidc = oidc

    @property
    def federated_enabled(self) -> bool:
        return self.oidc is not None

    def require_oidc(self) -> OIDCBridge:
        if self.oidc is None:
            raise FederatedLoginDisabled("Federated login is not configured.")
        return self.oidc

    # ------------------------------------------------------------------
    # Local accounts
    # ------------------------------------------------------------------

    def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        phone_number: str | None = None,
    ) -> SessionGrant:
        """Create an active employee account and log it in.

        Raises DuplicateUserError when the username or email is taken.
        """
        user = User(
            username=username,
            email=email,
            password_hash=self.credentials.hash(password),
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
        )
        user.id = self.directory.create_user(user)
        logger.info("Registered user %d", user.id)
        stored = self.directory.get_by_id(user.id) or user
        return SessionGrant(token=self.issuer.issue(stored.id), user=stored)

    def authenticate(self, username: str, password: str) -> SessionGrant:
        """Password login.

        Unknown username, federated-only account, and wrong password all raise
        the same AuthenticationError after one bcrypt comparison, so response
        time does not reveal which case occurred. The inactive check runs
        only after the password matched.
        """
        user = self.directory.get_by_username(username)
        if user is None or is_federated_placeholder(user.password_hash):
            self.credentials.burn(password)
            raise AuthenticationError(_BAD_CREDENTIALS)

        try:
            matched = self.credentials.verify(user.password_hash, password)
        except VerifyError:
            logger.error("Stored credential for user %d is malformed", user.id)
            matched = False
        if not matched:
            raise AuthenticationError(_BAD_CREDENTIALS)

        if not user.is_active:
            raise InactiveUserError("Account is disabled.")

        if self.credentials.needs_rehash(user.password_hash):
            self.directory.update_password_hash(user.id, self.credentials.hash(password))
            logger.info("Rehashed credential for user %d", user.id)

        return SessionGrant(token=self.issuer.issue(user.id), user=user)

    def update_profile(
        self,
        user_id: int,
        *,
        username: str | None = None,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        current_password: str | None = None,
        new_password: str | None = None,
    ) -> User:
        """Edit the caller's own account and return the updated row.

        Fields left as None are unchanged. A new password is accepted only
        together with the correct current password, and never for a
        federated-only account. Raises DuplicateUserError when the new
        username or email is taken.
        """
        user = self.directory.get_by_id(user_id)
        if user is None:
            raise AuthenticationError("Invalid or expired token.")

        password_hash = None
        if new_password is not None:
            if is_federated_placeholder(user.password_hash):
                raise ValidationError("Federated accounts have no password to change.")
            try:
                matched = current_password is not None and self.credentials.verify(
                    user.password_hash, current_password
                )
            except VerifyError:
                logger.error("Stored credential for user %d is malformed", user.id)
                matched = False
            if not matched:
                raise AuthenticationError("Current password is incorrect.")
            password_hash = self.credentials.hash(new_password)

        self.directory.update_profile(
            user_id,
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash,
        )
        if password_hash is not None:
            logger.info("Password changed for user %d", user_id)
        return self.directory.get_by_id(user_id) or user

    # ------------------------------------------------------------------
    # Federated login
    # ------------------------------------------------------------------

    async def federated_login(self, code: str) -> SessionGrant:
        """Complete the authorization-code flow and return a session grant.

        The raw ID token is kept in the token store until its own expiry so
        logout can hand it back to the provider. Failing to store it does not
        fail the login.
        """
        oidc = self.require_oidc()
        token_response = await oidc.exchange_code(code)
        raw_id_token = token_response.get("id_token")
        if not raw_id_token:
            raise UpstreamError("Failed to exchange token.", detail="token response has no id_token")

        claims = await oidc.verify_id_token(raw_id_token)
        identity = oidc.extract_identity(claims)

        user, created = self.directory.find_or_create_by_email(identity.email, identity.name)
        if created:
            logger.info("Provisioned federated user %d", user.id)
        if not user.is_active:
            raise InactiveUserError("Account is disabled.")

        session_token = self.issuer.issue(user.id)
        try:
            self.token_store.put(user.id, raw_id_token, identity.expires_at)
        except (AuthError, sqlite3.Error) as exc:
            logger.warning("Could not store ID token for user %d: %s", user.id, exc)
        return SessionGrant(token=session_token, user=user)

    def federated_logout(self, user_id: int, post_logout_redirect: str) -> str:
        """Return the provider end-session URL for user_id and forget its ID token.

        Raises TokenNotFound when no live ID token is stored for the user.
        """
        oidc = self.require_oidc()
        id_token = self.token_store.get(user_id)
        url = oidc.end_session_url(id_token, post_logout_redirect)
        self.token_store.delete(user_id)
        logger.info("Federated logout for user %d", user_id)
        return url
