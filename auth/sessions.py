"""
auth/sessions.py -- Session use cases: login, logout, refresh, current identity.

The service is fully stateless. No session row is written anywhere -- holding a
valid token IS the session. Consequences worth knowing:
  - logout() cannot revoke anything; clients drop their tokens.
  - refresh() mints a new access token only. The refresh token is not rotated
    and stays valid until its own exp.

Login order of checks (each failure is terminal):
  1. Unknown email                -> InvalidCredentials (401)
  2. Account inactive             -> AccountDisabled (403)
  3. Password mismatch            -> InvalidCredentials (401)
Cases 1 and 3 share one error class and message so the response does not
reveal whether an email is registered. Case 1 still runs bcrypt against a
dummy hash to equalize timing [C1].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from auth.models import Identity
from auth.passwords import burn_verification, verify_password
from auth.tokens import TokenKind, TokenService
from core import errors

if TYPE_CHECKING:
    from identity.store import IdentityStore

logger = logging.getLogger("wasteadmin.auth")


@dataclass(frozen=True)
class LoginResult:
    identity: Identity
    access_token: str
    refresh_token: str
    login_time: str


def load_identity(store: IdentityStore, user_id: int) -> Identity | None:
    """Read a user and its memberships fresh from the store.

    Returns None if the user does not exist. Does not check is_active -- the
    caller decides which error an inactive account maps to.
    """
    user = store.find_user_by_id(user_id)
    if user is None:
        return None
    return Identity.from_records(user, store.list_memberships_for_user(user_id))


def login(store: IdentityStore, tokens: TokenService, email: str, password: str) -> LoginResult:
    """Authenticate by email + password and issue an access/refresh token pair."""
    user = store.find_user_by_email(email.lower())
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        burn_verification(password)
        logger.info("Login failed: unknown email")
        raise errors.InvalidCredentials()
    if not user.is_active:
        logger.info("Login refused: account disabled (user_id=%s)", user.id)
        raise errors.AccountDisabled()
    if not verify_password(password, user.password_hash):
        logger.info("Login failed: bad password (user_id=%s)", user.id)
        raise errors.InvalidCredentials()

    identity = Identity.from_records(user, store.list_memberships_for_user(user.id))
    logger.info("Login succeeded (user_id=%s role=%s)", user.id, user.global_role.value)
    return LoginResult(
        identity=identity,
        access_token=tokens.issue_access_token(user.id),
        refresh_token=tokens.issue_refresh_token(user.id),
        login_time=datetime.now(timezone.utc).isoformat(),
    )


def logout() -> None:
    """Stateless no-op. Token disposal is the client's job."""
    return None


def refresh(store: IdentityStore, tokens: TokenService, refresh_token: str) -> str:
    """Exchange a valid refresh token for a new access token."""
    try:
        user_id = tokens.verify(refresh_token, TokenKind.REFRESH)
    except errors.TokenExpired as exc:
        raise errors.ExpiredRefreshToken() from exc
    except errors.TokenInvalid as exc:
        raise errors.InvalidRefreshToken() from exc

    user = store.find_user_by_id(user_id)
    if user is None or not user.is_active:
        logger.info("Refresh refused: user_id=%s missing or inactive", user_id)
        raise errors.AccountInvalid()
    return tokens.issue_access_token(user.id)


def get_current_identity(store: IdentityStore, user_id: int) -> Identity:
    """Re-read the authenticated user. NotFound if it vanished since authentication."""
    identity = load_identity(store, user_id)
    if identity is None:
        raise errors.NotFound("User not found.")
    return identity
