"""
auth/tokens.py -- Token service: signed, time-limited access and refresh JWTs.

Security design decisions:
  JWT: python-jose with HS256. Each token carries only user_id, iat and exp.
       Roles and memberships are NOT embedded -- auth/dependencies.py reads
       them fresh from the repository on every request, so a role change takes
       effect on the next request rather than after token expiry.

  Two token classes, two secrets: access tokens are signed with JWT_SECRET,
       refresh tokens with JWT_REFRESH_SECRET. Settings rejects identical
       secrets [M8], so verifying an access token as a refresh token (or the
       reverse) always fails the signature check.

  Failures are typed: errors.TokenExpired when the signature is good but exp
       has passed, errors.TokenInvalid for everything else (bad signature,
       malformed token, missing or non-integer user_id). Both render as 403
       today; callers that care (the refresh use case) branch on the type.

  Config is injected: TokenService takes a frozen TokenConfig built from
       Settings at startup. Nothing here reads the environment.

Layer rule: no imports from api/ or identity/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import ExpiredSignatureError, JWTError, jwt

from core import errors
from core.config import Settings

logger = logging.getLogger("wasteadmin.auth")

_ALGORITHM = "HS256"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenConfig:
    """Signing secrets and lifetimes, fixed for the life of the process."""

    access_secret: str
    refresh_secret: str
    access_expire_seconds: int = 15 * 60
    refresh_expire_seconds: int = 7 * 24 * 3600

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_expire_seconds=settings.jwt_expire_seconds,
            refresh_expire_seconds=settings.jwt_refresh_expire_seconds,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies access and refresh tokens.

    clock is the time source used when *issuing* tokens. Verification always
    uses the real current time (python-jose checks exp itself), so a test can
    issue an already-expired token by passing a clock set in the past.
    """

    def __init__(self, config: TokenConfig, clock: Callable[[], datetime] = _utcnow) -> None:
        self._config = config
        self._clock = clock

    @property
    def access_expire_seconds(self) -> int:
        return self._config.access_expire_seconds

    def _secret(self, kind: TokenKind) -> str:
        return self._config.access_secret if kind is TokenKind.ACCESS else self._config.refresh_secret

    def _issue(self, user_id: int, kind: TokenKind, lifetime: int) -> str:
        issued_at = self._clock()
        payload = {
            "user_id": user_id,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=lifetime),
        }
        return jwt.encode(payload, self._secret(kind), algorithm=_ALGORITHM)

    def issue_access_token(self, user_id: int) -> str:
        return self._issue(user_id, TokenKind.ACCESS, self._config.access_expire_seconds)

    def issue_refresh_token(self, user_id: int) -> str:
        return self._issue(user_id, TokenKind.REFRESH, self._config.refresh_expire_seconds)

    def verify(self, token: str, kind: TokenKind = TokenKind.ACCESS) -> int:
        """Verify a token of the given class and return its user_id.

        Raises errors.TokenExpired or errors.TokenInvalid.
        """
        try:
            payload = jwt.decode(token, self._secret(kind), algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise errors.TokenExpired() from exc
        except JWTError as exc:
            raise errors.TokenInvalid() from exc
        user_id = payload.get("user_id")
        # bool is an int subclass; a forged {"user_id": true} must not pass.
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise errors.TokenInvalid()
        return user_id
