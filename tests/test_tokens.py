"""
tests/test_tokens.py -- Unit tests for the token service.

Coverage:
  - Round trip: verify(issue_access_token(u)) == u
  - Access and refresh tokens are distinct and signed with different secrets
  - Expired tokens raise TokenExpired, not TokenInvalid
  - Tampered, malformed and wrongly-typed payloads raise TokenInvalid
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import TokenConfig, TokenKind, TokenService
from core import errors

_ACCESS_SECRET = "a" * 40
_REFRESH_SECRET = "r" * 40


def _service(clock=None) -> TokenService:
    config = TokenConfig(access_secret=_ACCESS_SECRET, refresh_secret=_REFRESH_SECRET)
    if clock is None:
        return TokenService(config)
    return TokenService(config, clock=clock)


class TestTokenRoundTrip:
    def test_access_token_round_trip(self) -> None:
        """verify(issue_access_token(u)) must return u."""
        svc = _service()
        for uid in (1, 42, 10_000):
            assert svc.verify(svc.issue_access_token(uid)) == uid

    def test_refresh_token_round_trip(self) -> None:
        """A refresh token verifies only as the REFRESH kind."""
        svc = _service()
        assert svc.verify(svc.issue_refresh_token(7), TokenKind.REFRESH) == 7

    def test_payload_carries_only_user_id_and_times(self) -> None:
        """Roles must never be embedded in the token."""
        svc = _service()
        claims = jwt.get_unverified_claims(svc.issue_access_token(3))
        assert set(claims) == {"user_id", "iat", "exp"}, f"Unexpected claims: {claims}"

    def test_access_lifetime_matches_config(self) -> None:
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        svc = _service(clock=lambda: now)
        claims = jwt.get_unverified_claims(svc.issue_access_token(3))
        assert claims["exp"] - claims["iat"] == 15 * 60
        assert svc.access_expire_seconds == 15 * 60


class TestTokenSeparation:
    def test_access_and_refresh_tokens_differ(self) -> None:
        svc = _service()
        assert svc.issue_access_token(5) != svc.issue_refresh_token(5)

    def test_access_token_fails_as_refresh(self) -> None:
        """The refresh secret must not validate an access token."""
        svc = _service()
        with pytest.raises(errors.TokenInvalid):
            svc.verify(svc.issue_access_token(5), TokenKind.REFRESH)

    def test_refresh_token_fails_as_access(self) -> None:
        svc = _service()
        with pytest.raises(errors.TokenInvalid):
            svc.verify(svc.issue_refresh_token(5), TokenKind.ACCESS)


class TestTokenFailures:
    def test_expired_token_raises_token_expired(self) -> None:
        """A token issued an hour ago with a 15 minute lifetime is expired."""
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        issuer = _service(clock=lambda: past)
        token = issuer.issue_access_token(9)
        with pytest.raises(errors.TokenExpired):
            _service().verify(token)

    def test_expired_is_not_reported_as_invalid(self) -> None:
        """TokenExpired and TokenInvalid are distinct error kinds."""
        assert not issubclass(errors.TokenExpired, errors.TokenInvalid)
        assert not issubclass(errors.TokenInvalid, errors.TokenExpired)

    def test_garbage_token_is_invalid(self) -> None:
        with pytest.raises(errors.TokenInvalid):
            _service().verify("not-a-jwt")

    def test_tampered_token_is_invalid(self) -> None:
        header, _payload, signature = _service().issue_access_token(1).split(".")
        other_payload = _service().issue_access_token(2).split(".")[1]
        tampered = ".".join([header, other_payload, signature])
        with pytest.raises(errors.TokenInvalid):
            _service().verify(tampered)

    def test_non_integer_user_id_is_invalid(self) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        for bad in ("1", True, None):
            token = jwt.encode({"user_id": bad, "exp": exp}, _ACCESS_SECRET, algorithm="HS256")
            with pytest.raises(errors.TokenInvalid):
                _service().verify(token)

    def test_errors_render_as_403(self) -> None:
        assert errors.TokenInvalid.status_code == 403
        assert errors.TokenExpired.status_code == 403
