"""
api/routes/v1/auth.py -- Session REST endpoints.

Routes:
  POST /api/v1/auth/login      -- email + password login; returns token pair
  POST /api/v1/auth/refresh    -- exchange refresh token for a new access token
  POST /api/v1/auth/logout     -- stateless; clients discard their tokens
  GET  /api/v1/auth/me         -- current identity (requires auth)

Security:
  [C1] sessions.login() provides timing equalization -- use it, never inline
       find_user_by_email() + verify_password().
  [M5] Cache-Control: no-store on login and refresh responses, so tokens never
       land in an intermediary cache.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    ApiResponse,
    CurrentUserData,
    IdentityOut,
    LoginData,
    LoginRequest,
    RefreshData,
    RefreshRequest,
)
from auth import sessions
from auth.dependencies import authenticate
from auth.models import Identity
from auth.tokens import TokenService
from identity.store import IdentityStore

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   requires auth (authenticate)
# - GET  /api/v1/auth/me:       requires auth (authenticate)
router = APIRouter()


@router.post("/auth/login", response_model=ApiResponse[LoginData])
def login(request: Request, response: Response, body: LoginRequest) -> ApiResponse[LoginData]:
    """Authenticate with email and password; return an access/refresh token pair.

    Unknown email and wrong password produce the same invalid_credentials
    error so the response does not reveal which accounts exist.
    """
    store: IdentityStore = request.app.state.identity_store
    tokens: TokenService = request.app.state.token_service
    response.headers["Cache-Control"] = "no-store"  # [M5]
    result = sessions.login(store, tokens, body.email, body.password)
    return ApiResponse(
        message="Login successful.",
        data=LoginData(
            user=IdentityOut.from_identity(result.identity),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=tokens.access_expire_seconds,
            login_time=result.login_time,
        ),
    )


@router.post("/auth/refresh", response_model=ApiResponse[RefreshData])
def refresh(request: Request, response: Response, body: RefreshRequest) -> ApiResponse[RefreshData]:
    """Issue a new access token. The refresh token itself is not rotated."""
    store: IdentityStore = request.app.state.identity_store
    tokens: TokenService = request.app.state.token_service
    response.headers["Cache-Control"] = "no-store"  # [M5]
    access_token = sessions.refresh(store, tokens, body.refresh_token)
    return ApiResponse(
        message="Token refreshed.",
        data=RefreshData(access_token=access_token, expires_in=tokens.access_expire_seconds),
    )


@router.post("/auth/logout", response_model=ApiResponse[None])
def logout(identity: Identity = Depends(authenticate)) -> ApiResponse[None]:
    """End the session. Nothing is revoked server-side; the client drops its tokens."""
    sessions.logout()
    return ApiResponse(message="Logged out.")


@router.get("/auth/me", response_model=ApiResponse[CurrentUserData])
def me(request: Request, identity: Identity = Depends(authenticate)) -> ApiResponse[CurrentUserData]:
    """Return the authenticated user with memberships, freshly read."""
    current = sessions.get_current_identity(request.app.state.identity_store, identity.id)
    return ApiResponse(data=CurrentUserData(user=IdentityOut.from_identity(current)))
