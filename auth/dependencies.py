"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Request flow for a protected route:
  authenticate  ->  [require_global_role]  ->  [require_institution_role]  ->  handler

authenticate() extracts "Authorization: Bearer <token>", verifies it as an
ACCESS token, then loads the user and its memberships fresh from the
repository. Nothing about roles is trusted from the token itself. The resolved
Identity is returned and also stored on request.state.identity.

  no / malformed header            -> MissingToken (401)
  bad signature, malformed, expired -> TokenInvalid / TokenExpired (403)
  user gone or deactivated         -> UserNotFound (403)

The guard factories return dependencies that depend on authenticate(), so
FastAPI always runs authentication first and, thanks to per-request dependency
caching, only once even when a route stacks several guards.

Usage:
    @router.get("/stats/admin", dependencies=[Depends(require_global_role(GlobalRole.PLATFORM_ADMIN))])
    @router.get("/stats/institution/{institution_id}")
    def route(identity: Identity = Depends(require_institution_role(InstitutionRole.INSTITUTION_ADMIN))): ...

Layer rule: no imports from api/. This module may import fastapi because it is
part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import json
import logging
from typing import Literal

from fastapi import Depends, Request

from auth.guards import check_global_role, check_institution_role
from auth.models import Identity
from auth.tokens import TokenKind
from core import errors
from identity.models import MAX_ID, GlobalRole, InstitutionRole

logger = logging.getLogger("wasteadmin.auth")

InstitutionIdSource = Literal["path", "body", "query"]


def _bearer_token(request: Request) -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise errors.MissingToken()
    return token


def authenticate(request: Request) -> Identity:
    """Resolve the request's bearer token to a live, active Identity."""
    token = _bearer_token(request)
    try:
        user_id = request.app.state.token_service.verify(token, TokenKind.ACCESS)
    except errors.AppError as exc:
        logger.info("Rejected access token on %s: %s", request.url.path, exc.code)
        raise
    store = request.app.state.identity_store
    user = store.find_user_by_id(user_id)
    if user is None or not user.is_active:
        logger.info("Rejected access token on %s: user_id=%s missing or inactive", request.url.path, user_id)
        raise errors.UserNotFound()
    identity = Identity.from_records(user, store.list_memberships_for_user(user_id))
    request.state.identity = identity
    return identity


def require_global_role(*allowed: GlobalRole):
    """Dependency factory: the identity's global role must be one of allowed."""

    def dependency(identity: Identity = Depends(authenticate)) -> Identity:
        return check_global_role(identity, allowed)

    return dependency


def require_institution_role(
    *allowed: InstitutionRole,
    param: str = "institution_id",
    source: InstitutionIdSource = "path",
):
    """Dependency factory: institution-scoped role check with platform-admin bypass.

    param names the path parameter, query parameter or JSON body field that
    holds the target institution ID. Body fields are looked up under both the
    snake_case name and its camelCase wire form (institution_id / institutionId).
    """

    async def dependency(request: Request, identity: Identity = Depends(authenticate)) -> Identity:
        institution_id = None
        if not identity.is_platform_admin:
            institution_id = await _read_institution_id(request, param, source)
        check_institution_role(identity, allowed, institution_id)
        return identity

    return dependency


async def _read_institution_id(request: Request, param: str, source: InstitutionIdSource) -> int | None:
    if source == "path":
        raw = request.path_params.get(param)
    elif source == "query":
        raw = request.query_params.get(param)
    else:
        raw = await _read_body_field(request, param)
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise errors.ValidationError("Institution ID must be an integer.")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise errors.ValidationError("Institution ID must be an integer.") from exc
    if not 0 < value <= MAX_ID:
        raise errors.ValidationError("Institution ID is out of range.")
    return value


async def _read_body_field(request: Request, param: str):
    # Starlette caches the body on the Request, so the route can still parse it.
    body = await request.body()
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    if param in data:
        return data[param]
    return data.get(_to_camel(param))


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
