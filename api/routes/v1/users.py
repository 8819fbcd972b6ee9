"""
api/routes/v1/users.py -- User account and membership management REST endpoints.

Routes:
  GET    /api/v1/users                                       -- list all users
  GET    /api/v1/users/institution/{institution_id}          -- members of one institution
  POST   /api/v1/users                                       -- create user (+ optional membership)
  PUT    /api/v1/users/{user_id}                             -- partial update
  DELETE /api/v1/users/{user_id}                             -- delete user and its memberships
  POST   /api/v1/users/{user_id}/institution                 -- assign / change institution role
  DELETE /api/v1/users/{user_id}/institution/{institution_id} -- remove membership

Account rules enforced here:
  - Nobody may delete their own account, change their own global role or
    deactivate themselves (errors.SelfProtection, 400).
  - The last active PLATFORM_ADMIN cannot be demoted or deactivated
    (errors.LastPlatformAdmin, 400).
  - An INSTITUTION_ADMIN creates STANDARD_USER accounts only, always inside an
    institution it administers. It edits only STANDARD_USER accounts whose
    memberships all lie in institutions it administers.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status

from api.models import (
    ApiResponse,
    InstitutionMemberOut,
    InstitutionRef,
    InstitutionUsersData,
    MembershipAssign,
    MembershipData,
    PathId,
    UserCreate,
    UserData,
    UserOut,
    UsersData,
    UserUpdate,
)
from auth.dependencies import authenticate, require_global_role, require_institution_role
from auth.guards import administered_institution_ids
from auth.models import Identity
from auth.passwords import hash_password
from core import errors
from identity.models import GlobalRole, InstitutionRole, User
from identity.store import IdentityStore

logger = logging.getLogger("wasteadmin.api")

# Auth policy:
# - GET    /api/v1/users:                              PLATFORM_ADMIN
# - GET    /api/v1/users/institution/{id}:             INSTITUTION_ADMIN of {id} (platform bypass)
# - POST   /api/v1/users:                              INSTITUTION_ADMIN of body institutionId (platform bypass)
# - PUT    /api/v1/users/{id}:                         requires auth; tenant containment check in handler
# - DELETE /api/v1/users/{id}:                         PLATFORM_ADMIN
# - POST   /api/v1/users/{id}/institution:             PLATFORM_ADMIN
# - DELETE /api/v1/users/{id}/institution/{inst_id}:   PLATFORM_ADMIN
router = APIRouter()

_platform_admin = require_global_role(GlobalRole.PLATFORM_ADMIN)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/users", response_model=ApiResponse[UsersData])
def list_users(request: Request, identity: Identity = Depends(_platform_admin)) -> ApiResponse[UsersData]:
    """List every user with their memberships, newest first."""
    store: IdentityStore = request.app.state.identity_store
    users = [UserOut.from_records(u.user, u.memberships) for u in store.list_users()]
    return ApiResponse(data=UsersData(users=users))


@router.get("/users/institution/{institution_id}", response_model=ApiResponse[InstitutionUsersData])
def list_institution_users(
    request: Request,
    institution_id: PathId,
    identity: Identity = Depends(require_institution_role(InstitutionRole.INSTITUTION_ADMIN)),
) -> ApiResponse[InstitutionUsersData]:
    """List the members of one institution with their institution roles."""
    return ApiResponse(data=institution_users(request.app.state.identity_store, institution_id))


def institution_users(store: IdentityStore, institution_id: int) -> InstitutionUsersData:
    """Shared by the /users and /institutions member listings."""
    institution = store.find_institution_by_id(institution_id)
    if institution is None:
        raise errors.NotFound("Institution not found.")
    members = store.list_memberships_for_institution(institution_id)
    return InstitutionUsersData(
        institution=InstitutionRef(id=institution.id, name=institution.name),
        users=[InstitutionMemberOut.from_membership(m) for m in members],
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@router.post("/users", response_model=ApiResponse[UserData], status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    body: UserCreate,
    identity: Identity = Depends(require_institution_role(InstitutionRole.INSTITUTION_ADMIN, source="body")),
) -> ApiResponse[UserData]:
    """Create a user account, optionally with an initial membership.

    A platform admin may create any global role. An institution admin may only
    create STANDARD_USER accounts, and only as members of the institution the
    guard has already checked.
    """
    store: IdentityStore = request.app.state.identity_store
    if not identity.is_platform_admin:
        if body.global_role is not GlobalRole.STANDARD_USER:
            raise errors.Forbidden("Institution admins can only create standard users.")
        if body.institution_id is None:
            raise errors.MissingInstitutionId()

    user = store.create_user(
        body.email,
        hash_password(body.password),
        body.global_role,
        institution_id=body.institution_id,
        institution_role=body.institution_role,
    )
    logger.info("User id=%s created by user_id=%s", user.id, identity.id)
    return ApiResponse(message="User created.", data=UserData(user=_user_to_response(store, user)))


@router.put("/users/{user_id}", response_model=ApiResponse[UserData])
def update_user(
    request: Request,
    user_id: PathId,
    body: UserUpdate,
    identity: Identity = Depends(authenticate),
) -> ApiResponse[UserData]:
    """Partially update a user's email, password, global role or active flag."""
    store: IdentityStore = request.app.state.identity_store
    target = store.find_user_by_id(user_id)
    if target is None:
        raise errors.NotFound("User not found.")

    if not identity.is_platform_admin:
        if target.global_role is not GlobalRole.STANDARD_USER:
            raise errors.Forbidden("Institution admins can only edit standard users.")
        # Every tenant the target belongs to must be one the caller administers.
        member_of = {m.institution_id for m in store.list_memberships_for_user(user_id)}
        if not member_of or not member_of <= administered_institution_ids(identity):
            raise errors.Forbidden("You can only edit users of institutions you administer.")
        if body.global_role is not None and body.global_role is not target.global_role:
            raise errors.Forbidden("Only platform admins can change global roles.")

    updates: dict = {}
    if body.email is not None:
        updates["email"] = body.email
    if body.password is not None:
        updates["password_hash"] = hash_password(body.password)
    if body.global_role is not None:
        if target.id == identity.id and body.global_role is not target.global_role:
            raise errors.SelfProtection("You cannot change your own global role.")
        updates["global_role"] = body.global_role
    if body.is_active is not None:
        if target.id == identity.id and not body.is_active:
            raise errors.SelfProtection("You cannot deactivate your own account.")
        updates["is_active"] = body.is_active
    if not updates:
        raise errors.NoChanges()

    _check_last_platform_admin(store, target, updates)
    updated = store.update_user(user_id, **updates)
    logger.info("User id=%s updated by user_id=%s (fields=%s)", user_id, identity.id, sorted(updates))
    return ApiResponse(message="User updated.", data=UserData(user=_user_to_response(store, updated)))


@router.delete("/users/{user_id}", response_model=ApiResponse[None])
def delete_user(
    request: Request,
    user_id: PathId,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[None]:
    """Delete a user account together with its memberships."""
    if user_id == identity.id:
        raise errors.SelfProtection("You cannot delete your own account.")
    store: IdentityStore = request.app.state.identity_store
    if not store.delete_user(user_id):
        raise errors.NotFound("User not found.")
    logger.info("User id=%s deleted by user_id=%s", user_id, identity.id)
    return ApiResponse(message="User deleted.")


@router.post("/users/{user_id}/institution", response_model=ApiResponse[MembershipData])
def assign_institution(
    request: Request,
    user_id: PathId,
    body: MembershipAssign,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[MembershipData]:
    """Assign a user to an institution, or change the role of an existing membership."""
    store: IdentityStore = request.app.state.identity_store
    if store.find_user_by_id(user_id) is None:
        raise errors.NotFound("User not found.")
    if store.find_institution_by_id(body.institution_id) is None:
        raise errors.NotFound("Institution not found.")
    created = store.upsert_membership(user_id, body.institution_id, body.institution_role)
    return ApiResponse(
        message="User assigned to institution." if created else "Institution role updated.",
        data=MembershipData(
            created=created,
            user_id=user_id,
            institution_id=body.institution_id,
            institution_role=body.institution_role,
        ),
    )


@router.delete("/users/{user_id}/institution/{institution_id}", response_model=ApiResponse[None])
def remove_institution(
    request: Request,
    user_id: PathId,
    institution_id: PathId,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[None]:
    """Remove a user's membership in an institution."""
    store: IdentityStore = request.app.state.identity_store
    if store.find_user_by_id(user_id) is None:
        raise errors.NotFound("User not found.")
    if store.find_institution_by_id(institution_id) is None:
        raise errors.NotFound("Institution not found.")
    membership = store.get_membership(user_id, institution_id)
    if membership is None or not store.delete_membership(user_id, institution_id):
        raise errors.NotFound("User is not a member of this institution.")
    logger.info(
        "Removed user id=%s from institution id=%s (was %s)", user_id, institution_id, membership.role.value
    )
    return ApiResponse(message="User removed from institution.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_last_platform_admin(store: IdentityStore, target: User, updates: dict) -> None:
    if target.global_role is not GlobalRole.PLATFORM_ADMIN or not target.is_active:
        return
    demoted = updates.get("global_role", target.global_role) is not GlobalRole.PLATFORM_ADMIN
    deactivated = updates.get("is_active", True) is False
    if (demoted or deactivated) and store.count_active_platform_admins() <= 1:
        raise errors.LastPlatformAdmin()


def _user_to_response(store: IdentityStore, user: User | None) -> UserOut:
    if user is None:
        raise errors.Internal("User not found after write.")
    return UserOut.from_records(user, store.list_memberships_for_user(user.id))
