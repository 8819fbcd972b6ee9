"""
api/routes/v1/institutions.py -- Institution management REST endpoints.

Routes:
  GET    /api/v1/institutions                               -- list (scoped by caller)
  GET    /api/v1/institutions/stats                         -- totals by type / territory level
  GET    /api/v1/institutions/{institution_id}              -- detail with member list
  POST   /api/v1/institutions                               -- create
  PUT    /api/v1/institutions/{institution_id}              -- partial update
  PATCH  /api/v1/institutions/{institution_id}/toggle-active -- flip the active flag
  DELETE /api/v1/institutions/{institution_id}              -- delete (only when memberless)
  GET    /api/v1/institutions/{institution_id}/users        -- member list

/institutions/stats is registered before /institutions/{institution_id} so the
literal path wins the match.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status

from api.models import (
    ApiResponse,
    InstitutionCreate,
    InstitutionData,
    InstitutionDetailData,
    InstitutionDetailOut,
    InstitutionMemberOut,
    InstitutionOut,
    InstitutionsData,
    InstitutionStatsData,
    InstitutionUpdate,
    InstitutionUsersData,
    PathId,
)
from api.routes.v1.users import institution_users
from auth.dependencies import authenticate, require_global_role, require_institution_role
from auth.models import Identity
from core import errors
from identity.models import GlobalRole, InstitutionRole
from identity.store import IdentityStore

logger = logging.getLogger("wasteadmin.api")

# Auth policy:
# - GET    /api/v1/institutions:                   requires auth; non-privileged callers see own institutions
# - GET    /api/v1/institutions/stats:             PLATFORM_ADMIN or REGULATOR_VIEWER
# - GET    /api/v1/institutions/{id}:              INSTITUTION_ADMIN or INSTITUTION_EDITOR of {id} (platform bypass)
# - POST   /api/v1/institutions:                   PLATFORM_ADMIN
# - PUT    /api/v1/institutions/{id}:              PLATFORM_ADMIN
# - PATCH  /api/v1/institutions/{id}/toggle-active: PLATFORM_ADMIN
# - DELETE /api/v1/institutions/{id}:              PLATFORM_ADMIN
# - GET    /api/v1/institutions/{id}/users:        INSTITUTION_ADMIN of {id} (platform bypass)
router = APIRouter()

_platform_admin = require_global_role(GlobalRole.PLATFORM_ADMIN)
_SEES_ALL = (GlobalRole.PLATFORM_ADMIN, GlobalRole.REGULATOR_VIEWER)


@router.get("/institutions", response_model=ApiResponse[InstitutionsData])
def list_institutions(request: Request, identity: Identity = Depends(authenticate)) -> ApiResponse[InstitutionsData]:
    """List institutions with member counts.

    Platform admins and regulators see every institution; everyone else sees
    only the institutions they belong to.
    """
    store: IdentityStore = request.app.state.identity_store
    if identity.global_role in _SEES_ALL:
        institutions = store.list_institutions()
    else:
        institutions = store.list_institutions(ids=[i.id for i in identity.institutions])
    counts = store.count_memberships_by_institution()
    return ApiResponse(
        data=InstitutionsData(institutions=[InstitutionOut.from_domain(i, counts.get(i.id, 0)) for i in institutions])
    )


@router.get("/institutions/stats", response_model=ApiResponse[InstitutionStatsData])
def institution_stats(
    request: Request,
    identity: Identity = Depends(require_global_role(*_SEES_ALL)),
) -> ApiResponse[InstitutionStatsData]:
    """Return institution totals broken down by type and territory level."""
    counts = request.app.state.identity_store.institution_counts()
    return ApiResponse(
        data=InstitutionStatsData(
            total=counts["total"],
            active=counts["active"],
            inactive=counts["total"] - counts["active"],
            by_type=counts["by_type"],
            by_level=counts["by_level"],
        )
    )


@router.get("/institutions/{institution_id}", response_model=ApiResponse[InstitutionDetailData])
def get_institution(
    request: Request,
    institution_id: PathId,
    identity: Identity = Depends(
        require_institution_role(InstitutionRole.INSTITUTION_ADMIN, InstitutionRole.INSTITUTION_EDITOR)
    ),
) -> ApiResponse[InstitutionDetailData]:
    """Return one institution with its members."""
    store: IdentityStore = request.app.state.identity_store
    institution = store.find_institution_by_id(institution_id)
    if institution is None:
        raise errors.NotFound("Institution not found.")
    members = store.list_memberships_for_institution(institution_id)
    base = InstitutionOut.from_domain(institution, len(members))
    detail = InstitutionDetailOut(
        **base.model_dump(),
        users=[InstitutionMemberOut.from_membership(m) for m in members],
    )
    return ApiResponse(data=InstitutionDetailData(institution=detail))


@router.post("/institutions", response_model=ApiResponse[InstitutionData], status_code=status.HTTP_201_CREATED)
def create_institution(
    request: Request,
    body: InstitutionCreate,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[InstitutionData]:
    store: IdentityStore = request.app.state.identity_store
    institution = store.create_institution(body.name, body.type, body.territory_level, body.territory_code)
    logger.info("Institution id=%s created by user_id=%s", institution.id, identity.id)
    return ApiResponse(
        message="Institution created.",
        data=InstitutionData(institution=InstitutionOut.from_domain(institution, 0)),
    )


@router.put("/institutions/{institution_id}", response_model=ApiResponse[InstitutionData])
def update_institution(
    request: Request,
    institution_id: PathId,
    body: InstitutionUpdate,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[InstitutionData]:
    """Partially update an institution. Omitted fields are left unchanged."""
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise errors.NoChanges()
    store: IdentityStore = request.app.state.identity_store
    institution = store.update_institution(institution_id, **updates)
    logger.info("Institution id=%s updated by user_id=%s (fields=%s)", institution_id, identity.id, sorted(updates))
    return ApiResponse(
        message="Institution updated.",
        data=InstitutionData(
            institution=InstitutionOut.from_domain(institution, store.count_memberships_for_institution(institution_id))
        ),
    )


@router.patch("/institutions/{institution_id}/toggle-active", response_model=ApiResponse[InstitutionData])
def toggle_institution_active(
    request: Request,
    institution_id: PathId,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[InstitutionData]:
    store: IdentityStore = request.app.state.identity_store
    current = store.find_institution_by_id(institution_id)
    if current is None:
        raise errors.NotFound("Institution not found.")
    institution = store.update_institution(institution_id, is_active=not current.is_active)
    return ApiResponse(
        message="Institution activated." if institution.is_active else "Institution deactivated.",
        data=InstitutionData(
            institution=InstitutionOut.from_domain(institution, store.count_memberships_for_institution(institution_id))
        ),
    )


@router.delete("/institutions/{institution_id}", response_model=ApiResponse[None])
def delete_institution(
    request: Request,
    institution_id: PathId,
    identity: Identity = Depends(_platform_admin),
) -> ApiResponse[None]:
    """Delete an institution. Rejected with institution_in_use while it has members."""
    store: IdentityStore = request.app.state.identity_store
    if not store.delete_institution(institution_id):
        raise errors.NotFound("Institution not found.")
    logger.info("Institution id=%s deleted by user_id=%s", institution_id, identity.id)
    return ApiResponse(message="Institution deleted.")


@router.get("/institutions/{institution_id}/users", response_model=ApiResponse[InstitutionUsersData])
def list_members(
    request: Request,
    institution_id: PathId,
    identity: Identity = Depends(require_institution_role(InstitutionRole.INSTITUTION_ADMIN)),
) -> ApiResponse[InstitutionUsersData]:
    return ApiResponse(data=institution_users(request.app.state.identity_store, institution_id))
