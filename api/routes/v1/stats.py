"""
api/routes/v1/stats.py -- Aggregated statistics endpoints for admin dashboards.

Returns payloads suitable for driving dashboard widgets:
  /stats/admin                      -- platform-wide user and institution counts
  /stats/institution/{id}           -- one institution's member counts

This is a read-only aggregate route -- no mutations here.
"""

from fastapi import APIRouter, Depends, Request

from api.models import (
    AdminStatsData,
    ApiResponse,
    CountsOut,
    InstitutionCountsOut,
    InstitutionOut,
    InstitutionStatsView,
    PathId,
    RecentUserOut,
)
from auth.dependencies import require_global_role, require_institution_role
from core import errors
from identity.models import GlobalRole, InstitutionRole
from identity.store import IdentityStore

# Auth policy:
# - GET /api/v1/stats/admin:                      PLATFORM_ADMIN
# - GET /api/v1/stats/institution/{id}:           INSTITUTION_ADMIN of {id} (platform bypass)
router = APIRouter()

_RECENT_LIMIT = 10


@router.get(
    "/stats/admin",
    response_model=ApiResponse[AdminStatsData],
    dependencies=[Depends(require_global_role(GlobalRole.PLATFORM_ADMIN))],
)
def admin_stats(request: Request) -> ApiResponse[AdminStatsData]:
    """Return platform-wide metrics.

    Response data:
      users         -- total / active / inactive / byRole (global role)
      institutions  -- total / active / inactive / byType
      recentUsers   -- the ten newest accounts with their first institution name
    """
    store: IdentityStore = request.app.state.identity_store
    inst = store.institution_counts()
    return ApiResponse(
        data=AdminStatsData(
            users=CountsOut.from_counts(store.user_counts()),
            institutions=InstitutionCountsOut(
                total=inst["total"],
                active=inst["active"],
                inactive=inst["total"] - inst["active"],
                by_type=inst["by_type"],
            ),
            recent_users=[RecentUserOut(**u) for u in store.recent_users(limit=_RECENT_LIMIT)],
        )
    )


@router.get(
    "/stats/institution/{institution_id}",
    response_model=ApiResponse[InstitutionStatsView],
    dependencies=[Depends(require_institution_role(InstitutionRole.INSTITUTION_ADMIN))],
)
def institution_stats(request: Request, institution_id: PathId) -> ApiResponse[InstitutionStatsView]:
    """Return member counts and the newest members of one institution."""
    store: IdentityStore = request.app.state.identity_store
    institution = store.find_institution_by_id(institution_id)
    if institution is None:
        raise errors.NotFound("Institution not found.")
    counts = store.institution_member_counts(institution_id)
    return ApiResponse(
        data=InstitutionStatsView(
            institution=InstitutionOut.from_domain(institution, counts["total"]),
            users=CountsOut.from_counts(counts),
            recent_users=[
                RecentUserOut(**u) for u in store.recent_users(limit=_RECENT_LIMIT, institution_id=institution_id)
            ],
        )
    )
