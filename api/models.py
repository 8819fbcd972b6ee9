"""
API request and response models for the admin backend REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in identity/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two via the from_* factory methods colocated with each model.

Wire format: JSON keys are camelCase (globalRole, accessToken, institutionId).
Request models also accept the snake_case field names (populate_by_name) and
reject unknown keys (extra="forbid") so a mistyped field is a 400, not a
silently ignored value.

Enums come from identity/models.py -- the single definition shared with the
repository.
"""

from __future__ import annotations

from typing import Annotated, Generic, Optional, TypeVar

from fastapi import Path
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity, IdentityInstitution
from identity.models import (
    GlobalRole,
    Institution,
    InstitutionRole,
    InstitutionType,
    MAX_ID,
    Membership,
    TerritoryLevel,
    User,
)

T = TypeVar("T")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt ignores everything past 72 bytes.
_PASSWORD_MAX = 72

# Positive and within the database integer range.
RowId = Annotated[int, Field(gt=0, le=MAX_ID)]
PathId = Annotated[int, Path(gt=0, le=MAX_ID)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestModel(CamelModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ResponseModel(CamelModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiResponse(ResponseModel, Generic[T]):
    """Success envelope: {"success": true, "message": ..., "data": ...}."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class ErrorDetail(ResponseModel):
    """Machine-readable error payload."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(ResponseModel):
    """Failure envelope returned on every 4xx/5xx response."""

    success: bool = False
    message: str
    error: ErrorDetail

    @classmethod
    def build(cls, code: str, message: str, detail: Optional[str] = None) -> "ErrorResponse":
        return cls(message=message, error=ErrorDetail(code=code, message=message, detail=detail))


class HealthResponse(ResponseModel):
    """Response for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(RequestModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RefreshRequest(RequestModel):
    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class IdentityInstitutionOut(ResponseModel):
    id: int
    name: str
    type: InstitutionType
    territory_level: TerritoryLevel
    role: InstitutionRole

    @classmethod
    def from_domain(cls, inst: IdentityInstitution) -> "IdentityInstitutionOut":
        return cls(id=inst.id, name=inst.name, type=inst.type, territory_level=inst.territory_level, role=inst.role)


class IdentityOut(ResponseModel):
    """Sanitized identity view -- never includes the password hash."""

    id: int
    email: str
    global_role: GlobalRole
    institutions: list[IdentityInstitutionOut]

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityOut":
        return cls(
            id=identity.id,
            email=identity.email,
            global_role=identity.global_role,
            institutions=[IdentityInstitutionOut.from_domain(i) for i in identity.institutions],
        )


class LoginData(ResponseModel):
    user: IdentityOut
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    login_time: str


class RefreshData(ResponseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class CurrentUserData(ResponseModel):
    user: IdentityOut


# ---------------------------------------------------------------------------
# Users -- requests
# ---------------------------------------------------------------------------


class UserCreate(RequestModel):
    """Request body for POST /api/v1/users.

    institution_id and institution_role go together: both or neither.
    """

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    global_role: GlobalRole = GlobalRole.STANDARD_USER
    institution_id: Optional[RowId] = None
    institution_role: Optional[InstitutionRole] = None

    @model_validator(mode="after")
    def membership_pair(self) -> "UserCreate":
        if (self.institution_id is None) != (self.institution_role is None):
            raise ValueError("institutionId and institutionRole must be provided together.")
        return self


class UserUpdate(RequestModel):
    """Request body for PUT /api/v1/users/{user_id}. Omitted fields are left unchanged."""

    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, min_length=6, max_length=_PASSWORD_MAX)
    global_role: Optional[GlobalRole] = None
    is_active: Optional[bool] = None


class MembershipAssign(RequestModel):
    """Request body for POST /api/v1/users/{user_id}/institution."""

    institution_id: RowId
    institution_role: InstitutionRole


# ---------------------------------------------------------------------------
# Users -- responses
# ---------------------------------------------------------------------------


class UserMembershipOut(ResponseModel):
    id: int
    name: str
    type: InstitutionType
    role: InstitutionRole


class UserOut(ResponseModel):
    id: int
    email: str
    global_role: GlobalRole
    is_active: bool
    created_at: str
    institutions: list[UserMembershipOut] = Field(default_factory=list)

    @classmethod
    def from_records(cls, user: User, memberships: list[Membership]) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            global_role=user.global_role,
            is_active=user.is_active,
            created_at=user.created_at,
            institutions=[
                UserMembershipOut(id=m.institution.id, name=m.institution.name, type=m.institution.type, role=m.role)
                for m in memberships
                if m.institution is not None
            ],
        )


class UserData(ResponseModel):
    user: UserOut


class UsersData(ResponseModel):
    users: list[UserOut]


class MembershipData(ResponseModel):
    created: bool
    user_id: int
    institution_id: int
    institution_role: InstitutionRole


# ---------------------------------------------------------------------------
# Institutions -- requests
# ---------------------------------------------------------------------------


class InstitutionCreate(RequestModel):
    name: str = Field(min_length=1, max_length=255)
    type: InstitutionType
    territory_level: TerritoryLevel
    territory_code: str = Field(min_length=1, max_length=20)


class InstitutionUpdate(RequestModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[InstitutionType] = None
    territory_level: Optional[TerritoryLevel] = None
    territory_code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Institutions -- responses
# ---------------------------------------------------------------------------


class InstitutionMemberOut(ResponseModel):
    id: int
    email: str
    global_role: GlobalRole
    institution_role: InstitutionRole
    is_active: bool
    created_at: str

    @classmethod
    def from_membership(cls, m: Membership) -> "InstitutionMemberOut":
        return cls(
            id=m.user.id,
            email=m.user.email,
            global_role=m.user.global_role,
            institution_role=m.role,
            is_active=m.user.is_active,
            created_at=m.user.created_at,
        )


class InstitutionOut(ResponseModel):
    id: int
    name: str
    type: InstitutionType
    territory_level: TerritoryLevel
    territory_code: str
    is_active: bool
    created_at: str
    updated_at: str
    users_count: Optional[int] = None

    @classmethod
    def from_domain(cls, inst: Institution, users_count: Optional[int] = None) -> "InstitutionOut":
        return cls(
            id=inst.id,
            name=inst.name,
            type=inst.type,
            territory_level=inst.territory_level,
            territory_code=inst.territory_code,
            is_active=inst.is_active,
            created_at=inst.created_at,
            updated_at=inst.updated_at,
            users_count=users_count,
        )


class InstitutionDetailOut(InstitutionOut):
    users: list[InstitutionMemberOut] = Field(default_factory=list)


class InstitutionData(ResponseModel):
    institution: InstitutionOut


class InstitutionDetailData(ResponseModel):
    institution: InstitutionDetailOut


class InstitutionsData(ResponseModel):
    institutions: list[InstitutionOut]


class InstitutionRef(ResponseModel):
    id: int
    name: str


class InstitutionUsersData(ResponseModel):
    institution: InstitutionRef
    users: list[InstitutionMemberOut]


class InstitutionStatsData(ResponseModel):
    """Response data for GET /api/v1/institutions/stats."""

    total: int
    active: int
    inactive: int
    by_type: dict[str, int]
    by_level: dict[str, int]


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class CountsOut(ResponseModel):
    total: int
    active: int
    inactive: int
    by_role: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_counts(cls, counts: dict) -> "CountsOut":
        return cls(
            total=counts["total"],
            active=counts["active"],
            inactive=counts["total"] - counts["active"],
            by_role=counts.get("by_role", {}),
        )


class InstitutionCountsOut(ResponseModel):
    total: int
    active: int
    inactive: int
    by_type: dict[str, int]


class RecentUserOut(ResponseModel):
    id: int
    email: str
    global_role: GlobalRole
    is_active: bool
    created_at: str
    institution_name: Optional[str] = None
    institution_role: Optional[InstitutionRole] = None


class AdminStatsData(ResponseModel):
    users: CountsOut
    institutions: InstitutionCountsOut
    recent_users: list[RecentUserOut]


class InstitutionStatsView(ResponseModel):
    institution: InstitutionOut
    users: CountsOut
    recent_users: list[RecentUserOut]
