"""
auth/models.py -- The resolved identity attached to an authenticated request.

Pattern: Data class (pure data container). An Identity is a read-only snapshot
built from the repository on every request by auth/dependencies.py. It never
carries the password hash, so it is safe to serialize as the "current user"
view returned by login and GET /auth/me.

Layer rule: no imports from api/. identity/ is imported for the shared enums.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from identity.models import GlobalRole, InstitutionRole, InstitutionType, Membership, TerritoryLevel, User


@dataclass(frozen=True)
class IdentityInstitution:
    """One membership as seen from the identity: the institution plus the user's role there."""

    id: int
    name: str
    type: InstitutionType
    territory_level: TerritoryLevel
    role: InstitutionRole


@dataclass(frozen=True)
class Identity:
    id: int
    email: str
    global_role: GlobalRole
    institutions: tuple[IdentityInstitution, ...] = field(default_factory=tuple)

    @property
    def is_platform_admin(self) -> bool:
        return self.global_role is GlobalRole.PLATFORM_ADMIN

    def membership(self, institution_id: int) -> IdentityInstitution | None:
        """Return this identity's membership in the given institution, or None."""
        for inst in self.institutions:
            if inst.id == institution_id:
                return inst
        return None

    @classmethod
    def from_records(cls, user: User, memberships: list[Membership]) -> "Identity":
        """Build a snapshot from a User and its joined memberships.

        Memberships whose institution was not joined are skipped.
        """
        return cls(
            id=user.id,
            email=user.email,
            global_role=user.global_role,
            institutions=tuple(
                IdentityInstitution(
                    id=m.institution.id,
                    name=m.institution.name,
                    type=m.institution.type,
                    territory_level=m.institution.territory_level,
                    role=m.role,
                )
                for m in memberships
                if m.institution is not None
            ),
        )
