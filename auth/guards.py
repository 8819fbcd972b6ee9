"""
auth/guards.py -- Authorization checks layered after authentication.

Two checks, both pure functions over an Identity so they can be unit tested
without HTTP:

  check_global_role(identity, allowed)
      Passes iff identity.global_role is in allowed.

  check_institution_role(identity, allowed, institution_id)
      1. PLATFORM_ADMIN always passes (global bypass), even for institutions
         it has no membership row in, and even when institution_id is absent.
      2. Otherwise institution_id is required (MissingInstitutionId, 400).
      3. The identity must hold a membership there (NotAMember, 403).
      4. That membership's role must be in allowed (InsufficientInstitutionRole, 403).

Both raise errors.Unauthenticated if called without an identity. Routes compose
the checks independently, so the institution check re-tests the global role
itself instead of trusting that a global-role guard ran first.

auth/dependencies.py wraps these as FastAPI dependencies.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.models import Identity, IdentityInstitution
from core import errors
from identity.models import GlobalRole, InstitutionRole


def check_global_role(identity: Identity | None, allowed: Iterable[GlobalRole]) -> Identity:
    if identity is None:
        raise errors.Unauthenticated()
    if identity.global_role not in set(allowed):
        raise errors.Forbidden("Your role does not allow this action.")
    return identity


def check_institution_role(
    identity: Identity | None,
    allowed: Iterable[InstitutionRole],
    institution_id: int | None,
) -> IdentityInstitution | None:
    """Return the matching membership, or None for the platform-admin bypass."""
    if identity is None:
        raise errors.Unauthenticated()
    if identity.is_platform_admin:
        return None
    if institution_id is None:
        raise errors.MissingInstitutionId()
    membership = identity.membership(institution_id)
    if membership is None:
        raise errors.NotAMember()
    if membership.role not in set(allowed):
        raise errors.InsufficientInstitutionRole()
    return membership


def administered_institution_ids(identity: Identity) -> set[int]:
    """IDs of the institutions where the identity is INSTITUTION_ADMIN."""
    return {i.id for i in identity.institutions if i.role is InstitutionRole.INSTITUTION_ADMIN}
