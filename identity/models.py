"""
identity/models.py -- Domain dataclasses and shared enums for users, institutions
and memberships.

Pattern: Data class (pure data container, zero logic). Stores and routes do the
work. The enums below are the ONLY definition of the role / institution-type /
territory-level vocabularies -- api/models.py and identity/store.py both import
them, so creation and update paths cannot drift apart.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class GlobalRole(str, Enum):
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    REGULATOR_VIEWER = "REGULATOR_VIEWER"
    STANDARD_USER = "STANDARD_USER"


class InstitutionRole(str, Enum):
    INSTITUTION_ADMIN = "INSTITUTION_ADMIN"
    INSTITUTION_EDITOR = "INSTITUTION_EDITOR"


class InstitutionType(str, Enum):
    PRIMARIE_SECTOR = "PRIMARIE_SECTOR"
    PMB = "PMB"
    OPERATOR_SALUBRIZARE = "OPERATOR_SALUBRIZARE"
    MINISTER_MEDIU = "MINISTER_MEDIU"
    GARDA_MEDIU = "GARDA_MEDIU"
    AGENTIE_MEDIU = "AGENTIE_MEDIU"


class TerritoryLevel(str, Enum):
    SECTOR = "SECTOR"
    MUNICIPIU = "MUNICIPIU"
    JUDET = "JUDET"
    NATIONAL = "NATIONAL"


# Row IDs are signed 64-bit integers in both SQLite and PostgreSQL.
MAX_ID = 2**63 - 1


@dataclass
class User:
    """A platform account.

    email is always stored case-folded; the repository lower-cases on write and
    on lookup. password_hash is an opaque bcrypt string and must never be
    serialized to a client.

    id is None before the record is written to the database.
    """

    email: str
    password_hash: str
    global_role: GlobalRole = GlobalRole.STANDARD_USER
    is_active: bool = True
    id: int | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Institution:
    """A municipal or regulatory body. (name, territory_code) is unique in practice."""

    name: str
    type: InstitutionType
    territory_level: TerritoryLevel
    territory_code: str
    is_active: bool = True
    id: int | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Membership:
    """UserInstitution join row: one user, one institution, one institution role.

    institution / user are populated only by the joined read methods
    (list_memberships_for_user / list_memberships_for_institution).
    """

    user_id: int
    institution_id: int
    role: InstitutionRole
    created_at: str = ""
    institution: Institution | None = None
    user: User | None = None


@dataclass
class UserWithMemberships:
    """A user together with its joined memberships -- the shape most reads return."""

    user: User
    memberships: list[Membership] = field(default_factory=list)
