"""
identity/store.py -- SQLAlchemy Core persistence layer for users, institutions
and memberships.

Pattern: Repository + Data Mapper. IdentityStore is the repository; the
_row_to_* functions are the mappers (raw DB rows -> domain dataclasses in
identity/models.py). Route and dependency code never touches SQL directly.

Invariants enforced here, not in callers:
  - users.email is UNIQUE and always stored lower-cased, so lookups are
    case-insensitive. A duplicate insert/update raises errors.DuplicateEmail.
  - user_institutions has UNIQUE(user_id, institution_id). upsert_membership()
    creates or updates by that composite key; it never produces a second row.
  - create_user() with an institution writes the user and its initial
    membership in one transaction.
  - delete_user() removes the user's memberships in the same transaction.
  - delete_institution() refuses while any membership references it
    (errors.InstitutionInUse). The FK is also declared RESTRICT so a concurrent
    assignment cannot slip past the count check.

(name, territory_code) uniqueness for institutions is checked in code via
find_institution_by_name_and_code(), not by a DB constraint.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = IdentityStore()                               # SQLite default
    store = IdentityStore("postgresql://user:pw@host/db") # PostgreSQL
    user = store.create_user("a@b.ro", hash_password("x"), GlobalRole.STANDARD_USER)
    store.upsert_membership(user.id, institution.id, InstitutionRole.INSTITUTION_EDITOR)
    store.close()

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core import errors
from core.config import get_settings
from identity.models import (
    GlobalRole,
    Institution,
    InstitutionRole,
    InstitutionType,
    Membership,
    TerritoryLevel,
    User,
    UserWithMemberships,
)

logger = logging.getLogger("wasteadmin.identity")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased on write
    Column("password_hash", Text, nullable=False),
    Column("global_role", String(30), nullable=False, server_default=GlobalRole.STANDARD_USER.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_institutions = Table(
    "institutions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("type", String(40), nullable=False),
    Column("territory_level", String(20), nullable=False),
    Column("territory_code", String(20), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_memberships = Table(
    "user_institutions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("institution_id", Integer, ForeignKey("institutions.id", ondelete="RESTRICT"), nullable=False),
    Column("institution_role", String(30), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "institution_id", name="uq_user_institution"),
)

_USER_FIELDS = {"email", "password_hash", "global_role", "is_active"}
_INSTITUTION_FIELDS = {"name", "type", "territory_level", "territory_code", "is_active"}


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is OFF by default in SQLite.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _enum_value(value):
    """Return the raw string behind an Enum member; pass other values through."""
    return value.value if hasattr(value, "value") else value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for User, Institution and Membership entities."""

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # TestClient and uvicorn run sync handlers in a thread pool, so one
            # connection may be used from several threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database ping failed")
            return False
        return True

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[UserWithMemberships]:
        """Return every user with joined memberships, newest first.

        Two queries total: one for users, one for all memberships joined with
        their institutions, grouped in Python.
        """
        with self.engine.connect() as conn:
            user_rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
            membership_rows = conn.execute(_membership_with_institution_select()).fetchall()
        by_user: dict[int, list[Membership]] = {}
        for row in membership_rows:
            by_user.setdefault(row.user_id, []).append(_row_to_membership_with_institution(row))
        return [UserWithMemberships(user=_row_to_user(r), memberships=by_user.get(r.id, [])) for r in user_rows]

    def create_user(
        self,
        email: str,
        password_hash: str,
        global_role: GlobalRole = GlobalRole.STANDARD_USER,
        is_active: bool = True,
        institution_id: int | None = None,
        institution_role: InstitutionRole | None = None,
    ) -> User:
        """Insert a new user and return it with its assigned ID.

        With institution_id, the initial membership is written in the same
        transaction: either both rows exist afterwards or neither does.

        Raises errors.DuplicateEmail if the (case-folded) email already exists
        and errors.NotFound if institution_id does not exist.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=_normalize_email(email),
                        password_hash=password_hash,
                        global_role=_enum_value(global_role),
                        is_active=1 if is_active else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
                if institution_id is not None:
                    found = conn.execute(
                        select(_institutions.c.id).where(_institutions.c.id == institution_id)
                    ).first()
                    if found is None:
                        raise errors.NotFound("Institution not found.")
                    conn.execute(
                        _memberships.insert().values(
                            user_id=user_id,
                            institution_id=institution_id,
                            institution_role=_enum_value(institution_role or InstitutionRole.INSTITUTION_EDITOR),
                            created_at=now,
                        )
                    )
        except IntegrityError as exc:
            # The FK rejects a membership whose institution vanished mid-transaction.
            if institution_id is not None and self.find_institution_by_id(institution_id) is None:
                raise errors.NotFound("Institution not found.") from exc
            raise errors.DuplicateEmail() from exc
        logger.info("Created user id=%s role=%s", user_id, _enum_value(global_role))
        return self.find_user_by_id(user_id)

    def update_user(self, user_id: int, **fields) -> User:
        """Update mutable fields on an existing user and return the fresh record.

        Accepted fields: email, password_hash, global_role, is_active.
        Raises errors.NotFound if user_id does not exist and
        errors.DuplicateEmail if the new email belongs to someone else.
        """
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        values = {k: _enum_value(v) for k, v in fields.items()}
        if "email" in values:
            values["email"] = _normalize_email(values["email"])
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        values["updated_at"] = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        except IntegrityError as exc:
            raise errors.DuplicateEmail() from exc
        if result.rowcount == 0:
            raise errors.NotFound("User not found.")
        return self.find_user_by_id(user_id)

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and all of its memberships. Returns False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_memberships.delete().where(_memberships.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        if result.rowcount:
            logger.info("Deleted user id=%s", user_id)
        return result.rowcount > 0

    def count_active_platform_admins(self) -> int:
        """Return the number of active PLATFORM_ADMIN users (last-admin guard)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.global_role == GlobalRole.PLATFORM_ADMIN.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def list_memberships_for_user(self, user_id: int) -> list[Membership]:
        """Return the user's memberships joined with their institutions, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _membership_with_institution_select().where(_memberships.c.user_id == user_id)
            ).fetchall()
        return [_row_to_membership_with_institution(r) for r in rows]

    def list_memberships_for_institution(self, institution_id: int) -> list[Membership]:
        """Return an institution's memberships joined with their users, newest first."""
        stmt = (
            select(
                _memberships.c.user_id,
                _memberships.c.institution_id,
                _memberships.c.institution_role,
                _memberships.c.created_at.label("membership_created_at"),
                _users,
            )
            .join(_users, _users.c.id == _memberships.c.user_id)
            .where(_memberships.c.institution_id == institution_id)
            .order_by(_memberships.c.created_at.desc(), _memberships.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            Membership(
                user_id=r.user_id,
                institution_id=r.institution_id,
                role=InstitutionRole(r.institution_role),
                created_at=r.membership_created_at,
                user=_row_to_user(r),
            )
            for r in rows
        ]

    def get_membership(self, user_id: int, institution_id: int) -> Membership | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _memberships.select().where(
                    (_memberships.c.user_id == user_id) & (_memberships.c.institution_id == institution_id)
                )
            ).fetchone()
        if row is None:
            return None
        return Membership(
            user_id=row.user_id,
            institution_id=row.institution_id,
            role=InstitutionRole(row.institution_role),
            created_at=row.created_at,
        )

    def upsert_membership(self, user_id: int, institution_id: int, role: InstitutionRole) -> bool:
        """Create or update the membership for (user_id, institution_id).

        Returns True if a row was created, False if an existing row's role was
        updated. If a concurrent request inserts the same pair between our
        UPDATE and INSERT, the UNIQUE constraint rejects our INSERT and we fall
        back to updating the row that won.

        Raises errors.NotFound if the user or institution does not exist.
        """
        role_value = _enum_value(role)
        where = (_memberships.c.user_id == user_id) & (_memberships.c.institution_id == institution_id)
        with self.engine.begin() as conn:
            result = conn.execute(_memberships.update().where(where).values(institution_role=role_value))
        if result.rowcount > 0:
            return False
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _memberships.insert().values(
                        user_id=user_id,
                        institution_id=institution_id,
                        institution_role=role_value,
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            with self.engine.begin() as conn:
                result = conn.execute(_memberships.update().where(where).values(institution_role=role_value))
            if result.rowcount == 0:
                # Not a lost race -- the FK rejected an unknown user or institution.
                raise errors.NotFound("User or institution not found.") from exc
            return False
        logger.info("Assigned user id=%s to institution id=%s as %s", user_id, institution_id, role_value)
        return True

    def delete_membership(self, user_id: int, institution_id: int) -> bool:
        """Remove a membership. Returns False if it did not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _memberships.delete().where(
                    (_memberships.c.user_id == user_id) & (_memberships.c.institution_id == institution_id)
                )
            )
        return result.rowcount > 0

    def count_memberships_for_institution(self, institution_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_memberships).where(_memberships.c.institution_id == institution_id)
            ).scalar()
        return result or 0

    def count_memberships_by_institution(self) -> dict[int, int]:
        """Return {institution_id: member_count} in a single GROUP BY query.

        Institutions with no members are absent -- use .get(id, 0).
        """
        stmt = select(_memberships.c.institution_id, func.count().label("n")).group_by(_memberships.c.institution_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return {r.institution_id: r.n for r in rows}

    # ------------------------------------------------------------------
    # Institutions
    # ------------------------------------------------------------------

    def find_institution_by_id(self, institution_id: int) -> Institution | None:
        with self.engine.connect() as conn:
            row = conn.execute(_institutions.select().where(_institutions.c.id == institution_id)).fetchone()
        return _row_to_institution(row) if row is not None else None

    def find_institution_by_name_and_code(self, name: str, territory_code: str) -> Institution | None:
        """Exact (name, territory_code) lookup used for the duplicate check."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _institutions.select().where(
                    (_institutions.c.name == name) & (_institutions.c.territory_code == territory_code)
                )
            ).fetchone()
        return _row_to_institution(row) if row is not None else None

    def list_institutions(self, ids: Iterable[int] | None = None) -> list[Institution]:
        """Return institutions newest first, optionally restricted to the given IDs."""
        stmt = _institutions.select().order_by(_institutions.c.created_at.desc(), _institutions.c.id.desc())
        if ids is not None:
            stmt = stmt.where(_institutions.c.id.in_(list(ids)))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_institution(r) for r in rows]

    def create_institution(
        self,
        name: str,
        type: InstitutionType,
        territory_level: TerritoryLevel,
        territory_code: str,
        is_active: bool = True,
    ) -> Institution:
        """Insert a new institution.

        Raises errors.DuplicateInstitution if (name, territory_code) is taken.
        The check is not atomic; see the module docstring.
        """
        if self.find_institution_by_name_and_code(name, territory_code) is not None:
            raise errors.DuplicateInstitution()
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _institutions.insert().values(
                    name=name,
                    type=_enum_value(type),
                    territory_level=_enum_value(territory_level),
                    territory_code=territory_code,
                    is_active=1 if is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            institution_id = result.inserted_primary_key[0]
        logger.info("Created institution id=%s name=%r", institution_id, name)
        return self.find_institution_by_id(institution_id)

    def update_institution(self, institution_id: int, **fields) -> Institution:
        """Update mutable fields on an institution and return the fresh record.

        Accepted fields: name, type, territory_level, territory_code, is_active.
        Raises errors.NotFound if absent and errors.DuplicateInstitution if the
        resulting (name, territory_code) pair belongs to another institution.
        """
        unknown = set(fields) - _INSTITUTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown institution fields: {sorted(unknown)}")
        current = self.find_institution_by_id(institution_id)
        if current is None:
            raise errors.NotFound("Institution not found.")
        if "name" in fields or "territory_code" in fields:
            clash = self.find_institution_by_name_and_code(
                fields.get("name", current.name), fields.get("territory_code", current.territory_code)
            )
            if clash is not None and clash.id != institution_id:
                raise errors.DuplicateInstitution()
        values = {k: _enum_value(v) for k, v in fields.items()}
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(_institutions.update().where(_institutions.c.id == institution_id).values(**values))
        return self.find_institution_by_id(institution_id)

    def delete_institution(self, institution_id: int) -> bool:
        """Delete an institution with no members. Returns False if not found.

        Raises errors.InstitutionInUse while any membership references it.
        """
        try:
            with self.engine.begin() as conn:
                members = conn.execute(
                    select(func.count())
                    .select_from(_memberships)
                    .where(_memberships.c.institution_id == institution_id)
                ).scalar()
                if members:
                    raise errors.InstitutionInUse()
                result = conn.execute(_institutions.delete().where(_institutions.c.id == institution_id))
        except IntegrityError as exc:
            raise errors.InstitutionInUse() from exc
        if result.rowcount:
            logger.info("Deleted institution id=%s", institution_id)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Statistics (read-only projections)
    # ------------------------------------------------------------------

    def user_counts(self) -> dict:
        """Return {"total", "active", "by_role": {global_role: n}} across all users."""
        stmt = select(
            _users.c.global_role,
            func.count().label("n"),
            func.sum(_users.c.is_active).label("active"),
        ).group_by(_users.c.global_role)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        by_role = {role.value: 0 for role in GlobalRole}
        total = active = 0
        for r in rows:
            by_role[r.global_role] = r.n
            total += r.n
            active += r.active or 0
        return {"total": total, "active": active, "by_role": by_role}

    def institution_counts(self) -> dict:
        """Return {"total", "active", "by_type", "by_level"} across all institutions."""
        stmt = select(
            _institutions.c.type,
            _institutions.c.territory_level,
            func.count().label("n"),
            func.sum(_institutions.c.is_active).label("active"),
        ).group_by(_institutions.c.type, _institutions.c.territory_level)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        by_type = {t.value: 0 for t in InstitutionType}
        by_level = {lvl.value: 0 for lvl in TerritoryLevel}
        total = active = 0
        for r in rows:
            by_type[r.type] += r.n
            by_level[r.territory_level] += r.n
            total += r.n
            active += r.active or 0
        return {"total": total, "active": active, "by_type": by_type, "by_level": by_level}

    def institution_member_counts(self, institution_id: int) -> dict:
        """Return {"total", "active", "by_role": {institution_role: n}} for one institution."""
        stmt = (
            select(
                _memberships.c.institution_role,
                func.count().label("n"),
                func.sum(_users.c.is_active).label("active"),
            )
            .join(_users, _users.c.id == _memberships.c.user_id)
            .where(_memberships.c.institution_id == institution_id)
            .group_by(_memberships.c.institution_role)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        by_role = {role.value: 0 for role in InstitutionRole}
        total = active = 0
        for r in rows:
            by_role[r.institution_role] = r.n
            total += r.n
            active += r.active or 0
        return {"total": total, "active": active, "by_role": by_role}

    def recent_users(self, limit: int = 10, institution_id: int | None = None) -> list[dict]:
        """Return the most recently created users as plain dicts.

        Without institution_id: every user, each with the name of the first
        institution they joined (or None). With institution_id: only members
        of that institution, each with their role there.
        """
        if institution_id is None:
            first_institution = (
                select(_institutions.c.name)
                .join(_memberships, _memberships.c.institution_id == _institutions.c.id)
                .where(_memberships.c.user_id == _users.c.id)
                .order_by(_memberships.c.id)
                .limit(1)
                .scalar_subquery()
            )
            stmt = select(
                _users.c.id,
                _users.c.email,
                _users.c.global_role,
                _users.c.is_active,
                _users.c.created_at,
                first_institution.label("institution_name"),
            )
        else:
            stmt = (
                select(
                    _users.c.id,
                    _users.c.email,
                    _users.c.global_role,
                    _users.c.is_active,
                    _users.c.created_at,
                    _memberships.c.institution_role,
                )
                .join(_memberships, _memberships.c.user_id == _users.c.id)
                .where(_memberships.c.institution_id == institution_id)
            )
        stmt = stmt.order_by(_users.c.created_at.desc(), _users.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        result = []
        for r in rows:
            item = dict(r._mapping)
            item["is_active"] = bool(item["is_active"])
            result.append(item)
        return result

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Query builders
# ---------------------------------------------------------------------------


def _membership_with_institution_select():
    return (
        select(
            _memberships.c.user_id,
            _memberships.c.institution_id,
            _memberships.c.institution_role,
            _memberships.c.created_at.label("membership_created_at"),
            _institutions,
        )
        .join(_institutions, _institutions.c.id == _memberships.c.institution_id)
        .order_by(_memberships.c.id)
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        global_role=GlobalRole(row.global_role),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_institution(row) -> Institution:
    return Institution(
        id=row.id,
        name=row.name,
        type=InstitutionType(row.type),
        territory_level=TerritoryLevel(row.territory_level),
        territory_code=row.territory_code,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_membership_with_institution(row) -> Membership:
    return Membership(
        user_id=row.user_id,
        institution_id=row.institution_id,
        role=InstitutionRole(row.institution_role),
        created_at=row.membership_created_at,
        institution=_row_to_institution(row),
    )
