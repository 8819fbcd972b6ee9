"""
core/errors.py -- Application error taxonomy.

Every failure a use case can report is an AppError subclass carrying the HTTP
status, a machine-readable code and a default human-readable message. Route
handlers and dependencies raise these; api/main.py renders them into the
standard error envelope. Repository integrity errors are translated into
Conflict subclasses before they leave identity/store.py.

Import as a module (``from core import errors``) -- errors.ValidationError
would otherwise shadow pydantic's ValidationError.

Layer rule: core/ is the kernel. No imports from api/, auth/ or identity/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for all expected failures."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Top-level kinds
# ---------------------------------------------------------------------------


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"
    message = "Authentication required."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."


class Internal(AppError):
    pass


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------


class MissingToken(Unauthenticated):
    code = "missing_token"
    message = "Access token is missing."


class TokenInvalid(Forbidden):
    code = "token_invalid"
    message = "Token is invalid."


class TokenExpired(Forbidden):
    code = "token_expired"
    message = "Token has expired."


class UserNotFound(Forbidden):
    code = "user_not_found"
    message = "User not found or inactive."


# ---------------------------------------------------------------------------
# Session use cases
# ---------------------------------------------------------------------------


class InvalidCredentials(Unauthenticated):
    code = "invalid_credentials"
    message = "Invalid email or password."


class AccountDisabled(Forbidden):
    code = "account_disabled"
    message = "This account is disabled."


class InvalidRefreshToken(Forbidden):
    code = "invalid_refresh_token"
    message = "Refresh token is invalid."


class ExpiredRefreshToken(Forbidden):
    code = "expired_refresh_token"
    message = "Refresh token has expired."


class AccountInvalid(Forbidden):
    code = "account_invalid"
    message = "User is invalid or inactive."


# ---------------------------------------------------------------------------
# Institution guard
# ---------------------------------------------------------------------------


class MissingInstitutionId(ValidationError):
    code = "missing_institution_id"
    message = "Institution ID is required."


class NotAMember(Forbidden):
    code = "not_a_member"
    message = "You are not a member of this institution."


class InsufficientInstitutionRole(Forbidden):
    code = "insufficient_institution_role"
    message = "Your institution role does not allow this action."


# ---------------------------------------------------------------------------
# Repository conflicts
# ---------------------------------------------------------------------------


class DuplicateEmail(Conflict):
    code = "duplicate_email"
    message = "A user with that email already exists."


class DuplicateInstitution(Conflict):
    code = "duplicate_institution"
    message = "An institution with this name and territory code already exists."


class InstitutionInUse(Conflict):
    # Rejected deletions are reported as 400 to clients, not 409.
    status_code = 400
    code = "institution_in_use"
    message = "Cannot delete an institution that still has members. Remove its users first."


# ---------------------------------------------------------------------------
# Account management rules
# ---------------------------------------------------------------------------


class SelfProtection(ValidationError):
    code = "self_protection"
    message = "You cannot perform this action on your own account."


class LastPlatformAdmin(ValidationError):
    code = "last_platform_admin"
    message = "Cannot demote or deactivate the last active platform admin."


class NoChanges(ValidationError):
    code = "no_changes"
    message = "No fields to update."
