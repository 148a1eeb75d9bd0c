"""
joydrop.errors — Structured Error Taxonomy
===========================================

Every failure surfaced by the services is a :class:`JoydropError`
subclass carrying three things callers can branch on without parsing
messages:

* ``category`` — ``not_found``, ``conflict``, ``invalid``,
  ``permission_denied`` or ``internal``.
* ``code`` — the specific reason (``slug_taken``, ``already_member``…).
* ``status_code`` — the HTTP status the API layer renders it with.

Validation errors are raised before any write.  ``internal`` errors
mean the transaction was rolled back and the caller may retry.
"""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # older Starlette
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class JoydropError(Exception):
    """Base class for all Joydrop service errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    category: str = "invalid"
    code: str = "error"
    message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# not_found
# ---------------------------------------------------------------------------
class AccountNotFound(JoydropError):
    status_code = status.HTTP_404_NOT_FOUND
    category = "not_found"
    code = "not_found"
    message = "Account not found"


# ---------------------------------------------------------------------------
# conflict
# ---------------------------------------------------------------------------
class ConflictError(JoydropError):
    status_code = status.HTTP_409_CONFLICT
    category = "conflict"
    code = "conflict"


class SlugTaken(ConflictError):
    code = "slug_taken"
    message = "Slug already taken"


class EmailTaken(ConflictError):
    code = "email_taken"
    message = "An account with this email already exists"


class DuplicateName(ConflictError):
    code = "duplicate_name"
    message = (
        "An organization with this name already exists. "
        "Please choose a different name."
    )


class AlreadyMember(ConflictError):
    code = "already_member"
    message = "User already belongs to an organization"


class IdempotencyConflict(ConflictError):
    """An idempotency key was reused for a different individual."""

    code = "idempotency_conflict"
    message = "Idempotency key already used for another request"


# ---------------------------------------------------------------------------
# invalid
# ---------------------------------------------------------------------------
class InvalidInput(JoydropError):
    status_code = _HTTP_422
    category = "invalid"
    code = "invalid_input"
    message = "Invalid input"


class InvalidSlug(InvalidInput):
    code = "invalid_format"
    message = "Invalid slug format"


class InvalidEmail(InvalidInput):
    code = "invalid_email"
    message = "Invalid email format"


class MissingField(InvalidInput):
    code = "missing_field"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Missing required field: {field}")


# ---------------------------------------------------------------------------
# permission_denied
# ---------------------------------------------------------------------------
class ConsentRequired(JoydropError):
    status_code = status.HTTP_403_FORBIDDEN
    category = "permission_denied"
    code = "consent_required"
    message = "User has not consented to join an organization"


# ---------------------------------------------------------------------------
# internal
# ---------------------------------------------------------------------------
class StorageError(JoydropError):
    """The transaction could not be committed; nothing was applied."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    category = "internal"
    code = "internal"
    message = "Storage failure, please retry"
