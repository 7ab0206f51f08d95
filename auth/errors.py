"""
auth/errors.py -- Typed failures raised by the token lifecycle core.

Every failure the core can produce has its own class so callers dispatch on
type, never on message text. Each class carries a stable machine-readable
``code`` and the HTTP ``status_code`` the request pipeline maps it to; the
pipeline (api/main.py) turns any AuthError into the ErrorResponse envelope.

Hierarchy:
  AuthError
    TokenVerificationError       -- signed credential failed a check
      InvalidSignature           -- tampered, wrong secret, or malformed
      TokenExpired               -- outside [nbf, exp]; carries parsed claims
      InvalidIssuer
      InvalidAudience
    NotFound                     -- secret / credential / user absent
    InvalidPasscode              -- activation second factor mismatch
    DuplicateKey                 -- store uniqueness constraint hit
    EditConflict                 -- optimistic-concurrency version mismatch
    StoreUnavailable             -- timeout or connectivity failure

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from auth.models import TokenClaims


class AuthError(Exception):
    """Base class for token lifecycle failures.

    ``field`` names the request field the failure belongs to, when there is
    one, so the pipeline can return a field-scoped validation message.
    """

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication failed."

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Signed credential verification
# ---------------------------------------------------------------------------


class TokenVerificationError(AuthError):
    status_code = 401
    code = "invalid_authentication_token"
    default_message = "Invalid or missing authentication token."


class InvalidSignature(TokenVerificationError):
    """Signature mismatch or a blob that does not parse as a signed credential."""


class TokenExpired(TokenVerificationError):
    """The credential is outside its validity window.

    The claims are attached because they did parse and verify: callers use the
    subject to clean up the dead credential's store record.
    """

    code = "expired_token"
    default_message = "Your token has expired, please try again."

    def __init__(self, claims: "TokenClaims", message: Optional[str] = None) -> None:
        super().__init__(message)
        self.claims = claims


class InvalidIssuer(TokenVerificationError):
    pass


class InvalidAudience(TokenVerificationError):
    pass


# ---------------------------------------------------------------------------
# Records and second factors
# ---------------------------------------------------------------------------


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "The requested resource could not be found."


class InvalidPasscode(AuthError):
    status_code = 422
    code = "failed_validation"
    default_message = "Invalid or expired passcode."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, field="passcode")


# ---------------------------------------------------------------------------
# Store classification
# ---------------------------------------------------------------------------


class DuplicateKey(AuthError):
    """A uniqueness constraint rejected an insert.

    ``constraint`` is the logical key that collided ("hash", "email", ...),
    resolved by the store from its own schema, not from driver error text.
    """

    status_code = 409
    code = "conflict"
    default_message = "Unable to create the record due to a conflict, please try again."

    def __init__(self, message: Optional[str] = None, *, constraint: Optional[str] = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class EditConflict(AuthError):
    status_code = 409
    code = "edit_conflict"
    default_message = "Unable to update the record due to an edit conflict, please try again."


class StoreUnavailable(AuthError):
    status_code = 500
    code = "server_error"
    default_message = "The server encountered a problem and could not process your request."


__all__ = [
    "AuthError",
    "TokenVerificationError",
    "InvalidSignature",
    "TokenExpired",
    "InvalidIssuer",
    "InvalidAudience",
    "NotFound",
    "InvalidPasscode",
    "DuplicateKey",
    "EditConflict",
    "StoreUnavailable",
]
