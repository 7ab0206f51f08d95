"""
API request and response models for the Offerland auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"

# Opaque one-time secret: 16 bytes, unpadded base-32.
TOKEN_PATTERN = r"^[A-Z2-7]{26}$"
PASSCODE_PATTERN = r"^[0-9]{6}$"

# bcrypt truncates beyond 72 bytes; refuse rather than truncate silently.
PASSWORD_MIN = 8
PASSWORD_MAX = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class SignupRequest(_EmailBody):
    """Request body for POST /api/v1/auth/signup."""

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


class ActivateRequest(BaseModel):
    """Request body for POST /api/v1/auth/activate/{token}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    passcode: str = Field(pattern=PASSCODE_PATTERN)


class EmailRequest(_EmailBody):
    """Request body for POST /auth/activation/resend and /auth/forgot-password."""


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password/{token}."""

    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Email, password hash and version never leave the server."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    activated: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            user_id=user.id,
            username=user.username,
            activated=user.activated,
            created_at=user.created_at or "",
        )


class SignupResponse(BaseModel):
    """Response for POST /api/v1/auth/signup.

    activation_token is the opaque secret for the activation link. The
    passcode is only ever sent by mail.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    activation_token: str
    expires_at: str


class TokenResponse(BaseModel):
    """Access credential returned by login, activation and refresh.

    The refresh credential is never in the body -- it travels only in the
    HttpOnly refresh cookie.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Optional[UserResponse] = None


class WhoAmIResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: Optional[UserResponse] = None


class ExistsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    exists: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    code is the error kind (e.g. "expired_token", "edit_conflict"); field is
    set when the error belongs to one request field.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", "degraded" otherwise.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
