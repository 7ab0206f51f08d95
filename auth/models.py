"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
issuer do the work; these types own the domain shape.

All timestamps are timezone-aware UTC datetimes. Stores convert to and from
their own column representation.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


@dataclass
class User:
    """An account in the user directory.

    version is the optimistic-concurrency counter. UserStore.update() only
    succeeds when the caller's version matches the stored one and bumps it on
    success, so a stale copy can never overwrite a newer write.

    hashed_password is None for accounts created through an external identity
    provider (oauth_issuer / oauth_subject set instead).
    """

    username: str
    email: str
    id: Optional[str] = None  # UUID string, assigned by UserStore.insert()
    hashed_password: Optional[str] = None
    activated: bool = False
    version: int = 1
    created_at: Optional[str] = None
    oauth_issuer: Optional[str] = None
    oauth_subject: Optional[str] = None


class SecretPurpose(str, Enum):
    ACTIVATION = "activation"
    PASSWORD_RESET = "password_reset"


@dataclass
class OneTimeSecret:
    """A single-use secret proving possession of an out-of-band channel.

    plaintext is only populated on the issuance path -- it is disclosed once to
    the caller and never persisted. hash is what the store keys on. passcode
    is the activation second factor and is None for password resets.
    """

    hash: bytes
    user_id: str
    expires_at: datetime
    purpose: SecretPurpose
    plaintext: Optional[str] = None
    passcode: Optional[str] = None


@dataclass
class RefreshCredential:
    token: str
    user_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    """Claims carried by a signed access or refresh credential.

    Timestamps are integer seconds since the epoch, as they appear on the wire.
    token_id (jti) makes two credentials minted in the same second distinct.
    """

    subject: str
    issuer: str
    audience: tuple[str, ...]
    issued_at: int
    not_before: int
    expires_at: int
    token_id: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sub": self.subject,
            "iss": self.issuer,
            "aud": list(self.audience),
            "iat": self.issued_at,
            "nbf": self.not_before,
            "exp": self.expires_at,
        }
        if self.token_id is not None:
            payload["jti"] = self.token_id
        return payload


@dataclass(frozen=True)
class IssuedSecret:
    """What the issuer hands back after creating a one-time secret.

    The plaintext and passcode exist only here and in the notification sent to
    the user; the store keeps the hash.
    """

    plaintext: str
    user_id: str
    expires_at: datetime
    purpose: SecretPurpose
    passcode: Optional[str] = None


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    refresh_ttl_seconds: int


class VerdictKind(str, Enum):
    ANONYMOUS = "anonymous"
    REJECTED = "rejected"
    AUTHENTICATED = "authenticated"


class RejectReason(str, Enum):
    INVALID_AUTHENTICATION_TOKEN = "invalid_authentication_token"
    EXPIRED_TOKEN = "expired_token"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class AuthVerdict:
    """Outcome of authenticating one request. Never persisted."""

    kind: VerdictKind
    user: Optional[User] = None
    reason: Optional[RejectReason] = None

    @classmethod
    def anonymous(cls) -> "AuthVerdict":
        return cls(VerdictKind.ANONYMOUS)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "AuthVerdict":
        return cls(VerdictKind.REJECTED, reason=reason)

    @classmethod
    def authenticated(cls, user: User) -> "AuthVerdict":
        return cls(VerdictKind.AUTHENTICATED, user=user)

    @property
    def is_anonymous(self) -> bool:
        return self.kind is VerdictKind.ANONYMOUS

    @property
    def is_rejected(self) -> bool:
        return self.kind is VerdictKind.REJECTED

    @property
    def is_authenticated(self) -> bool:
        return self.kind is VerdictKind.AUTHENTICATED


@dataclass(frozen=True)
class TokenConfig:
    """Everything the token core needs, injected at construction.

    The core never reads application settings itself. api/main.py builds one
    of these from core.config.Settings via from_settings() at startup, and
    tests build them directly.
    """

    access_secret: str
    refresh_secret: str
    identity: str
    access_ttl_seconds: int = 15 * 60
    refresh_ttl_seconds: int = 7 * 24 * 3600
    activation_ttl_seconds: int = 24 * 3600
    reset_ttl_seconds: int = 24 * 3600
    transport: str = "header"  # "header" or "cookie"
    access_cookie_name: str = "access_token"
    revoke_refresh_on_access_expiry: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "TokenConfig":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            identity=settings.service_identity,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            activation_ttl_seconds=settings.activation_token_ttl_seconds,
            reset_ttl_seconds=settings.reset_token_ttl_seconds,
            transport=settings.auth_transport,
            revoke_refresh_on_access_expiry=settings.revoke_refresh_on_access_expiry,
        )
