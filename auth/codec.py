"""
auth/codec.py -- Signing and verification of session credentials.

A TokenCodec is bound to exactly one HS256 secret and one service identity.
The application builds two: one for access credentials and one for refresh
credentials, so a leaked access secret cannot mint refresh tokens (and the
other way round).

Wire format: a standard JWT (three dot-joined base64url segments) produced by
python-jose. Claims: sub, iss, aud (one-element list holding the service
identity), iat, nbf, exp as integer epoch seconds, and a random jti.

Verification order:
  1. signature and shape   -> InvalidSignature
  2. nbf <= now <= exp     -> TokenExpired (claims attached)
  3. iss == identity       -> InvalidIssuer
  4. identity in aud       -> InvalidAudience

jose's own time and audience checks are switched off and done here instead,
against an injectable "now". That keeps the error taxonomy exact (jose folds
nbf, iss and aud failures into one JWTClaimsError) and makes the boundaries
testable without sleeping.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from auth.errors import InvalidAudience, InvalidIssuer, InvalidSignature, TokenExpired
from auth.models import TokenClaims

_ALGORITHM = "HS256"

_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_aud": False,
    "verify_iss": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_exp": False,
    "verify_sub": True,
    "verify_jti": True,
}


def _epoch(moment: Optional[datetime]) -> int:
    if moment is None:
        moment = datetime.now(timezone.utc)
    return int(moment.timestamp())


class TokenCodec:
    """Stateless signer/verifier for one secret.

    Usage:
        codec = TokenCodec(secret, "https://api.example.com")
        token = codec.sign(codec.new_claims(user_id, ttl_seconds=900))
        claims = codec.verify(token)
    """

    def __init__(self, secret: str, identity: str) -> None:
        if not secret:
            raise ValueError("TokenCodec requires a non-empty secret")
        self._secret = secret
        self.identity = identity

    def new_claims(self, subject: str, ttl_seconds: int, now: Optional[datetime] = None) -> TokenClaims:
        """Build claims for a credential issued by this service, valid from now for ttl_seconds."""
        issued = _epoch(now)
        return TokenClaims(
            subject=subject,
            issuer=self.identity,
            audience=(self.identity,),
            issued_at=issued,
            not_before=issued,
            expires_at=issued + ttl_seconds,
            token_id=secrets.token_hex(16),
        )

    def sign(self, claims: TokenClaims) -> str:
        return jwt.encode(claims.to_payload(), self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str, now: Optional[datetime] = None) -> TokenClaims:
        """Return the claims of a credential this service signed and that is currently valid.

        Raises InvalidSignature, TokenExpired, InvalidIssuer or InvalidAudience.
        Every check runs; none is skipped when an earlier one passes.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except (JWTError, AttributeError, TypeError, ValueError) as exc:
            raise InvalidSignature() from exc

        claims = _claims_from_payload(payload)

        current = _epoch(now)
        if not claims.not_before <= current <= claims.expires_at:
            raise TokenExpired(claims)
        if claims.issuer != self.identity:
            raise InvalidIssuer()
        if self.identity not in claims.audience:
            raise InvalidAudience()
        return claims


def _claims_from_payload(payload: dict[str, Any]) -> TokenClaims:
    """Map a decoded payload onto TokenClaims.

    A correctly signed payload missing a required claim, or carrying one of
    the wrong type, is treated the same as a bad signature: it cannot have come
    from this service's sign().
    """
    try:
        audience = payload["aud"]
        if isinstance(audience, str):
            audience = [audience]
        return TokenClaims(
            subject=str(payload["sub"]),
            issuer=str(payload["iss"]),
            audience=tuple(str(a) for a in audience),
            issued_at=_as_int(payload["iat"]),
            not_before=_as_int(payload["nbf"]),
            expires_at=_as_int(payload["exp"]),
            token_id=payload.get("jti"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidSignature() from exc


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected numeric timestamp, got {type(value).__name__}")
    return int(value)
