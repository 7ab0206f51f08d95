"""
auth/middleware.py -- Request-time credential decision procedure.

Authenticator.authenticate() turns the credential a request carries into an
AuthVerdict. It holds no per-request state and never raises for a client
problem; every outcome is a verdict:

  no credential                          -> Anonymous
  wrong scheme / shape                   -> Rejected(INVALID_AUTHENTICATION_TOKEN)
  bad signature, issuer or audience      -> Rejected(INVALID_AUTHENTICATION_TOKEN)
  expired                                -> Rejected(EXPIRED_TOKEN)
                                            (+ refresh revocation when configured)
  subject is not a UUID                  -> Rejected(SERVER_ERROR)
  user deleted since issuance            -> Rejected(INVALID_AUTHENTICATION_TOKEN)
  store failure                          -> Rejected(SERVER_ERROR)
  otherwise                              -> Authenticated(user)

The FastAPI wiring (reading headers/cookies off the Request, raising HTTP
errors) lives in auth/dependencies.py; this module only sees plain strings,
which keeps it testable without an ASGI stack.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Optional

from auth.codec import TokenCodec
from auth.errors import StoreUnavailable, TokenExpired, TokenVerificationError
from auth.models import AuthVerdict, RejectReason, TokenConfig
from auth.store import UserStore
from auth.token_store import TokenStore

logger = logging.getLogger("offerland.auth.middleware")

_BEARER = "Bearer"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _MalformedCredential(Exception):
    pass


class Authenticator:
    """Resolve an inbound access credential to an AuthVerdict.

    ``config.transport`` selects where the credential is read from: the
    Authorization header ("header") or the access cookie ("cookie").
    """

    def __init__(
        self,
        config: TokenConfig,
        user_store: UserStore,
        token_store: TokenStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.users = user_store
        self.tokens = token_store
        self.codec = TokenCodec(config.access_secret, config.identity)
        self._clock = clock

    def extract(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> Optional[str]:
        """Return the raw credential, None when absent.

        Raises _MalformedCredential for a header that is present but not
        exactly "Bearer <token>".
        """
        if self.config.transport == "cookie":
            return cookies.get(self.config.access_cookie_name) or None

        header = headers.get("authorization") or headers.get("Authorization")
        if not header:
            return None
        parts = header.split(" ")
        if len(parts) != 2 or parts[0] != _BEARER or not parts[1]:
            raise _MalformedCredential()
        return parts[1]

    def authenticate(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> AuthVerdict:
        try:
            token = self.extract(headers, cookies)
        except _MalformedCredential:
            return AuthVerdict.rejected(RejectReason.INVALID_AUTHENTICATION_TOKEN)
        if token is None:
            return AuthVerdict.anonymous()
        return self.authenticate_token(token)

    def authenticate_token(self, token: str) -> AuthVerdict:
        try:
            claims = self.codec.verify(token, self._clock())
        except TokenExpired as exc:
            if self.config.revoke_refresh_on_access_expiry:
                self._revoke_refresh(exc.claims.subject)
            return AuthVerdict.rejected(RejectReason.EXPIRED_TOKEN)
        except TokenVerificationError as exc:
            logger.debug("Access credential rejected: %s", type(exc).__name__)
            return AuthVerdict.rejected(RejectReason.INVALID_AUTHENTICATION_TOKEN)

        try:
            user_id = str(uuid.UUID(claims.subject))
        except ValueError:
            # Only this service signs with the access secret, so a bad
            # subject here is our own bug, not the client's.
            logger.error("Access credential carries malformed subject %r", claims.subject)
            return AuthVerdict.rejected(RejectReason.SERVER_ERROR)

        try:
            user = self.users.get_by_id(user_id)
        except StoreUnavailable:
            logger.error("User lookup failed while authenticating user %s", user_id)
            return AuthVerdict.rejected(RejectReason.SERVER_ERROR)
        if user is None:
            return AuthVerdict.rejected(RejectReason.INVALID_AUTHENTICATION_TOKEN)
        return AuthVerdict.authenticated(user)

    def _revoke_refresh(self, subject: str) -> None:
        try:
            removed = self.tokens.delete_refresh_credentials_for_user(subject)
        except StoreUnavailable:
            logger.error("Could not revoke refresh credentials of user %s after access expiry", subject)
            return
        if removed:
            logger.info("Access expiry revoked %d refresh credential(s) of user %s", removed, subject)
