"""
auth/issuer.py -- Issuance and consumption flows for every credential type.

TokenIssuer ties the secret generator, the token store, the two codecs and the
user directory together. Each public method is one flow:

  issue_activation   Pending  -> Issued     opaque secret + passcode
  activate           Issued   -> Consumed   needs secret AND passcode
  issue_password_reset / reset_password     same shape, no passcode
  issue_session                             access + refresh pair
  refresh_session                           verify, replay check, rotate
  logout                                    drop refresh credentials

Failure rules:
  - A failed check (unknown/expired secret, wrong passcode) never deletes
    anything. The secret stays usable until it expires or succeeds.
  - An EditConflict while writing the user back invalidates ALL outstanding
    secrets of that purpose for the user before it propagates, so nothing can
    be replayed against the stale version.
  - Success deletes ALL secrets of that purpose for the user, so older links
    (a second "resend" mail, an earlier reset mail) stop working too.
  - DuplicateKey on a new secret is a hash collision: retried with a fresh
    secret, never surfaced unless every attempt collides.

Session rotation happens on issue, not only on use: issue_session() replaces
any refresh credential the user already holds, in one store transaction.

Layer rule: no imports from api/ or core/. Configuration arrives as TokenConfig.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.codec import TokenCodec
from auth.errors import DuplicateKey, EditConflict, InvalidPasscode, NotFound, TokenExpired
from auth.generator import new_opaque_secret, new_passcode
from auth.models import (
    IssuedSecret,
    OneTimeSecret,
    RefreshCredential,
    SecretPurpose,
    SessionTokens,
    TokenConfig,
    User,
)
from auth.passwords import hash_password
from auth.store import UserStore
from auth.token_store import TokenStore

logger = logging.getLogger("offerland.auth.issuer")

_MAX_SECRET_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_epoch(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class TokenIssuer:
    def __init__(
        self,
        config: TokenConfig,
        token_store: TokenStore,
        user_store: UserStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.tokens = token_store
        self.users = user_store
        self.access_codec = TokenCodec(config.access_secret, config.identity)
        self.refresh_codec = TokenCodec(config.refresh_secret, config.identity)
        self._clock = clock

    # ------------------------------------------------------------------
    # One-time secrets
    # ------------------------------------------------------------------

    def _issue_secret(self, user_id: str, purpose: SecretPurpose, ttl_seconds: int) -> IssuedSecret:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        passcode = new_passcode() if purpose is SecretPurpose.ACTIVATION else None
        for attempt in range(1, _MAX_SECRET_ATTEMPTS + 1):
            plaintext, digest = new_opaque_secret()
            try:
                self.tokens.put_one_time_secret(
                    OneTimeSecret(
                        hash=digest,
                        user_id=user_id,
                        expires_at=expires_at,
                        purpose=purpose,
                        passcode=passcode,
                    )
                )
            except DuplicateKey:
                logger.warning("Hash collision on %s secret (attempt %d), regenerating", purpose.value, attempt)
                if attempt == _MAX_SECRET_ATTEMPTS:
                    raise
                continue
            logger.info("Issued %s secret for user %s", purpose.value, user_id)
            return IssuedSecret(
                plaintext=plaintext,
                user_id=user_id,
                expires_at=expires_at,
                purpose=purpose,
                passcode=passcode,
            )
        raise AssertionError("unreachable")  # pragma: no cover

    def issue_activation(self, user_id: str) -> IssuedSecret:
        """Create an activation secret and passcode for ``user_id``.

        Earlier activation secrets for the same user remain valid; each one
        can be used independently until one succeeds.
        """
        return self._issue_secret(user_id, SecretPurpose.ACTIVATION, self.config.activation_ttl_seconds)

    def issue_password_reset(self, user_id: str) -> IssuedSecret:
        return self._issue_secret(user_id, SecretPurpose.PASSWORD_RESET, self.config.reset_ttl_seconds)

    def activate(self, plaintext: str, passcode: str) -> User:
        """Activate the account that owns ``plaintext`` if ``passcode`` matches.

        Raises:
            NotFound:        unknown or expired secret, or owner deleted.
            InvalidPasscode: secret valid but passcode wrong (secret kept).
            EditConflict:    the user changed underneath us; every activation
                             secret of the user has been invalidated.
        """
        secret = self.tokens.get_one_time_secret(plaintext, SecretPurpose.ACTIVATION)
        if not hmac.compare_digest(secret.passcode.encode("utf-8"), passcode.encode("utf-8")):
            logger.info("Wrong activation passcode for user %s", secret.user_id)
            raise InvalidPasscode()

        user = self.users.get_by_id(secret.user_id)
        if user is None:
            raise NotFound("Invalid or expired token.", field="token")

        if not user.activated:
            user.activated = True
            self._write_back(user, SecretPurpose.ACTIVATION)
        self.tokens.delete_one_time_secrets_for_user(user.id, SecretPurpose.ACTIVATION)
        logger.info("Activated user %s", user.id)
        return user

    def reset_password(self, plaintext: str, new_password: str) -> User:
        """Set a new password for the owner of a reset secret.

        All reset secrets of the user and all of their refresh credentials
        are deleted on success, so older reset links and existing sessions
        stop working.
        """
        secret = self.tokens.get_one_time_secret(plaintext, SecretPurpose.PASSWORD_RESET)
        user = self.users.get_by_id(secret.user_id)
        if user is None:
            raise NotFound("Invalid or expired token.", field="token")

        user.hashed_password = hash_password(new_password)
        self._write_back(user, SecretPurpose.PASSWORD_RESET)
        self.tokens.delete_one_time_secrets_for_user(user.id, SecretPurpose.PASSWORD_RESET)
        self.tokens.delete_refresh_credentials_for_user(user.id)
        logger.info("Password reset for user %s", user.id)
        return user

    def _write_back(self, user: User, purpose: SecretPurpose) -> None:
        try:
            self.users.update(user)
        except EditConflict:
            removed = self.tokens.delete_one_time_secrets_for_user(user.id, purpose)
            logger.warning(
                "Edit conflict on user %s during %s; invalidated %d outstanding secret(s)",
                user.id,
                purpose.value,
                removed,
            )
            raise

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issue_session(self, user_id: str) -> SessionTokens:
        """Mint an access + refresh pair, replacing the user's previous refresh credential."""
        now = self._clock()
        access_claims = self.access_codec.new_claims(user_id, self.config.access_ttl_seconds, now)
        refresh_claims = self.refresh_codec.new_claims(user_id, self.config.refresh_ttl_seconds, now)
        access_token = self.access_codec.sign(access_claims)
        refresh_token = self.refresh_codec.sign(refresh_claims)

        self.tokens.rotate_refresh_credential(
            RefreshCredential(
                token=refresh_token,
                user_id=user_id,
                issued_at=_from_epoch(refresh_claims.issued_at),
                expires_at=_from_epoch(refresh_claims.expires_at),
            )
        )
        return SessionTokens(
            access_token=access_token,
            access_expires_at=_from_epoch(access_claims.expires_at),
            refresh_token=refresh_token,
            refresh_expires_at=_from_epoch(refresh_claims.expires_at),
            refresh_ttl_seconds=self.config.refresh_ttl_seconds,
        )

    def refresh_session(self, refresh_token: str) -> SessionTokens:
        """Exchange a refresh credential for a brand-new pair.

        Raises:
            TokenVerificationError subclasses: bad signature or claims. An
                expired credential is also deleted from the store first.
            NotFound: the credential verifies but its store record is gone
                (rotated, revoked, or the user was deleted) -- replay.
        """
        try:
            claims = self.refresh_codec.verify(refresh_token, self._clock())
        except TokenExpired:
            self.tokens.delete_refresh_credential(refresh_token)
            logger.info("Deleted expired refresh credential")
            raise

        owner = self.tokens.get_refresh_owner(refresh_token)
        if owner != claims.subject:
            logger.error("Refresh credential subject %s does not match stored owner %s", claims.subject, owner)
            self.tokens.delete_refresh_credential(refresh_token)
            raise NotFound("Refresh credential not found.")
        if self.users.get_by_id(owner) is None:
            self.tokens.delete_refresh_credentials_for_user(owner)
            raise NotFound("Refresh credential not found.")
        return self.issue_session(owner)

    def logout(self, user_id: str) -> int:
        """Revoke every refresh credential of ``user_id``. Returns how many were removed."""
        removed = self.tokens.delete_refresh_credentials_for_user(user_id)
        logger.info("Logged out user %s (%d refresh credential(s) revoked)", user_id, removed)
        return removed
