"""
auth/token_store.py -- Persistence for one-time secrets and refresh credentials.

Pattern: Repository + Data Mapper (same as auth/store.py). TokenStore is the
only code that mutates the token tables.

Tables:
  activation_tokens  hash (PK), user_id, passcode, expiry
  reset_tokens       hash (PK), user_id, expiry
  refresh_tokens     token (UNIQUE), user_id, issued_at, expiry

One-time secrets are keyed by SHA-256(plaintext); the plaintext is never
stored. Expiry is an epoch-seconds REAL column so "expiry > now" is a plain
numeric comparison on every backend.

Expired rows are not swept. Lookups filter them out, and they disappear the
next time the owner's secrets are deleted in bulk. Nothing here deletes a
record as a side effect of a failed check: get/validate are pure reads and
every delete is an explicit call, so a user can retry within the expiry
window and a transient failure between "validate" and "delete" can be retried
step by step.

Refresh rotation: rotate_refresh_credential() deletes the user's existing
credential and inserts the new one in ONE transaction. A crash can therefore
never leave the user with zero valid credentials (spurious logout) or two.
No in-process lock is taken -- the store's uniqueness constraints and the
transaction are the only coordination, so several API instances can share
one database.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Column, Float, LargeBinary, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.errors import NotFound
from auth.generator import hash_secret
from auth.models import OneTimeSecret, RefreshCredential, SecretPurpose
from auth.store import DEFAULT_TIMEOUT_SECONDS, create_store_engine, store_transaction

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_activation_tokens = Table(
    "activation_tokens",
    _metadata,
    Column("hash", LargeBinary(32), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("passcode", String(6), nullable=False),
    Column("expiry", Float, nullable=False),
)

_reset_tokens = Table(
    "reset_tokens",
    _metadata,
    Column("hash", LargeBinary(32), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("expiry", Float, nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("token", Text, nullable=False, unique=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("issued_at", Float, nullable=False),
    Column("expiry", Float, nullable=False),
)

_SECRET_TABLES = {
    SecretPurpose.ACTIVATION: _activation_tokens,
    SecretPurpose.PASSWORD_RESET: _reset_tokens,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TokenStore:
    """Repository for activation/reset secrets and refresh credentials.

    ``clock`` returns the current aware UTC datetime; tests pass a fake one to
    move across expiry boundaries without sleeping.
    """

    def __init__(
        self,
        db_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine: Engine = create_store_engine(db_url, timeout)
        self._clock = clock
        _metadata.create_all(self.engine)

    def _now(self) -> float:
        return self._clock().timestamp()

    # ------------------------------------------------------------------
    # One-time secrets
    # ------------------------------------------------------------------

    def put_one_time_secret(self, secret: OneTimeSecret) -> None:
        """Insert a secret into its purpose's table.

        Raises DuplicateKey(constraint="hash") if the hash already exists.
        With 128-bit secrets that means a CSPRNG collision; the issuer
        retries with a fresh secret.
        """
        table = _SECRET_TABLES[secret.purpose]
        values = {
            "hash": secret.hash,
            "user_id": secret.user_id,
            "expiry": secret.expires_at.timestamp(),
        }
        if secret.purpose is SecretPurpose.ACTIVATION:
            if not secret.passcode:
                raise ValueError("activation secrets require a passcode")
            values["passcode"] = secret.passcode
        with store_transaction(self.engine, "put_one_time_secret", constraint="hash") as conn:
            conn.execute(table.insert().values(**values))

    def get_one_time_secret(self, plaintext: str, purpose: SecretPurpose) -> OneTimeSecret:
        """Return the unexpired secret matching ``plaintext``.

        Raises NotFound when no record has hash(plaintext) or it has expired.
        Does not delete anything -- consumption is completed by an explicit
        delete_one_time_secret() / delete_one_time_secrets_for_user().
        """
        table = _SECRET_TABLES[purpose]
        with store_transaction(self.engine, "get_one_time_secret") as conn:
            row = conn.execute(
                table.select().where((table.c.hash == hash_secret(plaintext)) & (table.c.expiry > self._now()))
            ).fetchone()
        if row is None:
            raise NotFound("Invalid or expired token.", field="token")
        return OneTimeSecret(
            hash=bytes(row.hash),
            user_id=row.user_id,
            expires_at=_from_epoch(row.expiry),
            purpose=purpose,
            passcode=getattr(row, "passcode", None),
        )

    def validate_passcode(self, plaintext: str, passcode: str) -> bool:
        """Return whether ``passcode`` matches the unexpired activation secret.

        Raises NotFound when the secret itself is absent or expired. A False
        result leaves the record untouched.
        """
        secret = self.get_one_time_secret(plaintext, SecretPurpose.ACTIVATION)
        return hmac.compare_digest(secret.passcode.encode("utf-8"), passcode.encode("utf-8"))

    def delete_one_time_secret(self, plaintext: str, purpose: SecretPurpose) -> bool:
        table = _SECRET_TABLES[purpose]
        with store_transaction(self.engine, "delete_one_time_secret") as conn:
            result = conn.execute(table.delete().where(table.c.hash == hash_secret(plaintext)))
        return result.rowcount > 0

    def delete_one_time_secrets_for_user(self, user_id: str, purpose: SecretPurpose) -> int:
        """Delete every secret of ``purpose`` owned by ``user_id``. Returns rows removed."""
        table = _SECRET_TABLES[purpose]
        with store_transaction(self.engine, "delete_one_time_secrets_for_user") as conn:
            result = conn.execute(table.delete().where(table.c.user_id == user_id))
        return result.rowcount

    def count_one_time_secrets(self, user_id: str, purpose: SecretPurpose) -> int:
        """Number of unexpired secrets of ``purpose`` held by ``user_id``."""
        table = _SECRET_TABLES[purpose]
        with store_transaction(self.engine, "count_one_time_secrets") as conn:
            rows = conn.execute(
                table.select().where((table.c.user_id == user_id) & (table.c.expiry > self._now()))
            ).fetchall()
        return len(rows)

    # ------------------------------------------------------------------
    # Refresh credentials
    # ------------------------------------------------------------------

    def put_refresh_credential(self, cred: RefreshCredential) -> None:
        with store_transaction(self.engine, "put_refresh_credential", constraint="token") as conn:
            conn.execute(_refresh_tokens.insert().values(**_refresh_values(cred)))

    def rotate_refresh_credential(self, cred: RefreshCredential) -> None:
        """Replace whatever refresh credential the owner holds with ``cred``, atomically."""
        with store_transaction(self.engine, "rotate_refresh_credential", constraint="token") as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == cred.user_id))
            conn.execute(_refresh_tokens.insert().values(**_refresh_values(cred)))

    def get_refresh_owner(self, token: str) -> str:
        """Return the user id owning an unexpired refresh credential.

        Raises NotFound when the credential was rotated away, revoked, or has
        expired -- the replay-detection signal for a token whose signature is
        still valid. The expiry second itself still counts, as it does in
        TokenCodec.verify().
        """
        with store_transaction(self.engine, "get_refresh_owner") as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token == token) & (_refresh_tokens.c.expiry >= self._now())
                )
            ).fetchone()
        if row is None:
            raise NotFound("Refresh credential not found.")
        return row.user_id

    def list_refresh_credentials(self, user_id: str) -> list[RefreshCredential]:
        """All unexpired refresh credentials for a user, newest first."""
        with store_transaction(self.engine, "list_refresh_credentials") as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.expiry >= self._now()))
                .order_by(_refresh_tokens.c.issued_at.desc())
            ).fetchall()
        return [_row_to_refresh(r) for r in rows]

    def delete_refresh_credential(self, token: str) -> bool:
        with store_transaction(self.engine, "delete_refresh_credential") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        return result.rowcount > 0

    def delete_refresh_credentials_for_user(self, user_id: str) -> int:
        with store_transaction(self.engine, "delete_refresh_credentials_for_user") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _refresh_values(cred: RefreshCredential) -> dict:
    return {
        "token": cred.token,
        "user_id": cred.user_id,
        "issued_at": cred.issued_at.timestamp(),
        "expiry": cred.expires_at.timestamp(),
    }


def _row_to_refresh(row) -> RefreshCredential:
    return RefreshCredential(
        token=row.token,
        user_id=row.user_id,
        issued_at=_from_epoch(row.issued_at),
        expires_at=_from_epoch(row.expiry),
    )
