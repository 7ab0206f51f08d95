"""
auth/store.py -- SQLAlchemy Core persistence for the user directory.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, issuer and middleware code never touches SQL directly.

Also home to the engine factory and the error-classification transaction
helper shared with auth/token_store.py:

  store_transaction() wraps engine.begin() and turns driver failures into the
  auth.errors taxonomy by exception TYPE, never by message text:
    IntegrityError                          -> DuplicateKey
    OperationalError / InterfaceError /
    pool TimeoutError                       -> StoreUnavailable

Timeouts: every connection is opened with a bounded wait (SQLite busy
timeout, PostgreSQL connect_timeout + statement_timeout, pool checkout
timeout) so a stalled backend surfaces as StoreUnavailable instead of hanging
the request.

Optimistic concurrency: update() is a compare-and-swap on the version column.
A stale version matches zero rows and raises EditConflict; callers react (the
issuer invalidates outstanding one-time secrets) and surface a 409.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event, literal, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import DuplicateKey, EditConflict, StoreUnavailable
from auth.models import User

logger = logging.getLogger("offerland.auth.store")

DEFAULT_TIMEOUT_SECONDS = 3.0

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for external-provider accounts
    Column("activated", Boolean, nullable=False, default=False),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", String(32), nullable=False),
    Column("oauth_issuer", String(30)),
    Column("oauth_subject", Text),
)


# ---------------------------------------------------------------------------
# Engine + transaction helpers (shared with auth/token_store.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the request.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> Engine:
    """Create an Engine whose connections give up after ``timeout`` seconds."""
    connect_args: dict = {}
    engine_kwargs: dict = {"pool_pre_ping": True}
    if db_url.startswith("sqlite"):
        # In-memory SQLite runs on SingletonThreadPool, which has no checkout timeout.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        engine_kwargs["pool_timeout"] = timeout
        if db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(1, int(timeout))
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def store_transaction(engine: Engine, operation: str, constraint: Optional[str] = None) -> Iterator[Connection]:
    """Run a block in one transaction and classify backend failures by type.

    ``constraint`` names the logical unique key an IntegrityError in this
    block can only mean (the caller knows its own schema).
    """
    try:
        with engine.begin() as conn:
            yield conn
    except IntegrityError as exc:
        raise DuplicateKey(constraint=constraint) from exc
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.error("Store unavailable during %s (%s)", operation, type(exc).__name__)
        raise StoreUnavailable() from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///offerland_auth.db")
        user = store.insert(User(username="ada", email="ada@example.com"))
        user.activated = True
        store.update(user)          # bumps user.version
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.engine: Engine = create_store_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        return self._get_one(_users.c.id == user_id, "get_user_by_id")

    def get_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        return self._get_one(_users.c.email == email.strip().lower(), "get_user_by_email")

    def get_by_username(self, username: str) -> Optional[User]:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        return self._get_one(_users.c.username == username, "get_user_by_username")

    def _get_one(self, clause, operation: str) -> Optional[User]:
        with store_transaction(self.engine, operation) as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, user: User) -> User:
        """Insert a new user, assigning id, created_at and version 1.

        Raises DuplicateKey with constraint "email" or "username" when either
        is already taken. The colliding column is found by re-querying, not by
        reading the driver's error message.
        """
        user.id = user.id or str(uuid.uuid4())
        user.email = user.email.strip().lower()
        user.created_at = _now_iso()
        user.version = 1
        try:
            with store_transaction(self.engine, "insert_user") as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        activated=user.activated,
                        version=user.version,
                        created_at=user.created_at,
                        oauth_issuer=user.oauth_issuer,
                        oauth_subject=user.oauth_subject,
                    )
                )
        except DuplicateKey as exc:
            constraint = "email" if self.get_by_email(user.email) is not None else "username"
            raise DuplicateKey(f"A user with that {constraint} already exists.", constraint=constraint) from exc
        return user

    def update(self, user: User) -> User:
        """Write back mutable fields if and only if user.version is current.

        On success user.version is incremented in place to match the stored row.
        Raises EditConflict when another writer got there first (or the row
        is gone).
        """
        with store_transaction(self.engine, "update_user", constraint="email") as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user.id) & (_users.c.version == user.version))
                .values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    activated=user.activated,
                    version=_users.c.version + 1,
                )
            )
            if result.rowcount == 0:
                raise EditConflict()
        user.version += 1
        return user

    def delete(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        with store_transaction(self.engine, "delete_user") as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with store_transaction(self.engine, "ping") as conn:
                conn.execute(select(literal(1)))
        except StoreUnavailable:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        activated=bool(row.activated),
        version=row.version,
        created_at=row.created_at,
        oauth_issuer=row.oauth_issuer,
        oauth_subject=row.oauth_subject,
    )
