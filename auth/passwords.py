"""
auth/passwords.py -- Password hashing and timing-equalized login.

Passwords: bcrypt directly (no passlib wrapper). passlib's internal wrap-bug
detection creates a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error. Direct bcrypt usage is simpler and has no shim.

Bcrypt silently truncates input beyond 72 bytes; the API layer caps password
length at 72 characters (api/models.py) so that limit is never reached
unnoticed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("offerland.auth.passwords")


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, but leave a trace.
        logger.warning("Stored password hash could not be parsed")
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("offerland_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> Optional[User]:
    """Check an email/password login with timing equalization [C1].

    Always runs bcrypt whether or not the account exists:
    - Unknown email or passwordless (external-provider) account: bcrypt runs
      against _DUMMY_HASH.
    - Wrong password: bcrypt runs against the real hash.

    Returns the User when the password matches, None otherwise. The caller
    decides what to do with a matching but not yet activated account.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
