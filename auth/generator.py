"""
auth/generator.py -- Opaque one-time secrets and numeric passcodes.

Opaque secret: 16 bytes from the OS CSPRNG, base-32 encoded with the padding
stripped, which always yields 26 characters, e.g. Y3QMGX3PJ3WLRL2YRTQGQ6KRHU.
128 bits of entropy makes brute-force and accidental collisions infeasible,
so a fast unsalted SHA-256 digest is the right storage form (bcrypt's cost
factor is only needed for low-entropy secrets such as passwords).

Passcode: six decimal digits drawn with secrets.randbelow(10). randbelow uses
rejection sampling, so every digit is exactly uniform -- the byte % 10 shortcut
would slightly favour 0-5.

An exhausted or broken entropy source raises from os.urandom; that error is
not caught here. There is nothing useful to retry in-process.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

SECRET_BYTES = 16
SECRET_LENGTH = 26
PASSCODE_LENGTH = 6


def hash_secret(plaintext: str) -> bytes:
    """Return the SHA-256 digest the store uses as the lookup key."""
    return hashlib.sha256(plaintext.encode("utf-8")).digest()


def new_opaque_secret() -> tuple[str, bytes]:
    """Return (plaintext, hash) for a fresh one-time secret."""
    raw = secrets.token_bytes(SECRET_BYTES)
    plaintext = base64.b32encode(raw).decode("ascii").rstrip("=")
    return plaintext, hash_secret(plaintext)


def new_passcode() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(PASSCODE_LENGTH))
