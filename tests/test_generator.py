"""
tests/test_generator.py -- Unit tests for opaque secret and passcode generation.

Covers:
  - Plaintext shape: 26 chars of unpadded base-32
  - Stored hash is SHA-256 of the plaintext, never the plaintext itself
  - Passcodes are exactly six decimal digits
  - Successive calls do not repeat
"""

from __future__ import annotations

import hashlib
import re

from auth.generator import PASSCODE_LENGTH, SECRET_LENGTH, hash_secret, new_opaque_secret, new_passcode


def test_opaque_secret_is_unpadded_base32():
    plaintext, _ = new_opaque_secret()
    assert len(plaintext) == SECRET_LENGTH == 26
    assert re.fullmatch(r"[A-Z2-7]{26}", plaintext)
    assert "=" not in plaintext


def test_hash_is_sha256_of_plaintext():
    plaintext, digest = new_opaque_secret()
    assert digest == hashlib.sha256(plaintext.encode()).digest()
    assert digest == hash_secret(plaintext)
    assert len(digest) == 32


def test_secrets_do_not_repeat():
    seen = {new_opaque_secret()[0] for _ in range(200)}
    assert len(seen) == 200


def test_passcode_is_six_digits():
    for _ in range(100):
        code = new_passcode()
        assert len(code) == PASSCODE_LENGTH == 6
        assert code.isdigit()


def test_passcode_keeps_leading_zeros_possible():
    # Every digit position is drawn independently from 0-9.
    digits_seen = set()
    for _ in range(300):
        digits_seen.add(new_passcode()[0])
    assert "0" in digits_seen
