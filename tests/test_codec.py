"""
tests/test_codec.py -- Unit tests for signed session credential encoding.

Covers:
  - sign/verify with the same secret and identity returns the claims
  - Wrong secret or tampered payload -> InvalidSignature
  - exp boundary: valid exactly at exp, expired one second after
  - nbf in the future -> TokenExpired (carries the claims)
  - Foreign issuer / audience -> InvalidIssuer / InvalidAudience
  - Malformed input and missing claims -> InvalidSignature
  - Two credentials minted in the same second still differ
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.codec import TokenCodec
from auth.errors import InvalidAudience, InvalidIssuer, InvalidSignature, TokenExpired
from auth.models import TokenClaims

SECRET = "s" * 40
IDENTITY = "https://auth.offerland.test"
NOW = datetime(2030, 6, 1, 8, 0, 0, tzinfo=timezone.utc)
SUBJECT = "5b0c4c1e-9a43-4a57-8d33-2a1f0e5d1c11"


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(SECRET, IDENTITY)


def test_round_trip_preserves_claims(codec):
    claims = codec.new_claims(SUBJECT, ttl_seconds=900, now=NOW)
    decoded = codec.verify(codec.sign(claims), now=NOW)
    assert decoded == claims
    assert decoded.subject == SUBJECT
    assert decoded.issuer == IDENTITY
    assert decoded.audience == (IDENTITY,)
    assert decoded.expires_at - decoded.issued_at == 900


def test_wrong_secret_is_invalid_signature(codec):
    token = codec.sign(codec.new_claims(SUBJECT, 900, NOW))
    other = TokenCodec("x" * 40, IDENTITY)
    with pytest.raises(InvalidSignature):
        other.verify(token, now=NOW)


def test_tampered_payload_is_invalid_signature(codec):
    token = codec.sign(codec.new_claims(SUBJECT, 900, NOW))
    header, payload, signature = token.split(".")
    forged = jwt.encode({"sub": "someone-else"}, "x" * 40, algorithm="HS256").split(".")[1]
    with pytest.raises(InvalidSignature):
        codec.verify(f"{header}.{forged}.{signature}", now=NOW)


def test_valid_at_exact_expiry_expired_one_second_later(codec):
    token = codec.sign(codec.new_claims(SUBJECT, 60, NOW))
    assert codec.verify(token, now=NOW + timedelta(seconds=60)).subject == SUBJECT
    with pytest.raises(TokenExpired) as exc_info:
        codec.verify(token, now=NOW + timedelta(seconds=61))
    assert exc_info.value.claims.subject == SUBJECT
    assert exc_info.value.code == "expired_token"


def test_not_yet_valid_is_expired(codec):
    token = codec.sign(codec.new_claims(SUBJECT, 60, NOW))
    with pytest.raises(TokenExpired):
        codec.verify(token, now=NOW - timedelta(seconds=1))


def test_foreign_issuer_rejected(codec):
    claims = TokenClaims(
        subject=SUBJECT,
        issuer="https://evil.example",
        audience=(IDENTITY,),
        issued_at=int(NOW.timestamp()),
        not_before=int(NOW.timestamp()),
        expires_at=int(NOW.timestamp()) + 60,
        token_id="abc",
    )
    with pytest.raises(InvalidIssuer):
        codec.verify(codec.sign(claims), now=NOW)


def test_foreign_audience_rejected(codec):
    claims = TokenClaims(
        subject=SUBJECT,
        issuer=IDENTITY,
        audience=("https://other-service.example",),
        issued_at=int(NOW.timestamp()),
        not_before=int(NOW.timestamp()),
        expires_at=int(NOW.timestamp()) + 60,
        token_id="abc",
    )
    with pytest.raises(InvalidAudience):
        codec.verify(codec.sign(claims), now=NOW)


def test_other_identity_rejects_credential(codec):
    token = codec.sign(codec.new_claims(SUBJECT, 60, NOW))
    with pytest.raises(InvalidIssuer):
        TokenCodec(SECRET, "https://other.example").verify(token, now=NOW)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c", "a.b"])
def test_malformed_input_is_invalid_signature(codec, token):
    with pytest.raises(InvalidSignature):
        codec.verify(token, now=NOW)


def test_missing_claim_is_invalid_signature(codec):
    token = jwt.encode({"sub": SUBJECT, "iss": IDENTITY}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidSignature):
        codec.verify(token, now=NOW)


def test_non_numeric_expiry_is_invalid_signature(codec):
    ts = int(NOW.timestamp())
    payload = {"sub": SUBJECT, "iss": IDENTITY, "aud": [IDENTITY], "iat": ts, "nbf": ts, "exp": "later"}
    token = jwt.encode(payload, SECRET, algorithm="HS256")
    with pytest.raises(InvalidSignature):
        codec.verify(token, now=NOW)


def test_string_audience_accepted(codec):
    ts = int(NOW.timestamp())
    payload = {"sub": SUBJECT, "iss": IDENTITY, "aud": IDENTITY, "iat": ts, "nbf": ts, "exp": ts + 60}
    token = jwt.encode(payload, SECRET, algorithm="HS256")
    assert codec.verify(token, now=NOW).audience == (IDENTITY,)


def test_same_second_credentials_differ(codec):
    first = codec.sign(codec.new_claims(SUBJECT, 60, NOW))
    second = codec.sign(codec.new_claims(SUBJECT, 60, NOW))
    assert first != second


def test_empty_secret_refused():
    with pytest.raises(ValueError):
        TokenCodec("", IDENTITY)
