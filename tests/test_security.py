from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from errors import ExpiredToken, InvalidOrExpiredSession, MalformedToken
from security import (
    SessionCodec,
    generate_reset_code,
    hash_password,
    reset_code_expiry,
    verify_password,
)

USER = {"id": "64b000000000000000000001", "username": "alice", "email": "alice@blog.io", "is_admin": True}


@pytest.fixture
def codec():
    return SessionCodec("unit-secret", timedelta(days=7))


def test_issue_and_verify_round_trip(codec):
    claims = codec.verify(codec.issue(USER))
    assert claims.user_id == USER["id"]
    assert claims.username == "alice"
    assert claims.email == "alice@blog.io"
    assert claims.is_admin is True
    assert claims.expires_at - claims.issued_at == timedelta(days=7)


def test_expired_token(codec):
    issued = datetime.now(timezone.utc) - timedelta(days=8)
    token = codec.issue(USER, now=issued)
    with pytest.raises(ExpiredToken):
        codec.verify(token)


def test_wrong_signature_is_malformed(codec):
    token = SessionCodec("other-secret", timedelta(days=7)).issue(USER)
    with pytest.raises(MalformedToken):
        codec.verify(token)


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_garbage_is_malformed(codec, token):
    with pytest.raises(InvalidOrExpiredSession):
        codec.verify(token)


def test_token_without_subject_is_malformed(codec):
    now = int(datetime.now(timezone.utc).timestamp())
    token = jwt.encode({"iat": now, "exp": now + 60}, "unit-secret", algorithm="HS256")
    with pytest.raises(MalformedToken):
        codec.verify(token)


def test_password_hash_is_one_way():
    hashed = hash_password("s3cret")
    assert hashed != "s3cret"
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret", None)


def test_reset_code_shape():
    for _ in range(50):
        code = generate_reset_code(6)
        assert len(code) == 6 and code.isdigit() and code[0] != "0"


def test_reset_code_expiry_is_fifteen_minutes():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert reset_code_expiry(now) == now + timedelta(minutes=15)
